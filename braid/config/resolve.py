"""
resolve provides manifest type-name normalization.
"""
from __future__ import annotations

from collections.abc import Mapping


# Maps shorthand type names to canonical class names
TYPE_ALIASES: dict[str, str] = {
    # Topology types
    "multiply_merge": "MultiplyMerge",
    "multiply": "MultiplyMerge",
    # Branch types
    "linear": "LinearBranch",
    "identity": "IdentityBranch",
    "sigmoid": "SigmoidBranch",
    "scale": "ScaleBranch",
}


def normalize_type_names(payload: object) -> object:
    """
    Recursively normalize shorthand type names to canonical class names.

    This allows manifests to use names like 'linear' or 'multiply_merge'
    while internally converting them to the expected class names like
    'LinearBranch' or 'MultiplyMerge'.
    """
    if isinstance(payload, Mapping):
        result: dict[str, object] = {}
        for k, v in payload.items():
            if k == "type" and isinstance(v, str):
                result[k] = TYPE_ALIASES.get(v, v)
            else:
                result[k] = normalize_type_names(v)
        return result
    if isinstance(payload, list):
        return [normalize_type_names(v) for v in payload]
    return payload
