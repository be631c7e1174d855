"""Manifest: a merge layer plus what to feed it, in one file.

A manifest names the merge layer to build and the input shape to check it
with. It's loaded from YAML or JSON and validated by Pydantic.
"""
from __future__ import annotations

import json
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from braid.config import NonNegativeInt, PositiveInt
from braid.config.resolve import normalize_type_names
from braid.config.topology import MultiplyMergeConfig


class Manifest(BaseModel):
    """A merge layer description loaded from YAML."""

    version: PositiveInt
    name: str | None = None
    notes: str = ""
    seed: NonNegativeInt = 1337
    input_shape: list[PositiveInt] = Field(min_length=1)
    merge: MultiplyMergeConfig

    @classmethod
    def from_path(cls, path: Path) -> "Manifest":
        """Load and validate a manifest from a JSON or YAML file."""
        if not path.exists():
            raise ValueError(f"Manifest not found: {path}")
        text = path.read_text(encoding="utf-8")
        match path.suffix.lower():
            case ".json":
                payload = json.loads(text)
            case ".yml" | ".yaml":
                payload = yaml.safe_load(text)
            case s:
                raise ValueError(f"Unsupported format '{s}'")

        if payload is None:
            raise ValueError("Manifest payload is empty.")
        if not isinstance(payload, dict):
            raise ValueError(f"Manifest payload must be a dict, got {type(payload)!r}")

        # Normalize shorthand type names (e.g., 'linear' → 'LinearBranch')
        payload = normalize_type_names(payload)

        return cls.model_validate(payload)
