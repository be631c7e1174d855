"""
guard provides small validation helpers for branch construction and inputs.
"""
from __future__ import annotations

from torch import Tensor


def require_int(name: str, value: object, *, ge: int | None = None) -> int:
    """
    require_int validates that value is an int, optionally bounded below.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value)!r}")
    if ge is not None and value < ge:
        raise ValueError(f"{name} must be >= {ge}, got {value}")
    return value


def require_bool(name: str, value: object) -> bool:
    """
    require_bool validates that value is a bool.
    """
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a bool, got {type(value)!r}")
    return value


def require_last_dim(name: str, x: Tensor, size: int) -> Tensor:
    """
    require_last_dim validates that x has at least one dim and ends in size.
    """
    if x.ndim < 1:
        raise ValueError(f"Expected {name}.ndim >= 1, got {tuple(x.shape)}")
    if int(x.shape[-1]) != int(size):
        raise ValueError(f"Expected {name} last dim {int(size)}, got {tuple(x.shape)}")
    return x
