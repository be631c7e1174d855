"""Structural errors raised by merge layers and checkpoints.

All of these subclass ValueError: they describe a layer that was put
together wrong or a file that does not describe a layer, never a transient
condition worth retrying.
"""
from __future__ import annotations


class InvalidConfiguration(ValueError):
    """A merge layer is not in a state where the requested call makes sense."""


class ShapeMismatch(ValueError):
    """Branch tensors that must be combined elementwise differ in shape."""

    def __init__(self, what: str, index: int, expected: tuple[int, ...], got: tuple[int, ...]) -> None:
        super().__init__(
            f"branch {index} {what} has shape {got}, expected {expected} "
            "(all branch tensors must share one shape to merge elementwise)"
        )
        self.index = index
        self.expected = expected
        self.got = got


class CheckpointError(ValueError):
    """A checkpoint could not be read as a merge layer."""
