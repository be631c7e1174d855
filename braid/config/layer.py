"""Branch configuration with discriminated unions.

Each concrete branch kind has its own config class. Pydantic's discriminated
unions allow YAML like `type: LinearBranch` to automatically deserialize
into the correct config class, and the same tag identifies the kind of
each branch stored in a checkpoint.
"""
from __future__ import annotations

import enum
from typing import Annotated, Literal, TypeAlias

from pydantic import Field

from braid.config import Config, PositiveInt


class LayerType(str, enum.Enum):
    """Enumeration of branch kinds for type-safe config parsing.

    Using an enum prevents magic strings and gives better error messages
    when an unknown branch kind is specified in YAML or a checkpoint.
    """

    LINEAR = "LinearBranch"
    IDENTITY = "IdentityBranch"
    SIGMOID = "SigmoidBranch"
    SCALE = "ScaleBranch"

    @staticmethod
    def module_name() -> str:
        """Return the Python module containing branch implementations."""
        return "braid.layer"


class LinearBranchConfig(Config):
    """Configuration for a dense projection branch."""

    type: Literal[LayerType.LINEAR] = LayerType.LINEAR
    d_in: PositiveInt
    d_out: PositiveInt
    bias: bool = True


class IdentityBranchConfig(Config):
    """Configuration for a branch that passes its input through."""

    type: Literal[LayerType.IDENTITY] = LayerType.IDENTITY


class SigmoidBranchConfig(Config):
    """Configuration for a logistic activation branch (a multiplicative gate)."""

    type: Literal[LayerType.SIGMOID] = LayerType.SIGMOID


class ScaleBranchConfig(Config):
    """Configuration for a learnable per-feature scale."""

    type: Literal[LayerType.SCALE] = LayerType.SCALE
    d_model: PositiveInt
    init: float = 1.0


# Union type for any branch config, with automatic deserialization
LayerConfig: TypeAlias = Annotated[
    LinearBranchConfig
    | IdentityBranchConfig
    | SigmoidBranchConfig
    | ScaleBranchConfig,
    Field(discriminator="type"),
]
