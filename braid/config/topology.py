"""Merge configuration: how branches are combined.

A merge layer owns (or borrows) a list of branches and folds their outputs
into one tensor. Because a merge layer is itself a branch, the branch list
may contain further merges, so the configs nest.
"""
from __future__ import annotations

import enum
from typing import Annotated, Literal, TypeAlias

from pydantic import Field

from braid.config import Config
from braid.config.layer import (
    IdentityBranchConfig,
    LinearBranchConfig,
    ScaleBranchConfig,
    SigmoidBranchConfig,
)


class TopologyType(str, enum.Enum):
    """Available merge patterns for combining branches.

    MULTIPLY_MERGE: elementwise product of all branch outputs
    """

    MULTIPLY_MERGE = "MultiplyMerge"

    @staticmethod
    def module_name() -> str:
        """Return the Python module containing merge implementations."""
        return "braid.topology"


class MultiplyMergeConfig(Config):
    """Branches whose outputs are multiplied elementwise.

    `model` marks the branches as borrowed from an enclosing model, so the
    merge layer will not own (or close) them. `run` makes the merge layer
    drive each branch's forward/backward/gradient itself.
    """

    type: Literal[TopologyType.MULTIPLY_MERGE] = TopologyType.MULTIPLY_MERGE
    model: bool = False
    run: bool = True
    branches: list["NodeConfig"] = Field(default_factory=list)


# A node in the branch tree can be either a concrete branch or a merge
NodeConfig: TypeAlias = Annotated[
    LinearBranchConfig
    | IdentityBranchConfig
    | SigmoidBranchConfig
    | ScaleBranchConfig
    | MultiplyMergeConfig,
    Field(discriminator="type"),
]

MultiplyMergeConfig.model_rebuild()
