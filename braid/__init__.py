"""braid: multiplicative merge layers over pluggable branches.

A merge layer feeds one input to several branches, multiplies their outputs
elementwise, and routes backward and parameter-gradient passes back through
them with explicit, autograd-free contracts.

Core pieces:
- Branch: the capability set every sub-computation implements
- MultiplyMerge: drives the branches and folds their results
- MergeCheckpoint: saves and restores a merge with all its branches
"""
from __future__ import annotations

from braid.errors import CheckpointError, InvalidConfiguration, ShapeMismatch
from braid.layer import Branch
from braid.loader.checkpoint import MergeCheckpoint
from braid.topology.multiply_merge import MultiplyMerge

__all__ = [
    "Branch",
    "CheckpointError",
    "InvalidConfiguration",
    "MergeCheckpoint",
    "MultiplyMerge",
    "ShapeMismatch",
]
