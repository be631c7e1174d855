"""Merge topologies: how branch outputs are combined.

A topology here is a layer that feeds one input to several branches and
folds their outputs into a single tensor. Branch order is fixed at
attachment time and every fold runs in that order.
"""
from __future__ import annotations

from braid.topology.collection import BranchCollection
from braid.topology.multiply_merge import MultiplyMerge, Phase

__all__ = ["BranchCollection", "MultiplyMerge", "Phase"]
