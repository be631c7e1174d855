"""Checkpoint utilities for merge layers.

A merge layer holds branches of many kinds, so a checkpoint has to record
what each branch is as well as its weights. This package writes and reads
that tagged layout in PyTorch and safetensors files.
"""
from __future__ import annotations

from braid.loader.checkpoint import FORMAT_VERSION, MergeCheckpoint

__all__ = ["FORMAT_VERSION", "MergeCheckpoint"]
