"""Typed CLI command payloads.

Each command type represents a distinct user intent. The CLI parses arguments
into these typed objects, which are then dispatched to the runner.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from braid.config.manifest import Manifest


@dataclass(frozen=True, slots=True)
class CheckCommand:
    """Request to build a merge from a manifest and run one step through it."""

    manifest: Manifest
    save: Path | None


@dataclass(frozen=True, slots=True)
class InspectCommand:
    """Request to summarize a saved merge layer."""

    checkpoint: Path


Command = CheckCommand | InspectCommand
