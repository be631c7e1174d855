"""Runner: exercise a merge layer the way a training step would.

`check` builds a merge from a manifest and drives one forward, backward and
gradient pass over seeded random input, so a manifest can be validated end
to end before it is wired into a model. `inspect` summarizes a checkpoint.
"""
from __future__ import annotations

from pathlib import Path

import torch

from braid.config.manifest import Manifest
from braid.console import logger
from braid.errors import InvalidConfiguration
from braid.loader.checkpoint import MergeCheckpoint
from braid.topology.multiply_merge import MultiplyMerge


def describe(merge: MultiplyMerge) -> list[tuple[str, int, str]]:
    """One (kind, parameter count, output shape) row per branch."""
    return [
        (
            type(branch).__name__,
            branch.num_parameters(),
            str(tuple(branch.output.shape)) if branch.output.numel() else "-",
        )
        for branch in merge.branches
    ]


class Runner:
    """Builds, checks and inspects merge layers for the CLI."""

    def __init__(self, checkpoint: MergeCheckpoint | None = None) -> None:
        self.checkpoint = checkpoint or MergeCheckpoint()

    def check(self, manifest: Manifest, save: Path | None = None) -> dict[str, object]:
        """Run one forward/backward/gradient step and report the result.

        The merge is closed when the step ends, whether or not it succeeded.
        Returns the summary that was printed.
        """
        with MultiplyMerge.from_config(manifest.merge) as merge:
            if not merge.run:
                raise InvalidConfiguration(
                    "check needs a merge with run=true; with run=false the branches "
                    "are computed elsewhere and there is nothing to drive"
                )

            torch.manual_seed(manifest.seed)
            x = torch.randn(*manifest.input_shape)
            logger.header("Merge check", manifest.name or f"{len(merge.branches)} branches")

            y = merge.forward(x)
            gy = torch.ones_like(y)
            delta = merge.backward(x, gy)
            merge.gradient(x, gy)

            summary: dict[str, object] = {
                "model": merge.model,
                "run": merge.run,
                "owns_layer": merge.owns_layer,
                "input": tuple(x.shape),
                "output": tuple(y.shape),
                "delta": tuple(delta.shape),
                "parameters": merge.num_parameters(),
            }
            logger.branches(describe(merge))
            logger.key_value(summary, title="merge")

            if save is not None:
                self.checkpoint.save(merge, save)
        logger.success("Forward, backward and gradient completed")
        return summary

    def inspect(self, path: Path) -> dict[str, object]:
        """Load a checkpoint, print what it holds and close it again."""
        with self.checkpoint.load(path) as merge:
            summary: dict[str, object] = {
                "model": merge.model,
                "run": merge.run,
                "owns_layer": merge.owns_layer,
                "weights": tuple(merge.weights.shape),
                "parameters": merge.num_parameters(),
            }
            logger.header("Checkpoint", str(path))
            logger.branches(describe(merge))
            logger.key_value(summary, title="merge")
        return summary
