"""Multiplicative merge: branch outputs combined by elementwise product.

Every branch sees the same input. Forward multiplies their outputs together,
left to right in collection order, so the result is reproducible bit for bit.
Backward adds their deltas together. Gradient asks each branch to accumulate
its own parameter gradients; the merge itself has no learnable parameters.

The merge layer is itself a Branch, so merges nest.
"""
from __future__ import annotations

import enum
from collections.abc import Iterator
from types import TracebackType

import torch
from torch import Tensor
from typing_extensions import Self, override

from braid.config.topology import MultiplyMergeConfig, NodeConfig
from braid.console import logger
from braid.errors import InvalidConfiguration, ShapeMismatch
from braid.layer import Branch
from braid.layer.guard import require_bool
from braid.topology.collection import BranchCollection


class Phase(str, enum.Enum):
    """Last completed pass of a merge layer, for inspection only."""

    CONFIGURED = "configured"
    FORWARD = "forward"
    BACKWARD = "backward"
    GRADIENT = "gradient"
    CLOSED = "closed"


def _fill(out: Tensor | None, result: Tensor) -> None:
    """Write result into a caller-supplied tensor, resizing it as needed."""
    if out is None:
        return
    out.resize_(result.shape)
    out.copy_(result)


class MultiplyMerge(Branch):
    """Multiply branch outputs elementwise; sum branch deltas.

    Args:
        model: the branches belong to an enclosing model. The merge layer
            then borrows them and never closes them. Otherwise it owns them.
        run: drive each branch's forward/backward/gradient. When false the
            branches are assumed to have been run elsewhere: forward only
            combines their current outputs and backward passes gy through.
    """

    def __init__(self, model: bool = False, run: bool = True) -> None:
        super().__init__()
        self.model: bool = require_bool("model", model)
        self.run: bool = require_bool("run", run)
        self.branches: BranchCollection = BranchCollection(owns=not self.model)
        self.register_buffer("weights", torch.empty(0))
        self.phase: Phase = Phase.CONFIGURED
        self._warned_summed_delta: bool = False

    @classmethod
    @override
    def from_config(cls, config: MultiplyMergeConfig) -> "MultiplyMerge":  # type: ignore[override]
        merge = cls(model=config.model, run=config.run)
        for node in config.branches:
            merge.add_config(node)
        return merge

    @property
    def config(self) -> MultiplyMergeConfig:  # type: ignore[override]
        """Config describing this merge and every branch it holds."""
        return MultiplyMergeConfig(
            model=self.model,
            run=self.run,
            branches=[branch.config for branch in self.branches],
        )

    @property
    def owns_layer(self) -> bool:
        """Whether this merge layer closes its branches when it is closed."""
        return self.branches.owns

    # ─────────────────────────────────────────────────────────────────────
    # Branch attachment
    # ─────────────────────────────────────────────────────────────────────

    def add(self, branch: Branch) -> Branch:
        """Attach a branch, owned or borrowed according to this layer's mode."""
        if branch is self:
            raise InvalidConfiguration("A merge layer cannot be its own branch")
        return self.branches.add(branch)

    def add_config(self, config: NodeConfig) -> Branch:
        """Build a branch from its config and attach it."""
        return self.add(config.build())

    def reset(self, *, model: bool, run: bool, owns_layer: bool) -> None:
        """Release current branches and start over with the given flags.

        Used when restoring from a checkpoint, where the stored ownership
        mode wins over the one derived from `model`.
        """
        self.branches.release()
        self.model = require_bool("model", model)
        self.run = require_bool("run", run)
        self.branches = BranchCollection(owns=require_bool("owns_layer", owns_layer))
        self.weights = torch.empty(0)
        self.output = torch.empty(0)
        self.delta = torch.empty(0)
        self.phase = Phase.CONFIGURED
        self.closed = False

    def __iter__(self) -> Iterator[Branch]:
        return iter(self.branches)

    # ─────────────────────────────────────────────────────────────────────
    # Passes
    # ─────────────────────────────────────────────────────────────────────

    def _require_branches(self, what: str) -> None:
        if self.closed:
            raise InvalidConfiguration(f"{what} called on a closed MultiplyMerge")
        if len(self.branches) == 0:
            raise InvalidConfiguration(f"{what} requires at least one branch")

    @override
    @torch.no_grad()
    def forward(self, x: Tensor, out: Tensor | None = None) -> Tensor:  # type: ignore[override]
        """Product of all branch outputs, folded left in collection order."""
        self._require_branches("forward")
        if self.run:
            for branch in self.branches:
                branch(x)

        first = self.branches[0].output
        output = first.clone()
        for i in range(1, len(self.branches)):
            other = self.branches[i].output
            if other.shape != first.shape:
                raise ShapeMismatch("output", i, tuple(first.shape), tuple(other.shape))
            output.mul_(other)

        self.output = output
        self.phase = Phase.FORWARD
        _fill(out, output)
        return output

    @override
    @torch.no_grad()
    def backward(self, x: Tensor, gy: Tensor, out: Tensor | None = None) -> Tensor:  # type: ignore[override]
        """Sum of branch deltas, or gy itself when the branches are not run.

        Each branch is handed its own stored output and the upstream gradient
        unchanged, and the resulting deltas are added. That is not the
        product-rule derivative of a product merge, which would weight each
        delta by the other branches' outputs. The summed form is kept as is;
        callers that need exact gradients through a multi-branch merge must
        not rely on it.
        """
        _ = x
        if not self.run:
            delta = gy.clone()
        else:
            self._require_branches("backward")
            for branch in self.branches:
                branch.backward(branch.output, gy)

            first = self.branches[0].delta
            delta = first.clone()
            for i in range(1, len(self.branches)):
                other = self.branches[i].delta
                if other.shape != first.shape:
                    raise ShapeMismatch("delta", i, tuple(first.shape), tuple(other.shape))
                delta.add_(other)

            if len(self.branches) > 1 and not self._warned_summed_delta:
                logger.warning(
                    "MultiplyMerge.backward sums branch deltas; this is not the "
                    "product-rule gradient of the merged output"
                )
                self._warned_summed_delta = True

        self.delta = delta
        self.phase = Phase.BACKWARD
        _fill(out, delta)
        return delta

    @override
    @torch.no_grad()
    def gradient(self, x: Tensor, error: Tensor, out: Tensor | None = None) -> None:  # type: ignore[override]
        """Let every branch accumulate its own parameter gradients.

        The merge layer holds no parameters of its own, so `out` is left
        untouched.
        """
        _ = out
        if self.run:
            self._require_branches("gradient")
            for branch in self.branches:
                branch.gradient(x, error)
        self.phase = Phase.GRADIENT

    # ─────────────────────────────────────────────────────────────────────
    # Lifetime
    # ─────────────────────────────────────────────────────────────────────

    @override
    def close(self) -> None:
        """Close owned branches once; leave borrowed ones to their owner."""
        if self.closed:
            return
        self.branches.release()
        super().close()
        self.phase = Phase.CLOSED

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @override
    def clone(self) -> "MultiplyMerge":
        """Ownership-aware copy: deep clones owned branches, shares borrowed ones."""
        twin = type(self)(model=self.model, run=self.run)
        twin.branches = self.branches.clone()
        twin.weights = self.weights.clone()
        return twin

    def __copy__(self) -> "MultiplyMerge":
        return self.clone()

    def assign(self, other: "MultiplyMerge") -> Self:
        """Copy assignment. Assigning a layer to itself changes nothing."""
        if other is self:
            return self
        self.reset(model=other.model, run=other.run, owns_layer=other.owns_layer)
        self.branches = other.branches.clone()
        self.weights = other.weights.clone()
        return self

    def take(self, other: "MultiplyMerge") -> Self:
        """Move assignment: `other` is left empty, so closing it releases nothing."""
        if other is self:
            return self
        self.reset(model=other.model, run=other.run, owns_layer=other.owns_layer)
        self.branches = other.branches
        other.branches = BranchCollection(owns=other.owns_layer)
        self.weights = other.weights
        other.weights = torch.empty(0)
        return self

    @override
    def extra_repr(self) -> str:
        return f"model={self.model}, run={self.run}, owns_layer={self.owns_layer}"
