"""Branches: the sub-computations a merge layer combines.

Every branch kind implements the same capability set so a merge layer can
drive any of them without knowing what it is:

- forward(x): compute and store `output`
- backward(output, gy): compute and store `delta`, the gradient w.r.t. input
- gradient(x, error): accumulate parameter gradients into `param.grad`
- close(): release the branch; called once by whoever owns it

Gradients are explicit. Nothing here relies on autograd, so every pass runs
under torch.no_grad() and parameter gradients land in `.grad` where a
regular torch optimizer will find them.
"""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING

import torch
from torch import Tensor, nn

if TYPE_CHECKING:
    from braid.config.topology import NodeConfig


class Branch(nn.Module):
    """Base class for all branch modules.

    Holds the branch config plus the two tensors the merge layer reads
    back: `output` from the last forward and `delta` from the last backward.
    Subclasses implement the actual passes.
    """

    config: "NodeConfig"

    def __init__(self) -> None:
        super().__init__()
        self.output: Tensor = torch.empty(0)
        self.delta: Tensor = torch.empty(0)
        self.closed: bool = False

    @classmethod
    def from_config(cls, config: "NodeConfig") -> "Branch":
        """Build a branch from its config; see Config.build()."""
        return cls(config)  # type: ignore[call-arg]

    def forward(self, x: Tensor) -> Tensor:
        """Compute the output for x, store it as `output` and return it."""
        raise NotImplementedError("Subclasses must implement forward pass.")

    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        """Compute the input gradient, store it as `delta` and return it."""
        raise NotImplementedError("Subclasses must implement backward pass.")

    def gradient(self, x: Tensor, error: Tensor) -> None:
        """Accumulate parameter gradients. Parameter-free branches do nothing."""
        _ = (x, error)

    def close(self) -> None:
        """Release the tensors this branch holds.

        Closing twice is harmless. Owners call this exactly once; borrowers
        never call it.
        """
        if self.closed:
            return
        self.output = torch.empty(0)
        self.delta = torch.empty(0)
        self.closed = True

    def clone(self) -> "Branch":
        """Independent copy of this branch. Merges override this to keep
        borrowed branches shared."""
        return copy.deepcopy(self)

    def num_parameters(self) -> int:
        """Count the scalars across this branch's parameters."""
        return sum(int(p.numel()) for p in self.parameters())


def accumulate_grad(param: nn.Parameter, grad: Tensor) -> None:
    """Add grad into param.grad, allocating it on first use."""
    if param.grad is None:
        param.grad = torch.zeros_like(param)
    param.grad.add_(grad.to(dtype=param.dtype))


__all__ = ["Branch", "accumulate_grad"]
