"""Logistic activation branch.

Multiplying another branch by a sigmoid branch gives a soft gate, which is
the usual reason to put one inside a multiplicative merge.
"""
from __future__ import annotations

import torch
from torch import Tensor
from typing_extensions import override

from braid.config.layer import SigmoidBranchConfig
from braid.layer import Branch


class SigmoidBranch(Branch):
    """Elementwise σ(x), differentiated from its own stored output."""

    def __init__(self, config: SigmoidBranchConfig) -> None:
        super().__init__()
        self.config = config

    @override
    @torch.no_grad()
    def forward(self, x: Tensor) -> Tensor:
        self.output = torch.sigmoid(x)
        return self.output

    @override
    @torch.no_grad()
    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        """σ'(x) = σ(x)(1 - σ(x)), so only the output is needed."""
        self.delta = gy * output * (1.0 - output)
        return self.delta
