"""Identity branch: passes its input straight through."""
from __future__ import annotations

import torch
from torch import Tensor
from typing_extensions import override

from braid.config.layer import IdentityBranchConfig
from braid.layer import Branch


class IdentityBranch(Branch):
    """Output is the input; delta is the upstream gradient."""

    def __init__(self, config: IdentityBranchConfig) -> None:
        super().__init__()
        self.config = config

    @override
    @torch.no_grad()
    def forward(self, x: Tensor) -> Tensor:
        self.output = x.clone()
        return self.output

    @override
    @torch.no_grad()
    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        _ = output
        self.delta = gy.clone()
        return self.delta
