"""Learnable per-feature scale branch."""
from __future__ import annotations

import torch
from torch import Tensor, nn
from typing_extensions import override

from braid.config.layer import ScaleBranchConfig
from braid.layer import Branch, accumulate_grad
from braid.layer.guard import require_int, require_last_dim


class ScaleBranch(Branch):
    """y = x * s with s a learned vector over the last dimension."""

    def __init__(self, config: ScaleBranchConfig) -> None:
        super().__init__()
        self.config = config
        self.d_model: int = require_int("d_model", config.d_model, ge=1)
        self.scale: nn.Parameter = nn.Parameter(
            torch.full((self.d_model,), float(config.init))
        )

    @override
    @torch.no_grad()
    def forward(self, x: Tensor) -> Tensor:
        require_last_dim("x", x, self.d_model)
        self.output = x * self.scale
        return self.output

    @override
    @torch.no_grad()
    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        _ = output
        require_last_dim("gy", gy, self.d_model)
        self.delta = gy * self.scale
        return self.delta

    @override
    @torch.no_grad()
    def gradient(self, x: Tensor, error: Tensor) -> None:
        require_last_dim("x", x, self.d_model)
        require_last_dim("error", error, self.d_model)
        accumulate_grad(self.scale, (error * x).reshape(-1, self.d_model).sum(dim=0))
