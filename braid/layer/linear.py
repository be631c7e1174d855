"""Dense projection branch.

The workhorse branch: y = x Wᵀ + b over the last dimension. Leading
dimensions are treated as batch, so gradients sum over every position.
"""
from __future__ import annotations

import math

import torch
import torch.nn.init as init
from torch import Tensor, nn
from typing_extensions import override

from braid.config.layer import LinearBranchConfig
from braid.layer import Branch, accumulate_grad
from braid.layer.guard import require_bool, require_int, require_last_dim


class LinearBranch(Branch):
    """A dense projection with explicit backward and gradient passes."""

    def __init__(self, config: LinearBranchConfig) -> None:
        """Create the weight matrix and optional bias.

        Args:
            config: Specifies input dim (d_in), output dim (d_out), and bias.
        """
        super().__init__()
        self.config = config
        self.d_in: int = require_int("d_in", config.d_in, ge=1)
        self.d_out: int = require_int("d_out", config.d_out, ge=1)
        self.has_bias: bool = require_bool("bias", config.bias)

        self.weight: nn.Parameter = nn.Parameter(torch.empty((self.d_out, self.d_in)))
        self.bias: nn.Parameter | None = (
            nn.Parameter(torch.empty((self.d_out,))) if self.has_bias else None
        )
        self.reset_parameters()

    def reset_parameters(self) -> None:
        """Kaiming-uniform weights, bias bounded by 1/sqrt(fan_in)."""
        init.kaiming_uniform_(self.weight, a=math.sqrt(5))
        if self.bias is not None:
            bound = 1.0 / math.sqrt(float(self.d_in))
            init.uniform_(self.bias, -bound, bound)

    @override
    @torch.no_grad()
    def forward(self, x: Tensor) -> Tensor:
        require_last_dim("x", x, self.d_in)
        y = x @ self.weight.t()
        if self.bias is not None:
            y = y + self.bias
        self.output = y
        return y

    @override
    @torch.no_grad()
    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        """delta = gy W; the stored output is not needed for a linear map."""
        _ = output
        require_last_dim("gy", gy, self.d_out)
        self.delta = gy @ self.weight
        return self.delta

    @override
    @torch.no_grad()
    def gradient(self, x: Tensor, error: Tensor) -> None:
        require_last_dim("x", x, self.d_in)
        require_last_dim("error", error, self.d_out)
        x2 = x.reshape(-1, self.d_in)
        e2 = error.reshape(-1, self.d_out)
        accumulate_grad(self.weight, e2.t() @ x2)
        if self.bias is not None:
            accumulate_grad(self.bias, e2.sum(dim=0))
