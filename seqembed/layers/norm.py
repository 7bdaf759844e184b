"""
Normalization layers over the last axis.

Statistics are computed in float32 and the result is cast back to the
input dtype, so half-precision activations do not lose the variance term.
"""

from __future__ import annotations

from typing import Optional

import torch

from seqembed.graph import initializers as inits
from seqembed.graph.graph import Graph
from seqembed.layers.base import Layer


class LayerNorm(Layer):
    """
    y = (x - mean) / sqrt(var + eps) * weight + bias

    With ``elementwise_affine=False`` no parameters are bound.
    """

    def __init__(
        self,
        graph: Graph,
        name: str,
        eps: float = 1e-5,
        elementwise_affine: bool = True,
    ):
        super().__init__(graph, name)
        self.eps = eps
        self.elementwise_affine = elementwise_affine
        self.weight: Optional[torch.Tensor] = None
        self.bias: Optional[torch.Tensor] = None

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        dim_model = x.shape[-1]
        h = x.float()
        mean = h.mean(dim=-1, keepdim=True)
        var = h.var(dim=-1, keepdim=True, unbiased=False)
        h = (h - mean) * torch.rsqrt(var + self.eps)

        if self.elementwise_affine:
            weight = self.register_lazy("weight", (dim_model,), inits.ones())
            bias = self.register_lazy("bias", (dim_model,), inits.zeros())
            h = h * weight.float() + bias.float()
        return h.to(x.dtype)


class RMSNorm(Layer):
    """
    y = x / sqrt(mean(x^2) + eps) * weight

    Scale only; there is no shift parameter.
    """

    def __init__(
        self,
        graph: Graph,
        name: str,
        eps: float = 1e-5,
        elementwise_affine: bool = True,
    ):
        super().__init__(graph, name)
        self.eps = eps
        self.elementwise_affine = elementwise_affine
        self.weight: Optional[torch.Tensor] = None

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        dim_model = x.shape[-1]
        h = x.float()
        h = h * torch.rsqrt(h.pow(2).mean(dim=-1, keepdim=True) + self.eps)

        if self.elementwise_affine:
            weight = self.register_lazy("weight", (dim_model,), inits.ones())
            h = h * weight.float()
        return h.to(x.dtype)


def norm_by_name(graph: Graph, name: str, kind: str, eps: float = 1e-5) -> Layer:
    """Build a LayerNorm ("layer") or RMSNorm ("rms")."""
    if kind == "layer":
        return LayerNorm(graph, name, eps)
    if kind == "rms":
        return RMSNorm(graph, name, eps)
    raise ValueError(f"Unknown norm '{kind}'. Choose from: layer, rms")
