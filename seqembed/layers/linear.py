"""
Linear, Dropout and fused Linear+ReLU+Dropout layers.

Linear:
    y = x @ W + b            (weight shape (dim_in, dim_out))
    y = x @ W.T + b          (transposed, weight shape (dim_out, dim_in))

``dim_in`` is taken from the last axis of the first input seen, so a
layer only needs to know its output size when it is constructed:

    >>> proj = Linear(graph, "proj", dim_out=32)
    >>> proj(torch.randn(2, 7, 16)).shape
    torch.Size([2, 7, 32])
    >>> graph.params["proj.weight"].shape
    torch.Size([16, 32])
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import torch
import torch.nn.functional as F

from seqembed.graph import initializers as inits
from seqembed.graph.graph import Graph, Mode
from seqembed.graph.initializers import NodeInitializer
from seqembed.layers.base import Layer
from seqembed.layers.functional import dropout, dropout_relu

logger = logging.getLogger(__name__)


class Linear(Layer):
    """
    Affine projection of the last axis.

    Parameters
    ----------
    graph : Graph
        Owning graph.
    name : str
        Parameter prefix; parameters are "<name>.weight" and "<name>.bias".
    dim_out : int
        Output size of the last axis.
    use_bias : bool
        Add a zero-initialized bias.
    transposed : bool
        Store the weight as (dim_out, dim_in).
    init : callable or None
        Weight initializer. Defaults to Glorot uniform.
    """

    def __init__(
        self,
        graph: Graph,
        name: str,
        dim_out: int,
        use_bias: bool = True,
        transposed: bool = False,
        init: Optional[NodeInitializer] = None,
    ):
        super().__init__(graph, name)
        if dim_out <= 0:
            raise ValueError(f"dim_out must be positive, got {dim_out}")
        self.dim_out = dim_out
        self.use_bias = use_bias
        self.transposed = transposed
        self.init = init if init is not None else inits.glorot_uniform()
        self.weight: Optional[torch.Tensor] = None
        self.bias: Optional[torch.Tensor] = None

    @classmethod
    def tied(
        cls,
        graph: Graph,
        name: str,
        weight: torch.Tensor,
        use_bias: bool = True,
        transposed: bool = False,
    ) -> Linear:
        """
        Build a Linear that reuses an already bound weight, e.g. an
        embedding table shared with an output projection. ``dim_out`` comes
        from the weight and no initializer is used.
        """
        dim_out = weight.shape[0] if transposed else weight.shape[-1]
        layer = cls(graph, name, dim_out, use_bias=use_bias, transposed=transposed)
        layer.init = None
        layer.weight = weight
        return layer

    def bind(self, dim_in: int) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        """Bind weight (and bias) for inputs whose last axis is ``dim_in``."""
        if self.transposed:
            weight = self.register_lazy("weight", (self.dim_out, dim_in), self.init)
        else:
            weight = self.register_lazy("weight", (dim_in, self.dim_out), self.init)

        bias = None
        if self.use_bias:
            bias = self.register_lazy("bias", (self.dim_out,), inits.zeros())
        return weight, bias

    def affine(self, x: torch.Tensor) -> torch.Tensor:
        weight, bias = self.bind(x.shape[-1])
        weight = weight.to(x.dtype)
        if bias is not None:
            bias = bias.to(x.dtype)
        # F.linear expects (dim_out, dim_in)
        return F.linear(x, weight if self.transposed else weight.t(), bias)

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        return self.affine(x)


class Dropout(Layer):
    """
    Standalone dropout. Identity in eval mode or when ``p == 0``.

    Parameters
    ----------
    p : float
        Drop probability.
    mask_shape : sequence of int or None
        Fixed mask shape; by default the last two axes of the input.
    """

    def __init__(
        self,
        graph: Graph,
        p: float,
        mask_shape: Optional[Sequence[int]] = None,
        name: str = "dropout",
    ):
        super().__init__(graph, name)
        if not 0.0 <= p < 1.0:
            raise ValueError(f"dropout probability must be in [0, 1), got {p}")
        self.p = p
        self.mask_shape = tuple(mask_shape) if mask_shape is not None else None

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        if self.mode is Mode.EVAL or self.p == 0.0:
            return x
        return dropout(x, self.p, self.mask_shape, self.graph.generator)


class LinearReluDropout(Layer):
    """
    Linear projection, ReLU and dropout as one layer.

    In eval mode this is ``relu(linear(x))``. In train mode with ``p > 0``
    the ReLU output is multiplied by a single scaled keep-mask; with
    ``p == 0`` it is plain ReLU.

    Parameters are shared with an internal ``Linear`` of the same name, so
    they are stored as "<name>.weight" and "<name>.bias".
    """

    def __init__(
        self,
        graph: Graph,
        name: str,
        dim_out: int,
        p: float,
        use_bias: bool = True,
        transposed: bool = False,
        init: Optional[NodeInitializer] = None,
        mask_shape: Optional[Sequence[int]] = None,
    ):
        super().__init__(graph, name)
        if not 0.0 <= p < 1.0:
            raise ValueError(f"dropout probability must be in [0, 1), got {p}")
        self.linear = Linear(graph, name, dim_out, use_bias, transposed, init)
        self.p = p
        self.mask_shape = tuple(mask_shape) if mask_shape is not None else None

    @property
    def weight(self) -> Optional[torch.Tensor]:
        return self.linear.weight

    @property
    def bias(self) -> Optional[torch.Tensor]:
        return self.linear.bias

    @property
    def dim_out(self) -> int:
        return self.linear.dim_out

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        output = self.linear.affine(x)

        if self.mode is Mode.EVAL:
            return torch.relu(output)
        return dropout_relu(output, self.p, self.mask_shape, self.graph.generator)

    def clear(self) -> None:
        self.linear.clear()
