"""
Activation layers.

``Activation`` wraps any unary tensor function; the named subclasses cover
the activations used in encoder feed-forward blocks:

    >>> relu = ReLU(graph)
    >>> gelu_approx = Activation(graph, lambda x: x * torch.sigmoid(1.702 * x))
"""

from __future__ import annotations

from typing import Callable

import torch
import torch.nn.functional as F

from seqembed.graph.graph import Graph
from seqembed.layers.base import Layer


class Activation(Layer):
    """Applies ``act_fn`` elementwise. Holds no parameters."""

    def __init__(
        self,
        graph: Graph,
        act_fn: Callable[[torch.Tensor], torch.Tensor],
        name: str = "activation",
    ):
        super().__init__(graph, name)
        self.act_fn = act_fn

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        return self.act_fn(x)


class ReLU(Activation):
    def __init__(self, graph: Graph, name: str = "relu"):
        super().__init__(graph, torch.relu, name)


class GELU(Activation):
    def __init__(self, graph: Graph, name: str = "gelu"):
        super().__init__(graph, F.gelu, name)


class Tanh(Activation):
    def __init__(self, graph: Graph, name: str = "tanh"):
        super().__init__(graph, torch.tanh, name)


class Sigmoid(Activation):
    def __init__(self, graph: Graph, name: str = "sigmoid"):
        super().__init__(graph, torch.sigmoid, name)


class Swish(Activation):
    def __init__(self, graph: Graph, name: str = "swish"):
        super().__init__(graph, F.silu, name)


_ACTIVATIONS = {
    "relu": ReLU,
    "gelu": GELU,
    "tanh": Tanh,
    "sigmoid": Sigmoid,
    "swish": Swish,
}


def activation_by_name(graph: Graph, name: str) -> Activation:
    """
    Build an activation layer from its name.

    Raises
    ------
    ValueError
        If the name is unknown.
    """
    try:
        return _ACTIVATIONS[name](graph)
    except KeyError:
        raise ValueError(
            f"Unknown activation '{name}'. Choose from: {', '.join(_ACTIVATIONS)}"
        ) from None
