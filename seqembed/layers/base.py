"""
Layer Base
===========
Every layer is a small object bound to a Graph and a name. Layers do not
know their parameter shapes until they see their first input; at that
point ``register_lazy`` asks the graph for the parameter under
``"<layer name>.<slot>"``.

Binding protocol (per slot):

    unbound (None)  ──first apply──▶  bound with shape S
    bound with S    ──apply, shape S──▶  unchanged (no-op)
    bound with S    ──apply, shape S'──▶ ShapeMismatchError

Layers are composed by capability, not by class: anything with an
``apply(x) -> Tensor`` method satisfies ``UnaryLayer`` and can be placed in
a ``Sequential``.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, runtime_checkable

import torch

from seqembed.errors import ShapeMismatchError
from seqembed.graph.graph import Graph, Mode
from seqembed.graph.initializers import NodeInitializer

logger = logging.getLogger(__name__)


@runtime_checkable
class UnaryLayer(Protocol):
    """Anything that maps one tensor to one tensor."""

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        ...


class Layer:
    """
    Common state of all layers: the owning graph and a unique name.

    Parameters
    ----------
    graph : Graph
        Graph that owns this layer's parameters.
    name : str
        Prefix for parameter names. Two layers with the same name on the
        same graph share parameters.
    """

    def __init__(self, graph: Graph, name: str):
        self.graph = graph
        self.name = name
        self._lazy_slots: list[str] = []

    @property
    def mode(self) -> Mode:
        return self.graph.mode

    def register_lazy(
        self,
        slot: str,
        shape: Sequence[int],
        init: Optional[NodeInitializer],
    ) -> torch.Tensor:
        """
        Bind ``self.<slot>`` to a graph parameter of ``shape`` if unbound.

        Raises
        ------
        ShapeMismatchError
            If the slot is already bound with a different shape.
        """
        shape = tuple(int(s) for s in shape)
        current = getattr(self, slot, None)
        if current is not None:
            if tuple(current.shape) != shape:
                raise ShapeMismatchError(f"{self.name}.{slot}", current.shape, shape)
            return current

        param = self.graph.param(f"{self.name}.{slot}", shape, init)
        setattr(self, slot, param)
        self._lazy_slots.append(slot)
        return param

    def clear(self) -> None:
        """Drop lazily bound parameter references (tied weights are kept)."""
        for slot in self._lazy_slots:
            setattr(self, slot, None)
        self._lazy_slots.clear()

    def apply(self, *args, **kwargs):
        raise NotImplementedError

    def __call__(self, *args, **kwargs):
        return self.apply(*args, **kwargs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class Sequential(Layer):
    """Applies unary layers one after the other."""

    def __init__(self, graph: Graph, name: str, layers: Sequence[UnaryLayer]):
        super().__init__(graph, name)
        self.layers = list(layers)

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        for layer in self.layers:
            x = layer.apply(x)
        return x

    def clear(self) -> None:
        super().clear()
        for layer in self.layers:
            if isinstance(layer, Layer):
                layer.clear()

    def __len__(self) -> int:
        return len(self.layers)
