"""
Parameter Initializers
=======================
Factories returning functions that fill a freshly allocated parameter
tensor in place. The graph calls them exactly once per parameter, the
first time a layer asks for it.

Every initializer has the signature ``init(tensor, generator)`` so the
graph can pass its own seeded ``torch.Generator`` and keep parameter
creation reproducible per replica.

Usage:
    >>> init = glorot_uniform()
    >>> w = torch.empty(16, 32)
    >>> init(w, torch.Generator().manual_seed(0))
"""

from __future__ import annotations

from typing import Callable, Optional

import torch
import torch.nn as nn

NodeInitializer = Callable[[torch.Tensor, Optional[torch.Generator]], None]


def glorot_uniform(gain: float = 1.0) -> NodeInitializer:
    """Xavier/Glorot uniform initialization (default for weight matrices)."""
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        nn.init.xavier_uniform_(tensor, gain=gain, generator=generator)
    return init


def normal(mean: float = 0.0, std: float = 0.02) -> NodeInitializer:
    """Normal distribution, used for embedding tables."""
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        nn.init.normal_(tensor, mean=mean, std=std, generator=generator)
    return init


def uniform(a: float = -0.1, b: float = 0.1) -> NodeInitializer:
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        nn.init.uniform_(tensor, a=a, b=b, generator=generator)
    return init


def zeros() -> NodeInitializer:
    """All zeros (biases, norm shifts)."""
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        nn.init.zeros_(tensor)
    return init


def ones() -> NodeInitializer:
    """All ones (norm scales)."""
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        nn.init.ones_(tensor)
    return init


def from_value(value: torch.Tensor) -> NodeInitializer:
    """Copy a given tensor. Its shape must match the requested shape."""
    def init(tensor: torch.Tensor, generator: Optional[torch.Generator] = None) -> None:
        if tuple(value.shape) != tuple(tensor.shape):
            raise ValueError(
                f"Initial value has shape {tuple(value.shape)}, "
                f"expected {tuple(tensor.shape)}"
            )
        tensor.copy_(value)
    return init
