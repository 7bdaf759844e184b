"""
Dropout kernels shared by the Dropout and LinearReluDropout layers.

The keep-mask has shape ``mask_shape`` and is broadcast over the leading
dimensions of the input, so with the default ``x.shape[-2:]`` every item of
a batch sees the same mask.
"""

from __future__ import annotations

from typing import Optional, Sequence

import torch


def _keep_mask(
    like: torch.Tensor,
    p: float,
    mask_shape: Sequence[int],
    generator: Optional[torch.Generator],
) -> torch.Tensor:
    probs = torch.full(tuple(mask_shape), 1.0 - p, dtype=torch.float32, device=like.device)
    keep = torch.bernoulli(probs, generator=generator)
    # Survivors are scaled by 1/(1-p)
    return (keep / (1.0 - p)).to(like.dtype)


def dropout(
    x: torch.Tensor,
    p: float,
    mask_shape: Optional[Sequence[int]] = None,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """Zero elements with probability ``p`` and rescale the rest."""
    if p <= 0.0:
        return x
    if mask_shape is None:
        mask_shape = tuple(x.shape[-2:])
    return x * _keep_mask(x, p, mask_shape, generator)


def dropout_relu(
    x: torch.Tensor,
    p: float,
    mask_shape: Optional[Sequence[int]] = None,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """ReLU followed by dropout, in a single elementwise product."""
    if p <= 0.0:
        return torch.relu(x)
    if mask_shape is None:
        mask_shape = tuple(x.shape[-2:])
    return torch.relu(x) * _keep_mask(x, p, mask_shape, generator)
