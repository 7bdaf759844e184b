"""
Attention mask helpers.

Attention scores are computed with batch and head axes merged into one
axis of size ``batch * heads``. ``transposed_log_mask`` turns a 1/0 padding
mask into the matching additive mask for that layout.
"""

from __future__ import annotations

from typing import Optional

import torch

# Lower bound of the additive mask; float32 would otherwise use ~-1.7e38
MASK_FLOOR = -99999999.0


def atleast_4d(x: torch.Tensor) -> torch.Tensor:
    while x.dim() < 4:
        x = x.unsqueeze(0)
    return x


def swap_time_batch(x: torch.Tensor) -> torch.Tensor:
    """Swap the time and batch axes (-2 and -3) of an at-least-4d view of ``x``."""
    return atleast_4d(x).transpose(-2, -3)


def mask_factor(dtype: torch.dtype) -> float:
    """Large negative value that stays finite in ``dtype``."""
    return max(torch.finfo(dtype).min / 2.0, MASK_FLOOR)


def transposed_log_mask(mask: Optional[torch.Tensor], num_heads: int) -> Optional[torch.Tensor]:
    """
    Convert a multiplicative mask into an additive log-mask.

    Parameters
    ----------
    mask : torch.Tensor or None
        Shape (batch, src_len, 1); 1 = attend, 0 = ignore.
    num_heads : int
        Number of attention heads.

    Returns
    -------
    torch.Tensor or None
        Shape (1, batch * num_heads, 1, src_len), same dtype as ``mask``:
        0 where attention is allowed, a large negative value elsewhere.
    """
    if mask is None:
        return None

    dim_batch = mask.shape[-3]
    dim_src_words = mask.shape[-2]
    mask = mask.reshape(dim_batch, 1, 1, dim_src_words)

    log_mask = (1 - mask) * mask_factor(mask.dtype)
    log_mask = log_mask.repeat_interleave(num_heads, dim=-3)
    return log_mask.reshape(1, dim_batch * num_heads, 1, dim_src_words)
