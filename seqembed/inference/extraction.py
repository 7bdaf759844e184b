"""
Output extraction.

Turns a realized model output of shape (batch, emb_size) into host-side
float32 vectors, one per sentence. Half-precision outputs are read into a
float16 buffer first and widened, so every record downstream is float32
regardless of the precision the replica ran in.
"""

from __future__ import annotations

import numpy as np
import torch

from seqembed.errors import UnsupportedPrecisionError


def extract_vectors(output: torch.Tensor) -> np.ndarray:
    """
    Copy ``output`` to the host as a flat float32 array.

    Parameters
    ----------
    output : torch.Tensor
        Realized model output (call ``Graph.forward()`` first).

    Returns
    -------
    np.ndarray
        1-d float32 array of ``output.numel()`` values, row-major.

    Raises
    ------
    UnsupportedPrecisionError
        If ``output`` is neither float32 nor float16.
    """
    flat = output.detach().reshape(-1).cpu()

    if output.dtype == torch.float32:
        return flat.numpy().copy()

    if output.dtype == torch.float16:
        buffer = np.empty(flat.numel(), dtype=np.float16)
        buffer[:] = flat.numpy()
        return buffer.astype(np.float32)

    raise UnsupportedPrecisionError(output.dtype)


def split_sentence_vectors(flat: np.ndarray, emb_size: int) -> list[np.ndarray]:
    """
    Slice a flat output buffer into per-sentence vectors.

    Sentence ``i`` is ``flat[i * emb_size:(i + 1) * emb_size]``.
    """
    if emb_size <= 0:
        raise ValueError(f"emb_size must be positive, got {emb_size}")
    if flat.size % emb_size != 0:
        raise ValueError(
            f"Output of {flat.size} values is not a whole number of "
            f"{emb_size}-dim vectors"
        )
    return [flat[i * emb_size:(i + 1) * emb_size] for i in range(flat.size // emb_size)]
