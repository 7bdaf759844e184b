"""
SeqEmbed Poolers
=================
Models that reduce encoder states to one output row per sentence.

    EncoderPooler     one input stream  → (B, dim_emb) sentence vectors
    SimilarityPooler  two input streams → (B, 1) cosine similarity
    EncoderModel      bare encoder, per-token states only

The embedder only needs "something with ``n_streams`` and ``apply``", so
the poolers are matched against the ``Pooler`` protocol rather than a base
class. ``EncoderModel`` does not satisfy it.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import torch
import torch.nn.functional as F

from seqembed.config import ModelConfig
from seqembed.data.corpus import SubBatch
from seqembed.graph.graph import Graph
from seqembed.layers import Layer
from seqembed.model.encoder import TransformerEncoder

logger = logging.getLogger(__name__)


@runtime_checkable
class Pooler(Protocol):
    """A model producing one row per sentence from ``n_streams`` sub-batches."""

    n_streams: int

    def apply(self, *streams: SubBatch) -> torch.Tensor:
        ...


def pool_states(states: torch.Tensor, mask: torch.Tensor, pooling: str = "mean") -> torch.Tensor:
    """
    Reduce (B, T, D) states to (B, D) ignoring padded positions.

    Parameters
    ----------
    states : torch.Tensor
        Encoder output, shape (batch, seq_len, dim).
    mask : torch.Tensor
        Shape (batch, seq_len, 1), 1 for real tokens.
    pooling : str
        "mean", "max" or "first".

    Returns
    -------
    torch.Tensor
        Shape (batch, dim), same dtype as ``states``.
    """
    h = states.float()
    m = mask.float()
    if pooling == "mean":
        pooled = (h * m).sum(dim=1) / m.sum(dim=1).clamp_min(1.0)
    elif pooling == "max":
        pooled = h.masked_fill(m == 0, float("-inf")).max(dim=1).values
    elif pooling == "first":
        pooled = h[:, 0, :]
    else:
        raise ValueError(f"Unknown pooling '{pooling}'. Choose from: mean, max, first")
    return pooled.to(states.dtype)


class EncoderPooler(Layer):
    """
    Encoder followed by pooling; one vector per sentence.

    With ``config.normalize`` the vectors are L2-normalized (in float32).
    """

    n_streams = 1

    def __init__(self, graph: Graph, config: ModelConfig, name: str = "encoder"):
        super().__init__(graph, name)
        self.config = config
        self.encoder = TransformerEncoder(graph, config, name)

    def embed(self, batch: SubBatch) -> torch.Tensor:
        states, mask = self.encoder(batch)
        pooled = pool_states(states, mask, self.config.pooling)
        if self.config.normalize:
            pooled = F.normalize(pooled.float(), p=2.0, dim=-1).to(pooled.dtype)
        return pooled

    def apply(self, *streams: SubBatch) -> torch.Tensor:
        if len(streams) != self.n_streams:
            raise ValueError(f"EncoderPooler takes 1 input stream, got {len(streams)}")
        return self.embed(streams[0])

    def clear(self) -> None:
        self.encoder.clear()


class SimilarityPooler(Layer):
    """
    Two encoder-poolers compared with cosine similarity.

    With ``config.tied_encoders`` both sides are built under the same name
    and therefore bind the same parameters; otherwise they are "encoder1"
    and "encoder2".

    Returns
    -------
    torch.Tensor
        Shape (batch, 1): one score per sentence pair.
    """

    n_streams = 2

    def __init__(self, graph: Graph, config: ModelConfig, name: str = "encoder"):
        super().__init__(graph, name)
        self.config = config
        if config.tied_encoders:
            names = (name, name)
        else:
            names = (f"{name}1", f"{name}2")
        self.poolers = [EncoderPooler(graph, config, n) for n in names]

    def apply(self, *streams: SubBatch) -> torch.Tensor:
        if len(streams) != self.n_streams:
            raise ValueError(f"SimilarityPooler takes 2 input streams, got {len(streams)}")
        left = self.poolers[0].embed(streams[0])
        right = self.poolers[1].embed(streams[1])
        score = F.cosine_similarity(left.float(), right.float(), dim=-1, eps=1e-8)
        return score.unsqueeze(-1).to(left.dtype)

    def clear(self) -> None:
        for pooler in self.poolers:
            pooler.clear()


class EncoderModel(Layer):
    """Bare encoder returning per-token states and the padding mask."""

    def __init__(self, graph: Graph, config: ModelConfig, name: str = "encoder"):
        super().__init__(graph, name)
        self.encoder = TransformerEncoder(graph, config, name)

    def apply(self, batch: SubBatch) -> tuple[torch.Tensor, torch.Tensor]:
        return self.encoder(batch)

    def clear(self) -> None:
        self.encoder.clear()
