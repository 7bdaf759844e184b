"""
SeqEmbed Transformer Encoder
=============================
A post-norm transformer encoder assembled from the lazy layer framework.
Nothing here allocates parameters directly: every weight is bound on the
first forward pass under a name derived from the encoder prefix, e.g.

    encoder.embedding.weight
    encoder.layers.0.attention.q.weight
    encoder.layers.0.ffn1.weight
    encoder.layers.0.norm1.weight

so a graph pre-populated from a weights file picks the stored values up by
name, and two encoders built with the same prefix share their weights.

Per layer:
    x = norm1(x + dropout(attention(x, mask)))
    x = norm2(x + dropout(ffn(x)))

Attention runs with batch and head axes merged into one axis of size
batch * heads, which is the layout ``transposed_log_mask`` produces.

Usage:
    >>> encoder = TransformerEncoder(graph, config.model, name="encoder")
    >>> states, mask = encoder(sub_batch)   # (B, T, D), (B, T, 1)
"""

from __future__ import annotations

import math
import logging
from typing import Optional

import torch
import torch.nn.functional as F

from seqembed.config import ModelConfig
from seqembed.data.corpus import SubBatch
from seqembed.graph import initializers as inits
from seqembed.graph.graph import Graph
from seqembed.layers import (
    Dropout,
    Layer,
    Linear,
    LinearReluDropout,
    Sequential,
    activation_by_name,
    norm_by_name,
    transposed_log_mask,
)

logger = logging.getLogger(__name__)


def sinusoidal_positions(
    length: int,
    dim: int,
    dtype: torch.dtype = torch.float32,
    device: Optional[torch.device] = None,
) -> torch.Tensor:
    """
    Fixed sinusoidal position table of shape (length, dim).

    Even columns hold sin, odd columns cos. Computed in float32 and cast.
    """
    position = torch.arange(0, length, dtype=torch.float32, device=device).unsqueeze(1)
    div_term = torch.exp(
        torch.arange(0, dim, 2, dtype=torch.float32, device=device)
        * (-math.log(10000.0) / dim)
    )
    table = torch.zeros(length, dim, dtype=torch.float32, device=device)
    table[:, 0::2] = torch.sin(position * div_term)
    table[:, 1::2] = torch.cos(position * div_term)
    return table.to(dtype)


class Embedding(Layer):
    """
    Token embedding lookup, scaled by sqrt(dim_emb).

    The table shape is known up front, (dim_vocab, dim_emb), but it is
    still bound lazily so that loaded weights take precedence.
    """

    def __init__(self, graph: Graph, name: str, dim_vocab: int, dim_emb: int):
        super().__init__(graph, name)
        self.dim_vocab = dim_vocab
        self.dim_emb = dim_emb
        self.weight: Optional[torch.Tensor] = None

    def apply(self, ids: torch.Tensor) -> torch.Tensor:
        weight = self.register_lazy(
            "weight",
            (self.dim_vocab, self.dim_emb),
            inits.normal(0.0, self.dim_emb ** -0.5),
        )
        return F.embedding(ids, weight) * math.sqrt(self.dim_emb)


class MultiHeadSelfAttention(Layer):
    """
    Multi-head self-attention with an additive padding mask.

    Parameters
    ----------
    graph : Graph
        Owning graph.
    name : str
        Parameter prefix for the q/k/v/o projections.
    dim_emb : int
        Model dimension.
    n_heads : int
        Number of heads; must divide dim_emb.
    dropout : float
        Dropout on the attention weights (train mode only).
    """

    def __init__(self, graph: Graph, name: str, dim_emb: int, n_heads: int, dropout: float = 0.0):
        super().__init__(graph, name)
        if dim_emb % n_heads != 0:
            raise ValueError(f"dim_emb ({dim_emb}) must be divisible by n_heads ({n_heads})")
        self.dim_emb = dim_emb
        self.n_heads = n_heads
        self.head_dim = dim_emb // n_heads

        self.q_proj = Linear(graph, f"{name}.q", dim_emb)
        self.k_proj = Linear(graph, f"{name}.k", dim_emb)
        self.v_proj = Linear(graph, f"{name}.v", dim_emb)
        self.o_proj = Linear(graph, f"{name}.o", dim_emb)
        self.attn_dropout = Dropout(graph, dropout, name=f"{name}.dropout")

    def _split_heads(self, x: torch.Tensor) -> torch.Tensor:
        # (B, T, D) → (1, B*H, T, dh)
        batch, length, _ = x.shape
        x = x.reshape(batch, length, self.n_heads, self.head_dim).permute(0, 2, 1, 3)
        return x.reshape(1, batch * self.n_heads, length, self.head_dim)

    def _join_heads(self, x: torch.Tensor, batch: int) -> torch.Tensor:
        # (1, B*H, T, dh) → (B, T, D)
        length = x.shape[-2]
        x = x.reshape(batch, self.n_heads, length, self.head_dim).permute(0, 2, 1, 3)
        return x.reshape(batch, length, self.dim_emb)

    def apply(self, x: torch.Tensor, mask: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Parameters
        ----------
        x : torch.Tensor
            Shape (batch, seq_len, dim_emb).
        mask : torch.Tensor or None
            Shape (batch, seq_len, 1), 1 = attend, 0 = padding.

        Returns
        -------
        torch.Tensor
            Same shape as ``x``.
        """
        batch = x.shape[0]
        q = self._split_heads(self.q_proj(x))
        k = self._split_heads(self.k_proj(x))
        v = self._split_heads(self.v_proj(x))

        scores = torch.matmul(q, k.transpose(-2, -1)) / math.sqrt(self.head_dim)
        log_mask = transposed_log_mask(mask, self.n_heads)
        if log_mask is not None:
            scores = scores + log_mask.to(scores.dtype)

        weights = torch.softmax(scores.float(), dim=-1).to(x.dtype)
        weights = self.attn_dropout(weights)

        context = torch.matmul(weights, v)
        return self.o_proj(self._join_heads(context, batch))

    def clear(self) -> None:
        for layer in (self.q_proj, self.k_proj, self.v_proj, self.o_proj):
            layer.clear()


class FeedForward(Layer):
    """
    Position-wise feed-forward block: dim_emb → dim_ffn → dim_emb.

    With the "relu" activation the first projection is the fused
    LinearReluDropout; any other activation is Linear, Activation and
    Dropout in sequence.
    """

    def __init__(
        self,
        graph: Graph,
        name: str,
        dim_emb: int,
        dim_ffn: int,
        activation: str = "relu",
        dropout: float = 0.0,
    ):
        super().__init__(graph, name)
        if activation == "relu":
            self.inner = LinearReluDropout(graph, f"{name}1", dim_ffn, dropout)
        else:
            self.inner = Sequential(graph, f"{name}1", [
                Linear(graph, f"{name}1", dim_ffn),
                activation_by_name(graph, activation),
                Dropout(graph, dropout, name=f"{name}1.dropout"),
            ])
        self.outer = Linear(graph, f"{name}2", dim_emb)

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        return self.outer(self.inner(x))

    def clear(self) -> None:
        self.inner.clear()
        self.outer.clear()


class EncoderLayer(Layer):
    """One post-norm transformer block."""

    def __init__(self, graph: Graph, name: str, config: ModelConfig):
        super().__init__(graph, name)
        self.attention = MultiHeadSelfAttention(
            graph, f"{name}.attention", config.dim_emb, config.n_heads, config.dropout
        )
        self.ffn = FeedForward(
            graph, f"{name}.ffn", config.dim_emb, config.dim_ffn,
            config.ffn_activation, config.dropout,
        )
        self.norm1 = norm_by_name(graph, f"{name}.norm1", config.norm, config.norm_eps)
        self.norm2 = norm_by_name(graph, f"{name}.norm2", config.norm, config.norm_eps)
        self.dropout1 = Dropout(graph, config.dropout, name=f"{name}.dropout1")
        self.dropout2 = Dropout(graph, config.dropout, name=f"{name}.dropout2")

    def apply(self, x: torch.Tensor, mask: Optional[torch.Tensor] = None) -> torch.Tensor:
        x = self.norm1(x + self.dropout1(self.attention(x, mask)))
        x = self.norm2(x + self.dropout2(self.ffn(x)))
        return x

    def clear(self) -> None:
        for layer in (self.attention, self.ffn, self.norm1, self.norm2):
            layer.clear()


class TransformerEncoder(Layer):
    """
    Embedding, sinusoidal positions and ``n_layers`` encoder blocks.

    Parameters
    ----------
    graph : Graph
        Owning graph. Token ids and masks are moved to its device.
    config : ModelConfig
        Architecture hyperparameters.
    name : str
        Parameter prefix. Encoders with equal names share parameters.
    """

    def __init__(self, graph: Graph, config: ModelConfig, name: str = "encoder"):
        super().__init__(graph, name)
        self.config = config
        self.embedding = Embedding(graph, f"{name}.embedding", config.dim_vocab, config.dim_emb)
        self.emb_dropout = Dropout(graph, config.dropout, name=f"{name}.emb_dropout")
        self.layers = [
            EncoderLayer(graph, f"{name}.layers.{i}", config)
            for i in range(config.n_layers)
        ]

    def apply(self, batch: SubBatch) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Encode one input stream.

        Returns
        -------
        states : torch.Tensor
            Shape (batch, seq_len, dim_emb), graph dtype.
        mask : torch.Tensor
            Shape (batch, seq_len, 1), graph dtype; 1 for real tokens.
        """
        ids = batch.ids.to(self.graph.device)
        mask = batch.mask.to(device=self.graph.device, dtype=self.graph.dtype).unsqueeze(-1)

        x = self.embedding(ids).to(self.graph.dtype)
        positions = sinusoidal_positions(
            ids.shape[1], self.config.dim_emb, self.graph.dtype, self.graph.device
        )
        x = self.emb_dropout(x + positions)

        for layer in self.layers:
            x = layer(x, mask)
        return x, mask

    def clear(self) -> None:
        self.embedding.clear()
        for layer in self.layers:
            layer.clear()
