"""
Per-replica embedder: one model bound to one graph.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import torch

from seqembed.config import EmbedConfig, ModelConfig
from seqembed.data.corpus import SentenceBatch
from seqembed.graph.graph import Graph, Mode
from seqembed.model.factory import create_model
from seqembed.model.pooler import Pooler
from seqembed.model.weights import ModelWeights

logger = logging.getLogger(__name__)

ModelFactory = Callable[[Graph, ModelConfig, str], Pooler]


def usage_for(config: EmbedConfig) -> str:
    """"similarity" when sentence pairs are scored, else "embedding"."""
    return "similarity" if config.inference.compute_similarity else "embedding"


class Embedder:
    """
    Builds the forward computation of a batch on one graph.

    Parameters
    ----------
    config : EmbedConfig
        Model and inference settings.
    graph : Graph
        The replica's graph. Only one thread may use an Embedder at a time.
    model_factory : callable
        ``(graph, model_config, usage) -> Pooler``. Defaults to
        ``create_model``.
    """

    def __init__(
        self,
        config: EmbedConfig,
        graph: Graph,
        model_factory: Optional[ModelFactory] = None,
    ):
        self.config = config
        self.graph = graph
        self.usage = usage_for(config)
        factory = model_factory if model_factory is not None else create_model
        self.model = factory(graph, config.model, self.usage)

    def load(self, weights: Optional[ModelWeights]) -> int:
        """
        Copy shared weights into the graph. Without weights, parameters
        are initialized from the graph's seeded generator on first use.
        """
        if weights is None:
            logger.warning(f"No weights given, {self.graph.device} uses random parameters")
            return 0
        return self.graph.load(weights.tensors())

    def build(self, batch: SentenceBatch) -> torch.Tensor:
        """
        Run the model on ``batch``.

        Returns
        -------
        torch.Tensor
            (batch, dim_emb) vectors, or (batch, 1) scores in similarity
            mode, in the graph's element type.
        """
        batch = batch.to(self.graph.device)
        with torch.no_grad(), self.graph.mode_scope(Mode.EVAL):
            return self.model.apply(*batch.streams)
