"""
SeqEmbed Embedding Task
========================
End-to-end embedding run:

    1. Validate the configuration and check that the configured model can
       produce sentence vectors (or pair scores with compute_similarity)
    2. Load the vocabularies and open the input files
    3. Load one replica per device
    4. Dispatch batches, write vectors, report the wall time

Usage:
    >>> config = EmbedConfig.from_yaml("configs/default.yaml")
    >>> n_sentences = EmbedTask(config).run()
"""

from __future__ import annotations

import logging
from typing import Optional

from tqdm import tqdm

from seqembed.config import EmbedConfig
from seqembed.data.corpus import BatchGenerator, ParallelCorpus
from seqembed.data.tokenizer import Vocab
from seqembed.graph.graph import Graph
from seqembed.inference.collector import VectorCollector
from seqembed.inference.dispatch import BatchDispatcher
from seqembed.inference.embedder import ModelFactory, usage_for
from seqembed.inference.metrics import Timer
from seqembed.inference.replicas import ReplicaPool
from seqembed.model.factory import create_model
from seqembed.model.weights import ModelWeights

logger = logging.getLogger(__name__)


class EmbedTask:
    """
    Embeds (or scores) every sentence of the configured inputs.

    Parameters
    ----------
    config : EmbedConfig
        Full configuration. With compute_similarity a single vocabulary is
        reused for both inputs.
    model_factory : callable or None
        Overrides ``create_model`` for every replica.
    load_weights : bool
        Read ``inference.model_path``. When False, replicas keep their
        seeded random parameters.
    """

    def __init__(
        self,
        config: EmbedConfig,
        model_factory: Optional[ModelFactory] = None,
        load_weights: bool = True,
    ):
        self.config = config.with_similarity_inputs()
        self.config.validate()
        self.model_factory = model_factory
        self.load_weights = load_weights
        self.usage = usage_for(self.config)

        # Construction binds nothing, so a CPU graph is enough to find out
        # whether the model type can serve this run.
        factory = model_factory if model_factory is not None else create_model
        factory(Graph("cpu"), self.config.model, self.usage)

    def run(self) -> int:
        """
        Run the embedding.

        Returns
        -------
        int
            Number of records written.

        Raises
        ------
        FileNotFoundError
            If a vocabulary, input or weights file is missing.
        ValueError
            If a vocabulary is larger than the model's embedding table.
        ReplicaLoadError
            If a replica fails to load.
        """
        inference = self.config.inference
        n_streams = len(inference.inputs)

        vocabs = [Vocab.load(path) for path in inference.vocabs[:n_streams]]
        dim_vocab = self.config.model.dim_vocab
        for k, vocab in enumerate(vocabs):
            if vocab.size > dim_vocab:
                raise ValueError(
                    f"Vocabulary for input {k} ({inference.vocabs[k]}) has "
                    f"{vocab.size} entries, but the model's dim_vocab is {dim_vocab}"
                )
        corpus = ParallelCorpus(inference.inputs, vocabs, inference.max_length)
        batches = BatchGenerator(corpus, inference.mini_batch)

        weights = ModelWeights(inference.model_path) if self.load_weights else None
        pool = ReplicaPool(self.config, weights, self.model_factory)

        logger.info(f"Embedding ({self.usage}) with {pool}")
        with Timer("Embedding", log=False) as timer:
            with VectorCollector(inference.output, inference.binary, inference.ordered_output) as collector, \
                    tqdm(desc="Embedding", unit="sent", disable=None) as progress:
                dispatcher = BatchDispatcher(pool, collector, progress=progress.update)
                n_written = dispatcher.run(batches)

        logger.info(f"Total time: {timer.format()}")
        return n_written
