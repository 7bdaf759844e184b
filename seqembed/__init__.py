"""
SeqEmbed
========
Sentence embeddings from transformer encoders, computed concurrently on a
pool of device replicas.

This package provides:
    1. A small layer framework whose parameters are created lazily, the
       first time a layer sees an input
    2. Encoder + pooler models built from those layers
    3. A multi-device inference pipeline that writes one vector per
       sentence (or one similarity score per sentence pair)

Quick Start:
    >>> from seqembed.config import EmbedConfig
    >>> from seqembed.inference.embed import EmbedTask
    >>> config = EmbedConfig.from_yaml("configs/default.yaml")
    >>> EmbedTask(config).run()

Subpackages:
    - seqembed.graph     — Graph (parameter store, device, dtype, mode) and initializers
    - seqembed.layers    — Linear, fused Linear+ReLU+Dropout, Dropout, norms, activations
    - seqembed.model     — Transformer encoder, poolers, weights I/O
    - seqembed.data      — Vocabularies, parallel corpus and batching
    - seqembed.inference — Replica pool, dispatcher, extraction, output collector
"""

__version__ = "0.1.0"
