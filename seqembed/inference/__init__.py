"""
seqembed.inference — Multi-Device Embedding Pipeline
=====================================================
    - embedder.py   — Embedder: one model on one graph
    - replicas.py   — ReplicaPool: concurrent per-device loading
    - dispatch.py   — BatchDispatcher: bounded fan-out over replicas
    - extraction.py — float32/float16 output extraction
    - collector.py  — VectorCollector (text/binary), read_vectors
    - embed.py      — EmbedTask: the end-to-end run
    - metrics.py    — Timer
"""

from seqembed.inference.embedder import Embedder
from seqembed.inference.replicas import Replica, ReplicaPool
from seqembed.inference.dispatch import BatchDispatcher
from seqembed.inference.extraction import extract_vectors, split_sentence_vectors
from seqembed.inference.collector import VectorCollector, read_vectors
from seqembed.inference.embed import EmbedTask
from seqembed.inference.metrics import Timer
