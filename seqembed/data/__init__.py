"""
seqembed.data — Vocabularies & Batching
========================================
    - tokenizer.py — Vocab (tokenizers JSON files, word-level building)
    - corpus.py    — ParallelCorpus, SentenceBatch, BatchGenerator
"""

from seqembed.data.tokenizer import Vocab
from seqembed.data.corpus import (
    SubBatch,
    SentenceBatch,
    ParallelCorpus,
    BatchGenerator,
    pad_sequences,
)
