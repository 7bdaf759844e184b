"""
SeqEmbed Corpus & Batching
===========================
Reads one text file per input stream (one sentence per line) and groups
sentences into padded batches.

Sentence ids are line numbers starting at 0. They travel with the batch
through the whole pipeline so that vectors computed out of order can still
be written under the right id.

Batch layout (B sentences, T = longest sentence in the batch):
    SubBatch.ids  : (B, T) int64, right-padded with the PAD id
    SubBatch.mask : (B, T) float32, 1 for real tokens, 0 for padding

Usage:
    >>> corpus = ParallelCorpus(["input.txt"], [vocab], max_length=128)
    >>> for batch in BatchGenerator(corpus, mini_batch=32):
    ...     print(batch.size(), batch.sentence_ids[:3])
"""

from __future__ import annotations

import logging
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

import torch
from torch.utils.data import IterableDataset

from seqembed.data.tokenizer import Vocab

logger = logging.getLogger(__name__)


@dataclass
class SubBatch:
    """Token ids and padding mask of one input stream."""
    ids: torch.Tensor
    mask: torch.Tensor

    @property
    def batch_size(self) -> int:
        return self.ids.shape[0]

    @property
    def max_length(self) -> int:
        return self.ids.shape[1]

    def to(self, device: torch.device) -> SubBatch:
        return SubBatch(self.ids.to(device), self.mask.to(device))


@dataclass
class SentenceBatch:
    """
    A batch of sentences with their original ids.

    ``streams`` holds one SubBatch per input stream (two in similarity
    mode); all streams have the same number of sentences.
    """
    sentence_ids: list[int]
    streams: list[SubBatch]

    def __post_init__(self) -> None:
        for stream in self.streams:
            if stream.batch_size != len(self.sentence_ids):
                raise ValueError(
                    f"Stream has {stream.batch_size} sentences, "
                    f"expected {len(self.sentence_ids)}"
                )

    def size(self) -> int:
        """Number of sentences (or sentence pairs)."""
        return len(self.sentence_ids)

    def to(self, device: torch.device) -> SentenceBatch:
        return SentenceBatch(list(self.sentence_ids), [s.to(device) for s in self.streams])


def pad_sequences(sequences: Sequence[list[int]], pad_id: int) -> SubBatch:
    """Right-pad token id lists into a SubBatch."""
    max_len = max(len(s) for s in sequences)
    ids = torch.full((len(sequences), max_len), pad_id, dtype=torch.long)
    mask = torch.zeros((len(sequences), max_len), dtype=torch.float32)
    for i, seq in enumerate(sequences):
        ids[i, : len(seq)] = torch.tensor(seq, dtype=torch.long)
        mask[i, : len(seq)] = 1.0
    return SubBatch(ids, mask)


class ParallelCorpus(IterableDataset):
    """
    Line-aligned text files, one per input stream.

    Iterating yields ``(sentence_id, [token ids per stream])``. Each
    iteration reopens the files, so the corpus can be read more than once.

    Parameters
    ----------
    paths : list of str
        Input files; "-" reads standard input (single-stream only).
    vocabs : list of Vocab
        One vocabulary per path.
    max_length : int
        Sentences are truncated to this many tokens (EOS included).

    Raises
    ------
    ValueError
        If paths and vocabs differ in number, or files differ in length.
    """

    def __init__(self, paths: Sequence[str], vocabs: Sequence[Vocab], max_length: int = 256):
        super().__init__()
        if len(paths) != len(vocabs):
            raise ValueError(
                f"Got {len(paths)} input file(s) but {len(vocabs)} vocabularies"
            )
        if not paths:
            raise ValueError("At least one input file is required")
        if "-" in paths and len(paths) > 1:
            raise ValueError("Standard input can only be used with a single stream")
        for path in paths:
            if path != "-" and not Path(path).exists():
                raise FileNotFoundError(f"Input file not found: {path}")

        self.paths = list(paths)
        self.vocabs = list(vocabs)
        self.max_length = max_length

    @property
    def n_streams(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[tuple[int, list[list[int]]]]:
        with ExitStack() as stack:
            handles = [
                sys.stdin if path == "-"
                else stack.enter_context(open(path, "r", encoding="utf-8"))
                for path in self.paths
            ]
            sentence_id = 0
            while True:
                lines = [handle.readline() for handle in handles]
                done = [line == "" for line in lines]
                if all(done):
                    break
                if any(done):
                    raise ValueError(
                        f"Input files have different numbers of lines "
                        f"(mismatch at line {sentence_id + 1})"
                    )
                encoded = [
                    vocab.encode(line.rstrip("\n"), self.max_length)
                    for vocab, line in zip(self.vocabs, lines)
                ]
                yield sentence_id, encoded
                sentence_id += 1

        logger.debug(f"Corpus exhausted after {sentence_id} sentences")


class BatchGenerator:
    """
    Groups corpus sentences into SentenceBatch objects of ``mini_batch``
    sentences; the last batch may be smaller.
    """

    def __init__(self, corpus: ParallelCorpus, mini_batch: int = 32):
        if mini_batch < 1:
            raise ValueError(f"mini_batch must be >= 1, got {mini_batch}")
        self.corpus = corpus
        self.mini_batch = mini_batch

    def _make_batch(self, items: list[tuple[int, list[list[int]]]]) -> SentenceBatch:
        ids = [sentence_id for sentence_id, _ in items]
        streams = [
            pad_sequences([encoded[k] for _, encoded in items], vocab.pad_id)
            for k, vocab in enumerate(self.corpus.vocabs)
        ]
        return SentenceBatch(ids, streams)

    def __iter__(self) -> Iterator[SentenceBatch]:
        pending: list[tuple[int, list[list[int]]]] = []
        for item in self.corpus:
            pending.append(item)
            if len(pending) == self.mini_batch:
                yield self._make_batch(pending)
                pending = []
        if pending:
            yield self._make_batch(pending)
