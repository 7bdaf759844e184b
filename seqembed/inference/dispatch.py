"""
SeqEmbed Batch Dispatcher
==========================
Fans a stream of batches out over the replica pool.

Every batch moves through the same stages:

    Queued → Dispatched → Forwarded → Extracted → Written

The calling thread numbers the batches and puts them on a bounded queue
(capacity = number of replicas), so reading the input never runs far
ahead of the devices. One worker thread per replica takes batches off the
queue. The worker ↔ replica table is fixed when the workers start:
worker ``i`` only ever drives replica ``i``, so a replica's graph is never
touched by two threads.

Batches finish in any order. The collector writes each record under its
sentence id, so the output does not depend on that order.

The first failing batch stops the run: the remaining workers drain and
exit, and the error is re-raised from ``run()``.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional, Sequence

from seqembed.data.corpus import SentenceBatch
from seqembed.inference.collector import VectorCollector
from seqembed.inference.extraction import extract_vectors, split_sentence_vectors
from seqembed.inference.replicas import Replica

logger = logging.getLogger(__name__)

# Marks the end of the batch stream for one worker
_SENTINEL = object()

_POLL_SECONDS = 0.05


class BatchDispatcher:
    """
    Runs batches on a fixed set of replicas and writes their vectors.

    Parameters
    ----------
    replicas : sequence of Replica
        Typically a ``ReplicaPool``. One worker is started per replica.
    collector : VectorCollector
        Open output sink.
    progress : callable or None
        Called with the number of sentences of every finished batch, from
        the worker thread that finished it.
    """

    def __init__(
        self,
        replicas: Sequence[Replica],
        collector: VectorCollector,
        progress: Optional[Callable[[int], object]] = None,
    ):
        self.replicas = list(replicas)
        if not self.replicas:
            raise ValueError("BatchDispatcher needs at least one replica")
        self.collector = collector
        self.progress = progress

        # worker i → replica i, fixed for the lifetime of the dispatcher
        self.assignment: dict[int, Replica] = dict(enumerate(self.replicas))

        self._queue: queue.Queue = queue.Queue(maxsize=len(self.replicas))
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._n_sentences = 0
        self._n_batches = 0

    # ─── Per-batch work ─────────────────────────────────────────────────

    def process(self, replica: Replica, task_index: int, batch: SentenceBatch) -> int:
        """Forward, extract and write one batch on ``replica``."""
        output = replica.embedder.build(batch)
        replica.graph.forward()

        flat = extract_vectors(output)
        vectors = split_sentence_vectors(flat, output.shape[-1])
        if len(vectors) != batch.size():
            raise ValueError(
                f"Batch {task_index} produced {len(vectors)} vectors "
                f"for {batch.size()} sentences"
            )
        for sentence_id, vector in zip(batch.sentence_ids, vectors):
            self.collector.write(sentence_id, vector)

        logger.debug(
            f"Batch {task_index} ({batch.size()} sentences) done on replica {replica.index}"
        )
        return batch.size()

    def _worker(self, worker_index: int) -> None:
        replica = self.assignment[worker_index]
        while not self._stop.is_set():
            try:
                item = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _SENTINEL:
                return

            task_index, batch = item
            try:
                n_sentences = self.process(replica, task_index, batch)
            except Exception as e:
                self._fail(e, task_index, replica)
                return

            with self._lock:
                self._n_sentences += n_sentences
                self._n_batches += 1
            if self.progress is not None:
                self.progress(n_sentences)

    def _fail(self, error: BaseException, task_index: int, replica: Replica) -> None:
        with self._lock:
            if self._error is None:
                self._error = error
                logger.error(
                    f"Batch {task_index} failed on replica {replica.index} "
                    f"({replica.device}): {error}"
                )
        self._stop.set()

    def _put(self, item: object) -> bool:
        """Block until there is room on the queue; False once the run is stopping."""
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    # ─── Run ────────────────────────────────────────────────────────────

    def run(self, batches: Iterable[SentenceBatch]) -> int:
        """
        Process every batch and wait for all of them to be written.

        Returns
        -------
        int
            Number of sentences (or sentence pairs) written.

        Raises
        ------
        Exception
            The first error raised by any batch, or by the batch stream.
        """
        n_workers = len(self.replicas)
        with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="replica-worker") as pool:
            workers = [pool.submit(self._worker, i) for i in range(n_workers)]
            try:
                for task_index, batch in enumerate(batches):
                    if not self._put((task_index, batch)):
                        break
                for _ in workers:
                    if not self._put(_SENTINEL):
                        break
            except BaseException:
                self._stop.set()
                raise
            for worker in workers:
                worker.result()

        if self._error is not None:
            raise self._error

        logger.info(
            f"Dispatched {self._n_batches} batches ({self._n_sentences} sentences) "
            f"over {n_workers} replica(s)"
        )
        return self._n_sentences
