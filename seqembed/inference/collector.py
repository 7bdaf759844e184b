"""
SeqEmbed Vector Collector
==========================
Thread-safe sink for (sentence id, vector) records.

Records arrive from several replica workers in completion order. Each
record carries its sentence id, so the written file is correct whatever
the order; with ``ordered=True`` the collector additionally buffers early
arrivals and emits records in increasing id order starting from 0.

Encodings:
    text   : "<id>\\t<v1> <v2> ... <vn>\\n"   (values printed with %.9g)
    binary : little-endian int64 id, uint32 n, n float32 values

Usage:
    >>> with VectorCollector("vectors.txt") as collector:
    ...     collector.write(0, np.array([0.1, 0.2], dtype=np.float32))
    >>> read_vectors("vectors.txt")
    {0: array([0.1, 0.2], dtype=float32)}
"""

from __future__ import annotations

import logging
import struct
import sys
import threading
from pathlib import Path
from typing import BinaryIO, Optional, TextIO, Union

import numpy as np

logger = logging.getLogger(__name__)

STDOUT_PATHS = ("-", "stdout")

# int64 sentence id, uint32 vector length
_RECORD_HEADER = struct.Struct("<qI")


def format_text_record(sentence_id: int, vector: np.ndarray) -> str:
    values = " ".join("%.9g" % v for v in vector)
    return f"{sentence_id}\t{values}\n"


def format_binary_record(sentence_id: int, vector: np.ndarray) -> bytes:
    values = np.ascontiguousarray(vector, dtype="<f4")
    return _RECORD_HEADER.pack(sentence_id, values.size) + values.tobytes()


class VectorCollector:
    """
    Writes vectors keyed by sentence id.

    Parameters
    ----------
    path : str or Path
        Output file. "-" or "stdout" writes to standard output.
    binary : bool
        Use the binary record encoding.
    ordered : bool
        Emit records in increasing id order (0, 1, 2, ...), buffering
        records that arrive early.
    """

    def __init__(self, path: Union[str, Path], binary: bool = False, ordered: bool = False):
        self.path = str(path)
        self.binary = binary
        self.ordered = ordered
        self._lock = threading.Lock()
        self._stream: Optional[Union[TextIO, BinaryIO]] = None
        self._owns_stream = False
        self._pending: dict[int, np.ndarray] = {}
        self._next_id = 0
        self.n_written = 0

    # ─── Lifecycle ──────────────────────────────────────────────────────

    def open(self) -> VectorCollector:
        if self._stream is not None:
            return self
        if self.path in STDOUT_PATHS:
            self._stream = sys.stdout.buffer if self.binary else sys.stdout
            self._owns_stream = False
        else:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            if self.binary:
                self._stream = open(self.path, "wb")
            else:
                self._stream = open(self.path, "w", encoding="utf-8")
            self._owns_stream = True
        logger.info(
            f"Writing {'binary' if self.binary else 'text'} vectors to {self.path}"
            f"{' (ordered)' if self.ordered else ''}"
        )
        return self

    def close(self) -> None:
        with self._lock:
            if self._stream is None:
                return
            if self._pending:
                # ids missing from the input leave a gap; flush the rest in id order
                logger.warning(
                    f"{len(self._pending)} record(s) after missing id {self._next_id}"
                )
                for sentence_id in sorted(self._pending):
                    self._emit(sentence_id, self._pending.pop(sentence_id))
            self._stream.flush()
            if self._owns_stream:
                self._stream.close()
            self._stream = None
        logger.info(f"Collector closed after {self.n_written} records")

    def __enter__(self) -> VectorCollector:
        return self.open()

    def __exit__(self, *args) -> None:
        self.close()

    # ─── Writing ────────────────────────────────────────────────────────

    def write(self, sentence_id: int, vector: np.ndarray) -> None:
        """Record ``vector`` for ``sentence_id``. Safe to call from any thread."""
        with self._lock:
            if self._stream is None:
                raise RuntimeError("VectorCollector is not open")
            if not self.ordered:
                self._emit(sentence_id, vector)
                return

            self._pending[sentence_id] = vector
            while self._next_id in self._pending:
                self._emit(self._next_id, self._pending.pop(self._next_id))
                self._next_id += 1

    def _emit(self, sentence_id: int, vector: np.ndarray) -> None:
        if self.binary:
            self._stream.write(format_binary_record(sentence_id, vector))
        else:
            self._stream.write(format_text_record(sentence_id, vector))
        self.n_written += 1


def read_vectors(path: Union[str, Path], binary: bool = False) -> dict[int, np.ndarray]:
    """
    Read a collector output file back into an id → float32 vector map.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    ValueError
        If the file is truncated or malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Vector file not found: {path}")

    vectors: dict[int, np.ndarray] = {}
    if binary:
        data = path.read_bytes()
        offset = 0
        while offset < len(data):
            if offset + _RECORD_HEADER.size > len(data):
                raise ValueError(f"Truncated record header at byte {offset} in {path}")
            sentence_id, dim = _RECORD_HEADER.unpack_from(data, offset)
            offset += _RECORD_HEADER.size
            end = offset + 4 * dim
            if end > len(data):
                raise ValueError(f"Truncated vector for id {sentence_id} in {path}")
            vectors[sentence_id] = np.frombuffer(data[offset:end], dtype="<f4").astype(np.float32)
            offset = end
        return vectors

    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip("\n")
            if not line:
                continue
            try:
                head, values = line.split("\t", 1)
                vectors[int(head)] = np.array(values.split(), dtype=np.float32)
            except ValueError as e:
                raise ValueError(f"Malformed line {line_no} in {path}: {e}") from e
    return vectors
