"""
Run-time measurement helpers.
"""

from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class Timer:
    """
    Context manager measuring wall-clock and process CPU time.

    Usage:
        >>> with Timer("Embedding") as t:
        ...     task.run()
        >>> print(f"Took: {t.elapsed:.2f}s")
    """

    def __init__(self, label: str = "operation", log: bool = True):
        self.label = label
        self.log = log
        self.elapsed: float = 0.0
        self.cpu: float = 0.0
        self._start: float = 0.0
        self._start_cpu: float = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        self._start_cpu = time.process_time()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self._start
        self.cpu = time.process_time() - self._start_cpu
        if self.log:
            logger.info(f"[{self.label}] Time: {self.elapsed:.2f}s wall, {self.cpu:.2f}s cpu")

    def format(self) -> str:
        return f"{self.elapsed:.5f}s wall"
