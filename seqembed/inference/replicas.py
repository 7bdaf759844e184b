"""
SeqEmbed Replica Pool
======================
One replica per configured device. A replica is a Graph on that device
plus an Embedder whose model has been given the shared weights.

Replicas are loaded concurrently, one loader thread each. Weights are
read from disk once (``ModelWeights`` serializes the first read) and then
copied onto every device. If any replica fails to load, the pool is not
usable and ``ReplicaLoadError`` is raised with the first failure as cause.

Usage:
    >>> pool = ReplicaPool(config, ModelWeights(config.inference.model_path))
    >>> len(pool)
    2
    >>> pool[0].graph.device
    device(type='cuda', index=0)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, Optional

import torch

from seqembed.config import EmbedConfig
from seqembed.errors import ReplicaLoadError
from seqembed.graph.graph import Graph, Mode
from seqembed.inference.embedder import Embedder, ModelFactory
from seqembed.model.weights import ModelWeights

logger = logging.getLogger(__name__)


@dataclass
class Replica:
    """A graph and its embedder on one device."""
    index: int
    device: torch.device
    graph: Graph
    embedder: Embedder


class ReplicaPool:
    """
    Fixed set of device replicas.

    Parameters
    ----------
    config : EmbedConfig
        Devices, precision, workspace size and the model architecture.
    weights : ModelWeights or None
        Shared read-only weights. None leaves parameters randomly
        initialized (smoke tests).
    model_factory : callable or None
        Passed to each Embedder; defaults to ``create_model``.

    Raises
    ------
    ReplicaLoadError
        If any replica fails to initialize.
    """

    def __init__(
        self,
        config: EmbedConfig,
        weights: Optional[ModelWeights] = None,
        model_factory: Optional[ModelFactory] = None,
    ):
        self.config = config
        self.weights = weights
        self.model_factory = model_factory
        self.devices = config.inference.resolve_devices()
        if not self.devices:
            raise ReplicaLoadError("No devices to load replicas on")
        self.replicas: list[Replica] = self._load_all()

    def _load_replica(self, index: int, device: torch.device) -> Replica:
        inference = self.config.inference
        graph = Graph(
            device=device,
            dtype=inference.element_type,
            workspace_mb=inference.workspace_mb,
            mode=Mode.EVAL,
            seed=inference.seed,
        )
        embedder = Embedder(self.config, graph, self.model_factory)
        n_loaded = embedder.load(self.weights)
        logger.info(f"Replica {index} ready on {device} ({n_loaded} parameters loaded)")
        return Replica(index=index, device=device, graph=graph, embedder=embedder)

    def _load_all(self) -> list[Replica]:
        logger.info(f"Loading {len(self.devices)} replica(s)")
        with ThreadPoolExecutor(
            max_workers=len(self.devices), thread_name_prefix="replica-loader"
        ) as pool:
            futures = [
                (device, pool.submit(self._load_replica, i, device))
                for i, device in enumerate(self.devices)
            ]
            replicas = []
            for device, future in futures:
                try:
                    replicas.append(future.result())
                except Exception as e:
                    raise ReplicaLoadError(
                        f"Failed to load replica on {device}: {e}"
                    ) from e
        return replicas

    def __len__(self) -> int:
        return len(self.replicas)

    def __iter__(self) -> Iterator[Replica]:
        return iter(self.replicas)

    def __getitem__(self, index: int) -> Replica:
        return self.replicas[index]

    def __repr__(self) -> str:
        devices = ", ".join(str(r.device) for r in self.replicas)
        return f"ReplicaPool([{devices}])"
