"""
SeqEmbed Weights I/O
=====================
Model weights are stored as a flat name → tensor safetensors file whose
names match the parameter names layers bind in their graph.

``ModelWeights`` is shared by all replicas: the file is read once, on first
use, under a lock, and the resulting CPU tensors are never modified.
Each replica copies them onto its own device (``Graph.load``).

Usage:
    >>> weights = ModelWeights("model/model.safetensors")
    >>> graph.load(weights.tensors())
    >>> save_weights(graph, "model/model.safetensors")
    >>> init_random_weights(config.model, "model_smoke/model.safetensors")
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

import torch
from safetensors.torch import load_file, save_file

from seqembed.config import ModelConfig
from seqembed.data.corpus import SubBatch
from seqembed.graph.graph import Graph
from seqembed.model.factory import create_model

logger = logging.getLogger(__name__)


class ModelWeights:
    """
    Lazily loaded, read-only safetensors weights.

    Parameters
    ----------
    path : str or Path
        Path to a ``.safetensors`` file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Model weights not found: {self.path}")
        self._lock = threading.Lock()
        self._tensors: Optional[Mapping[str, torch.Tensor]] = None

    def tensors(self) -> Mapping[str, torch.Tensor]:
        """Name → CPU tensor mapping, read from disk on first call."""
        with self._lock:
            if self._tensors is None:
                state_dict = load_file(str(self.path), device="cpu")
                self._tensors = MappingProxyType(state_dict)
                n_elements = sum(t.numel() for t in state_dict.values())
                logger.info(
                    f"Read {len(state_dict)} tensors ({n_elements:,} values) from {self.path}"
                )
            return self._tensors

    def __len__(self) -> int:
        return len(self.tensors())

    def __contains__(self, name: str) -> bool:
        return name in self.tensors()

    def __repr__(self) -> str:
        return f"ModelWeights(path={str(self.path)!r})"


def save_weights(graph: Graph, path: Union[str, Path]) -> Path:
    """
    Write every parameter of ``graph`` to a safetensors file.

    Tensors are moved to CPU and made contiguous; parent directories are
    created as needed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    state_dict = {
        name: tensor.detach().cpu().contiguous()
        for name, tensor in graph.state_dict().items()
    }
    save_file(state_dict, str(path))

    size_mb = path.stat().st_size / (1024 * 1024)
    logger.info(f"Saved {len(state_dict)} parameters to {path} ({size_mb:.2f}MB)")
    return path


def init_random_weights(
    config: ModelConfig,
    path: Union[str, Path],
    usage: str = "embedding",
    seed: int = 1234,
) -> Path:
    """
    Write a randomly initialized model to ``path``.

    Parameters are bound by running the model once on a two-token dummy
    batch in a float32 CPU graph, then saved.
    """
    graph = Graph("cpu", dtype=torch.float32, seed=seed)
    model = create_model(graph, config, usage)
    dummy = SubBatch(
        ids=torch.zeros((1, 2), dtype=torch.long),
        mask=torch.ones((1, 2), dtype=torch.float32),
    )
    with torch.no_grad():
        model.apply(*([dummy] * model.n_streams))
    logger.info(f"Initialized {graph.n_params:,} random parameters ({config.type})")
    return save_weights(graph, path)
