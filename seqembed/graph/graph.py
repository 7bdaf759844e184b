"""
SeqEmbed Graph
===============
A Graph is the execution context of one replica: it owns every parameter
of the model running on it, knows its device and default element type,
and carries the train/eval mode consulted by dropout-style layers.

PyTorch executes eagerly, so the graph does not record operations. What it
adds on top of plain tensors is:

    - A named parameter store with a strict "create once, then reuse"
      contract (``param``). Layers never allocate tensors themselves; they
      ask the graph, which either returns the parameter already stored under
      that name (created earlier or loaded from weights) or creates it with
      the given initializer.
    - A per-graph mode, so evaluation of one replica never depends on
      process-wide state.
    - ``forward()``, the point after which output values are realized on
      the host side (a device synchronization on CUDA).

Usage:
    >>> graph = Graph(device="cpu", dtype=torch.float32)
    >>> w = graph.param("proj.weight", (16, 32), inits.glorot_uniform())
    >>> w is graph.param("proj.weight", (16, 32), inits.glorot_uniform())
    True
"""

from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Sequence

import torch
import torch.nn as nn

from seqembed.errors import ShapeMismatchError
from seqembed.graph.initializers import NodeInitializer

logger = logging.getLogger(__name__)


class Mode(enum.Enum):
    """Behavioral switch for dropout and fused activation layers."""
    TRAIN = "train"
    EVAL = "eval"


class Graph:
    """
    Parameter store and execution context for one compute device.

    Parameters
    ----------
    device : str or torch.device
        Device on which parameters live and computation runs.
    dtype : torch.dtype
        Default element type for parameters (float32 or float16).
    workspace_mb : int
        Memory to reserve up front on CUDA devices. Ignored elsewhere.
    mode : Mode
        Initial mode. Inference graphs start in eval mode.
    seed : int
        Seed of the graph's generator, used by initializers and dropout.
    """

    def __init__(
        self,
        device: str | torch.device = "cpu",
        dtype: torch.dtype = torch.float32,
        workspace_mb: int = 0,
        mode: Mode = Mode.EVAL,
        seed: int = 1234,
    ):
        self.device = torch.device(device)
        self.dtype = dtype
        self.mode = mode
        self.workspace_mb = workspace_mb
        self.generator = torch.Generator(device=self.device)
        self.generator.manual_seed(seed)
        self._params: dict[str, nn.Parameter] = {}

        if workspace_mb > 0:
            self.reserve_workspace(workspace_mb)

        logger.debug(f"Graph created on {self.device} (dtype={dtype}, mode={mode.value})")

    # ─── Parameters ─────────────────────────────────────────────────────

    def param(
        self,
        name: str,
        shape: Sequence[int],
        init: Optional[NodeInitializer] = None,
    ) -> nn.Parameter:
        """
        Return the parameter called ``name``, creating it on first request.

        Parameters
        ----------
        name : str
            Unique parameter name, e.g. "encoder.layers.0.ffn1.weight".
        shape : sequence of int
            Required shape.
        init : callable or None
            Initializer used only when the parameter does not exist yet.

        Raises
        ------
        ShapeMismatchError
            If the parameter exists with a different shape.
        ValueError
            If the parameter does not exist and no initializer is given,
            or if a dimension is not positive.
        """
        shape = tuple(int(s) for s in shape)
        existing = self._params.get(name)
        if existing is not None:
            if tuple(existing.shape) != shape:
                raise ShapeMismatchError(name, existing.shape, shape)
            return existing

        if any(s <= 0 for s in shape):
            raise ValueError(f"Parameter '{name}' needs positive dimensions, got {shape}")
        if init is None:
            raise ValueError(
                f"Parameter '{name}' is not in the graph and has no initializer"
            )

        # Initializers run in float32; the generator must live on the same device
        tensor = torch.empty(shape, dtype=torch.float32, device=self.device)
        with torch.no_grad():
            init(tensor, self.generator)
        param = nn.Parameter(tensor.to(self.dtype), requires_grad=False)
        self._params[name] = param
        logger.debug(f"Created parameter {name} {shape}")
        return param

    def get(self, name: str) -> Optional[nn.Parameter]:
        """Parameter stored under ``name`` or None."""
        return self._params.get(name)

    @property
    def params(self) -> Mapping[str, nn.Parameter]:
        """Read-only view of all parameters."""
        return MappingProxyType(self._params)

    def load(self, weights: Mapping[str, torch.Tensor]) -> int:
        """
        Populate the graph from a name → tensor mapping.

        Tensors are copied to the graph's device and cast to its default
        element type. Layers later find these parameters by name instead of
        initializing new ones.

        Returns
        -------
        int
            Number of parameters loaded.

        Raises
        ------
        ShapeMismatchError
            If a name is already bound with a different shape.
        """
        n_loaded = 0
        for name, value in weights.items():
            existing = self._params.get(name)
            if existing is not None and tuple(existing.shape) != tuple(value.shape):
                raise ShapeMismatchError(name, existing.shape, value.shape)
            tensor = value.detach().to(device=self.device, dtype=self.dtype).clone()
            self._params[name] = nn.Parameter(tensor, requires_grad=False)
            n_loaded += 1

        logger.info(f"Loaded {n_loaded} parameters into graph on {self.device}")
        return n_loaded

    def state_dict(self) -> dict[str, torch.Tensor]:
        """Detached copy of the name → tensor mapping."""
        return {name: p.detach() for name, p in self._params.items()}

    @property
    def n_params(self) -> int:
        """Total number of parameter elements."""
        return sum(p.numel() for p in self._params.values())

    def __contains__(self, name: str) -> bool:
        return name in self._params

    def __len__(self) -> int:
        return len(self._params)

    # ─── Mode ───────────────────────────────────────────────────────────

    @contextmanager
    def mode_scope(self, mode: Mode) -> Iterator["Graph"]:
        """Temporarily switch the graph's mode."""
        previous = self.mode
        self.mode = mode
        try:
            yield self
        finally:
            self.mode = previous

    @property
    def is_training(self) -> bool:
        return self.mode is Mode.TRAIN

    # ─── Execution ──────────────────────────────────────────────────────

    def forward(self) -> None:
        """Make every value computed so far available to the host."""
        if self.device.type == "cuda":
            torch.cuda.synchronize(self.device)

    def reserve_workspace(self, workspace_mb: int) -> None:
        """
        Reserve device memory through PyTorch's caching allocator.

        The block is freed right away but stays cached by the allocator,
        so later activations are served from it.
        """
        if self.device.type != "cuda":
            logger.debug(f"Workspace reservation skipped on {self.device}")
            return
        block = torch.empty(workspace_mb * 1024 * 1024, dtype=torch.uint8, device=self.device)
        del block
        logger.info(f"Reserved {workspace_mb}MB workspace on {self.device}")

    def __repr__(self) -> str:
        return (
            f"Graph(device={self.device}, dtype={self.dtype}, "
            f"mode={self.mode.value}, params={len(self._params)})"
        )
