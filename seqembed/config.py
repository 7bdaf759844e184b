"""
SeqEmbed Configuration System
==============================
Centralized configuration for every SeqEmbed component using Python
dataclasses. Model architecture and inference settings both live here.

Usage:
    # Load from YAML file:
    >>> config = EmbedConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = EmbedConfig(
    ...     model=ModelConfig(dim_emb=256, n_layers=4),
    ...     inference=InferenceConfig(devices=["cuda:0", "cuda:1"]),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_run.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict, replace
from typing import Literal
from pathlib import Path

import torch
import yaml

logger = logging.getLogger(__name__)

SUPPORTED_PRECISIONS = ("float32", "float16")
ACTIVATIONS = ("relu", "gelu", "swish", "tanh", "sigmoid")


# =============================================================================
# Model Configuration
# =============================================================================

@dataclass
class ModelConfig:
    """
    Architecture hyperparameters for the embedding model.

    Parameters
    ----------
    type : str
        Which model to build.
        - "pooler": encoder followed by a pooling step, one vector per sentence
        - "sim-pooler": two encoders whose pooled outputs are compared with
          cosine similarity, one score per sentence pair
        - "encoder": bare encoder producing per-token states. It cannot be
          used for embedding and is rejected by the embedder.

    dim_vocab : int
        Vocabulary size of the source embedding table.

    dim_emb : int
        Model dimension. Every token is represented as a vector of this size.

    n_layers : int
        Number of transformer encoder layers.

    n_heads : int
        Number of attention heads. Must divide dim_emb evenly.

    dim_ffn : int
        Hidden size of the feed-forward block.

    ffn_activation : str
        Activation inside the feed-forward block. "relu" uses the fused
        Linear+ReLU+Dropout layer.

    dropout : float
        Dropout probability. Only active when the graph is in train mode.

    norm : str
        "layer" for LayerNorm, "rms" for RMSNorm.

    pooling : str
        How token states are reduced to a sentence vector:
        "mean" (masked mean), "max" (masked max) or "first" (first token).

    normalize : bool
        L2-normalize the pooled vectors.

    tied_encoders : bool
        For "sim-pooler": both sides share one set of encoder weights.
    """
    type: Literal["pooler", "sim-pooler", "encoder"] = "pooler"
    dim_vocab: int = 32000
    dim_emb: int = 512
    n_layers: int = 6
    n_heads: int = 8
    dim_ffn: int = 2048
    ffn_activation: str = "relu"
    dropout: float = 0.1
    norm: Literal["layer", "rms"] = "layer"
    norm_eps: float = 1e-5
    pooling: Literal["mean", "max", "first"] = "mean"
    normalize: bool = False
    tied_encoders: bool = True

    def validate(self) -> None:
        """
        Check that all model parameters are valid and consistent.

        Raises
        ------
        ValueError
            If any parameter is invalid or inconsistent with others.
        """
        if self.type not in ("pooler", "sim-pooler", "encoder"):
            raise ValueError(
                f"Unknown model type: '{self.type}'. "
                f"Choose from: pooler, sim-pooler, encoder"
            )
        if self.dim_emb <= 0:
            raise ValueError(f"dim_emb must be positive, got {self.dim_emb}")
        if self.n_heads < 1 or self.dim_emb % self.n_heads != 0:
            raise ValueError(
                f"dim_emb ({self.dim_emb}) must be divisible by n_heads "
                f"({self.n_heads})"
            )
        if self.dim_emb % 2 != 0:
            raise ValueError(
                f"dim_emb must be even for sinusoidal positions, got {self.dim_emb}"
            )
        if self.dim_vocab < 1:
            raise ValueError(f"dim_vocab must be >= 1, got {self.dim_vocab}")
        if self.n_layers < 0:
            raise ValueError(f"n_layers must be >= 0, got {self.n_layers}")
        if self.dim_ffn <= 0:
            raise ValueError(f"dim_ffn must be positive, got {self.dim_ffn}")
        if self.ffn_activation not in ACTIVATIONS:
            raise ValueError(
                f"Unknown ffn_activation: '{self.ffn_activation}'. "
                f"Choose from: {', '.join(ACTIVATIONS)}"
            )
        if not 0.0 <= self.dropout < 1.0:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.norm not in ("layer", "rms"):
            raise ValueError(f"Unknown norm: '{self.norm}'. Choose from: layer, rms")
        if self.pooling not in ("mean", "max", "first"):
            raise ValueError(
                f"Unknown pooling: '{self.pooling}'. Choose from: mean, max, first"
            )


# =============================================================================
# Inference Configuration
# =============================================================================

@dataclass
class InferenceConfig:
    """
    Settings for an embedding run.

    Parameters
    ----------
    model_path : str
        Path to the safetensors weights file shared by all replicas.

    vocabs : list[str]
        One tokenizer JSON file per input stream. With compute_similarity
        and a single entry, the vocabulary is reused for the second stream.

    inputs : list[str]
        One text file per input stream, one sentence per line.

    output : str
        Output path for vectors. "-" or "stdout" writes text to stdout.

    binary : bool
        Write the compact binary encoding instead of text.

    devices : list[str] or "auto"
        Compute devices, one replica each. "auto" picks every visible GPU,
        or a single CPU replica.

    workspace_mb : int
        Memory reserved per device before the first batch (CUDA only).

    precision : list[str]
        Element types; the first one is the graph default type used for
        parameters and activations.

    mini_batch : int
        Sentences per batch.

    compute_similarity : bool
        Score sentence pairs from two inputs instead of embedding one input.

    ordered_output : bool
        Emit records in increasing sentence id order.

    seed : int
        Seed for parameter initialization and dropout masks.
    """
    model_path: str = "model/model.safetensors"
    vocabs: list[str] = field(default_factory=lambda: ["model/vocab.json"])
    inputs: list[str] = field(default_factory=lambda: ["-"])
    output: str = "stdout"
    binary: bool = False
    devices: list[str] | str = "auto"
    workspace_mb: int = 512
    precision: list[str] = field(default_factory=lambda: ["float32"])
    mini_batch: int = 32
    max_length: int = 256
    compute_similarity: bool = False
    ordered_output: bool = False
    seed: int = 1234

    def validate(self) -> None:
        """Validate inference parameters."""
        if self.mini_batch < 1:
            raise ValueError(f"mini_batch must be >= 1, got {self.mini_batch}")
        if self.max_length < 1:
            raise ValueError(f"max_length must be >= 1, got {self.max_length}")
        if self.workspace_mb < 0:
            raise ValueError(f"workspace_mb must be >= 0, got {self.workspace_mb}")
        if not self.precision:
            raise ValueError("precision must name at least one element type")
        for p in self.precision:
            if p not in SUPPORTED_PRECISIONS:
                raise ValueError(
                    f"Unknown precision: '{p}'. "
                    f"Choose from: {', '.join(SUPPORTED_PRECISIONS)}"
                )
        if isinstance(self.devices, str):
            if self.devices != "auto":
                raise ValueError(
                    f"devices must be a list or 'auto', got '{self.devices}'"
                )
        elif not self.devices:
            raise ValueError("devices must not be empty")
        if not self.vocabs:
            raise ValueError("At least one vocabulary is required")
        n_streams = 2 if self.compute_similarity else 1
        if len(self.inputs) != n_streams:
            raise ValueError(
                f"Expected {n_streams} input file(s) "
                f"(compute_similarity={self.compute_similarity}), "
                f"got {len(self.inputs)}"
            )

    @property
    def element_type(self) -> torch.dtype:
        """Graph default element type (first precision entry)."""
        return getattr(torch, self.precision[0])

    def resolve_devices(self) -> list[torch.device]:
        """
        Resolve the configured device list.

        Returns
        -------
        list[torch.device]
            One entry per replica.
        """
        if self.devices != "auto":
            return [torch.device(d) for d in self.devices]

        if torch.cuda.is_available():
            n_gpus = torch.cuda.device_count()
            logger.info(f"Using {n_gpus} CUDA device(s)")
            return [torch.device(f"cuda:{i}") for i in range(n_gpus)]
        logger.info("Using CPU device")
        return [torch.device("cpu")]


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class EmbedConfig:
    """
    Master configuration combining model and inference settings.

    Usage:
        >>> config = EmbedConfig.from_yaml("configs/default.yaml")
        >>> config = EmbedConfig.for_smoke_test()
        >>> config.validate()
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)

    def validate(self) -> None:
        """
        Validate all sub-configurations and cross-config consistency.

        Raises
        ------
        ValueError
            If any parameter is invalid or configs are inconsistent.
        """
        self.model.validate()
        self.inference.validate()

        if self.inference.compute_similarity and self.model.type != "sim-pooler":
            raise ValueError(
                f"compute_similarity requires model type 'sim-pooler', "
                f"got '{self.model.type}'"
            )

        logger.info(
            f"Config validated: model={self.model.type}, "
            f"dim_emb={self.model.dim_emb}, layers={self.model.n_layers}, "
            f"precision={self.inference.precision[0]}"
        )

    def with_similarity_inputs(self) -> EmbedConfig:
        """
        Return a copy whose vocabulary list covers both similarity streams.

        When similarity is computed the last vocabulary is duplicated so the
        second encoder gets its own entry. Without similarity the config is
        returned unchanged.
        """
        if not self.inference.compute_similarity:
            return self
        vocabs = list(self.inference.vocabs)
        if len(vocabs) < 2:
            vocabs.append(vocabs[-1])
        return replace(self, inference=replace(self.inference, vocabs=vocabs))

    @classmethod
    def from_yaml(cls, path: str | Path) -> EmbedConfig:
        """
        Load configuration from a YAML file.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ValueError
            If the file is empty or the configuration is invalid.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ValueError(f"Config file is empty: {path}")

        config = cls(
            model=ModelConfig(**raw.get("model", {})),
            inference=InferenceConfig(**raw.get("inference", {})),
        )

        config.validate()
        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.to_dict(),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls, compute_similarity: bool = False) -> EmbedConfig:
        """
        Create a minimal CPU configuration for quick smoke testing.

        Parameters
        ----------
        compute_similarity : bool
            Build a similarity (two-input) configuration.
        """
        return cls(
            model=ModelConfig(
                type="sim-pooler" if compute_similarity else "pooler",
                dim_vocab=64,
                dim_emb=16,
                n_layers=1,
                n_heads=2,
                dim_ffn=32,
                dropout=0.0,
            ),
            inference=InferenceConfig(
                model_path="model_smoke/model.safetensors",
                vocabs=["model_smoke/vocab.json"],
                inputs=["input_a.txt", "input_b.txt"] if compute_similarity else ["input_a.txt"],
                output="vectors_smoke.txt",
                devices=["cpu"],
                workspace_mb=0,
                mini_batch=4,
                max_length=32,
                compute_similarity=compute_similarity,
            ),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        devices = self.inference.devices
        lines = [
            "EmbedConfig(",
            f"  Model:     {self.model.type}, dim_emb={self.model.dim_emb}, "
            f"dim_ffn={self.model.dim_ffn}, n_heads={self.model.n_heads}, "
            f"n_layers={self.model.n_layers}",
            f"  Devices:   {devices}, workspace={self.inference.workspace_mb}MB",
            f"  Precision: {', '.join(self.inference.precision)}",
            f"  Output:    {self.inference.output} "
            f"({'binary' if self.inference.binary else 'text'})",
            ")",
        ]
        return "\n".join(lines)
