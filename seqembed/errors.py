"""
SeqEmbed Errors
================
Exception types raised by the layer framework and the inference pipeline.

None of these are retried anywhere in the package: they describe
configuration or data errors that must stop the run.
"""

from __future__ import annotations


class SeqEmbedError(RuntimeError):
    """Base class for all SeqEmbed runtime failures."""


class ShapeMismatchError(SeqEmbedError):
    """A parameter was requested with a shape different from its bound shape."""

    def __init__(self, name: str, bound_shape, requested_shape):
        self.name = name
        self.bound_shape = tuple(bound_shape)
        self.requested_shape = tuple(requested_shape)
        super().__init__(
            f"Parameter '{name}' is bound with shape {self.bound_shape} "
            f"but was requested with shape {self.requested_shape}"
        )


class UnsupportedPrecisionError(SeqEmbedError):
    """Output tensor has an element type the extractor cannot handle."""

    def __init__(self, dtype):
        self.dtype = dtype
        super().__init__(f"Unknown embedding type {dtype}")


class ReplicaLoadError(SeqEmbedError):
    """A device replica failed to initialize."""


class CapabilityError(SeqEmbedError):
    """The configured model cannot be used for the requested task."""
