"""
Model construction and capability checks.

``create_model`` builds the model named by ``ModelConfig.type`` on a
graph. Construction is cheap because parameters are bound lazily, so the
embedder can build a model on a throwaway CPU graph just to find out
whether it is usable before any device is touched.
"""

from __future__ import annotations

import logging

from seqembed.config import ModelConfig
from seqembed.errors import CapabilityError
from seqembed.graph.graph import Graph
from seqembed.layers import Layer
from seqembed.model.pooler import EncoderModel, EncoderPooler, Pooler, SimilarityPooler

logger = logging.getLogger(__name__)

MODEL_TYPES = {
    "pooler": EncoderPooler,
    "sim-pooler": SimilarityPooler,
    "encoder": EncoderModel,
}

# usage → number of input streams the model has to consume
USAGES = {"embedding": 1, "similarity": 2}


def check_capability(model: Layer, usage: str = "embedding") -> Pooler:
    """
    Make sure ``model`` can serve ``usage``.

    Raises
    ------
    CapabilityError
        If the model is not a pooler, or pools the wrong number of streams.
    ValueError
        If ``usage`` is unknown.
    """
    if usage not in USAGES:
        raise ValueError(f"Unknown usage '{usage}'. Choose from: {', '.join(USAGES)}")
    if not isinstance(model, Pooler):
        raise CapabilityError(
            f"Could not cast to EncoderPooler: {type(model).__name__} "
            f"does not produce sentence vectors"
        )
    if model.n_streams != USAGES[usage]:
        target = "SimilarityPooler" if usage == "similarity" else "EncoderPooler"
        raise CapabilityError(
            f"Could not cast to {target}: {type(model).__name__} "
            f"takes {model.n_streams} input stream(s), {usage} needs {USAGES[usage]}"
        )
    return model


def create_model(graph: Graph, config: ModelConfig, usage: str = "embedding") -> Pooler:
    """
    Build the configured model on ``graph`` and check it can serve ``usage``.

    Parameters
    ----------
    graph : Graph
        Graph the model binds its parameters to.
    config : ModelConfig
        Architecture; ``config.type`` selects the model class.
    usage : str
        "embedding" or "similarity".

    Raises
    ------
    ValueError
        If ``config.type`` is unknown.
    CapabilityError
        If the model cannot serve ``usage``.
    """
    if config.type not in MODEL_TYPES:
        raise ValueError(
            f"Unknown model type: '{config.type}'. Choose from: {', '.join(MODEL_TYPES)}"
        )
    model = MODEL_TYPES[config.type](graph, config)
    return check_capability(model, usage)
