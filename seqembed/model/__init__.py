"""
seqembed.model — Encoder & Poolers
===================================
    - encoder.py — TransformerEncoder built from seqembed.layers
    - pooler.py  — EncoderPooler, SimilarityPooler, EncoderModel
    - factory.py — create_model, check_capability
    - weights.py — ModelWeights (safetensors), save_weights, init_random_weights
"""

from seqembed.model.encoder import TransformerEncoder, sinusoidal_positions
from seqembed.model.pooler import (
    EncoderModel,
    EncoderPooler,
    Pooler,
    SimilarityPooler,
    pool_states,
)
from seqembed.model.factory import create_model, check_capability
from seqembed.model.weights import ModelWeights, save_weights, init_random_weights
