"""
seqembed.layers — Layer Framework
==================================
Layers bind their parameters lazily: shapes are inferred from the first
input and the parameters are created in (or fetched from) the layer's
Graph under "<layer name>.<slot>".

Components:
    - base.py       — Layer, UnaryLayer protocol, Sequential
    - activation.py — Activation and ReLU/GELU/Tanh/Sigmoid/Swish
    - linear.py     — Linear, Dropout, LinearReluDropout
    - norm.py       — LayerNorm, RMSNorm
    - masks.py      — Additive attention masks
    - functional.py — Dropout kernels
"""

from seqembed.layers.base import Layer, UnaryLayer, Sequential
from seqembed.layers.activation import (
    Activation,
    ReLU,
    GELU,
    Tanh,
    Sigmoid,
    Swish,
    activation_by_name,
)
from seqembed.layers.linear import Linear, Dropout, LinearReluDropout
from seqembed.layers.norm import LayerNorm, RMSNorm, norm_by_name
from seqembed.layers.masks import transposed_log_mask, swap_time_batch
