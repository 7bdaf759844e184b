"""
seqembed.graph — Execution Context
===================================
    - graph.py        — Graph (named parameter store, device, dtype, mode)
    - initializers.py — Parameter initializer factories
"""

from seqembed.graph.graph import Graph, Mode
from seqembed.graph import initializers
