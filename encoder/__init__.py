# encoder/__init__.py
"""
Encoder module for the online adaptation system.

Provides the typed recurrent/feed-forward layers and the bidirectional
RNN encoder.
"""

from .custom_layers import (
    CellConfig,
    CellState,
    Dense,
    DenseConfig,
    MLP,
    Output,
    OutputConfig,
    RNN,
    RNNConfig,
    StackedCellConfig,
)
from .rnn_encoder import BiRNNEncoder, EncoderState, build_encoders

__all__ = [
    "CellConfig",
    "CellState",
    "Dense",
    "DenseConfig",
    "MLP",
    "Output",
    "OutputConfig",
    "RNN",
    "RNNConfig",
    "StackedCellConfig",
    "BiRNNEncoder",
    "EncoderState",
    "build_encoders",
]
