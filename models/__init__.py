# models/__init__.py
"""
Models module: computation graphs and workspaces.

The sequence-to-sequence builder lives in ``models.seq2seq``; it is not
re-exported here because it depends on the encoder and decoder packages,
which themselves build on ``models.graph``.
"""

from .graph import ComputationGraph, Workspace, inits

__all__ = [
    "ComputationGraph",
    "Workspace",
    "inits",
]
