# translation/scorers.py
"""
Scorers adapt a model builder to the beam search interface.
"""
from typing import Optional

import torch

from data.dataset_classes import CorpusBatch
from decoder.sutskever_decoder import DecoderState
from models.graph import ComputationGraph


class ScorerWrapper:
    """Weighted scorer backed by a sequence-to-sequence builder"""

    def __init__(self, builder, name: str = "F0", weight: float = 1.0):
        self.builder = builder
        self.name = name
        self.weight = weight

    def init(self, graph: ComputationGraph):
        """Prepare for decoding on ``graph`` (drops sub-networks built for another graph)."""
        self.builder.clear(graph)

    def start_state(self, graph: ComputationGraph, batch: CorpusBatch) -> DecoderState:
        return self.builder.start_state(graph, batch)

    def step(self, graph: ComputationGraph, state: DecoderState,
             hyp_indices: Optional[torch.Tensor] = None,
             word_ids: Optional[torch.Tensor] = None) -> DecoderState:
        return self.builder.step(graph, state, hyp_indices, word_ids)

    def __repr__(self):
        return f"ScorerWrapper(name={self.name!r}, weight={self.weight})"
