# decoder/sutskever_decoder.py
"""
Sutskever-style RNN decoder without attention.

The start state is computed from the mean encoder context; each step feeds
the embeddings of the target history through a (deep-transition) RNN and a
deep output network that produces unnormalized logits.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

import torch

from config.schemas import ModelConfig
from data.dataset_classes import CorpusBatch
from encoder.custom_layers import (
    MLP,
    RNN,
    CellConfig,
    CellState,
    Dense,
    DenseConfig,
    Output,
    OutputConfig,
    RNNConfig,
    StackedCellConfig,
    weighted_average,
    word_dropout,
)
from encoder.rnn_encoder import EncoderState
from models.graph import ComputationGraph, inits
from utils.exceptions import ModelError

logger = logging.getLogger(__name__)


@dataclass
class DecoderState:
    """Recurrent states and scores after a decoding step"""
    states: List[CellState]
    logits: Optional[torch.Tensor]
    encoder_states: List[EncoderState]
    batch: CorpusBatch
    position: int = 0
    # [batch, time, dim_emb] embeddings consumed by the next step
    target_history_embeddings: Optional[torch.Tensor] = None
    target_mask: Optional[torch.Tensor] = None

    def select(self, indices: torch.Tensor) -> "DecoderState":
        """Keep only the rows (hypotheses) listed in ``indices``."""
        logits = self.logits.index_select(0, indices) if self.logits is not None else None
        return replace(self, states=[s.select(indices) for s in self.states], logits=logits,
                       target_history_embeddings=None, target_mask=None)

    def with_embeddings(self, embeddings: torch.Tensor,
                        mask: Optional[torch.Tensor] = None) -> "DecoderState":
        return replace(self, target_history_embeddings=embeddings, target_mask=mask)


@dataclass
class _DecoderNetworks:
    """Sub-networks built on first use, bound to the graph they read from"""
    graph: ComputationGraph
    rnn: RNN
    output: MLP
    training: bool = field(default=False)


class SutskeverDecoder:
    """
    Decoder for the target stream.

    Sub-networks are constructed lazily on the first ``step`` and cached in
    ``_cache``. The cache is only valid for the graph it was built against;
    ``clear()`` must be called before stepping with a different graph.
    """

    prefix = "decoder"

    def __init__(self, config: ModelConfig, inference: bool = False):
        self.config = config
        self.inference = inference
        self.batch_index = len(config.dim_vocabs) - 1
        self._cache: Optional[_DecoderNetworks] = None

        dropout_rnn = 0.0 if inference else config.dropout_rnn
        self.rnn_config = self._rnn_config(dropout_rnn)
        self.state_config = DenseConfig(f"{self.prefix}_ff_state", config.dim_rnn, "tanh",
                                        config.layer_normalization)
        self.hidden_config = DenseConfig(f"{self.prefix}_ff_logit_l1", config.dim_emb, "tanh",
                                         config.layer_normalization)
        self.output_config = OutputConfig(f"{self.prefix}_ff_logit_l2",
                                          config.dim_vocabs[self.batch_index],
                                          tied_prefix=self._tied_output_prefix())

    def _rnn_config(self, dropout: float) -> RNNConfig:
        config = self.config

        def cell(prefix, dim_input, transition=False):
            return CellConfig(config.dec_cell, prefix, 0 if transition else dim_input,
                              config.dim_rnn, dropout, config.layer_normalization, transition)

        # Cells 1 and 2 of the base layer read the embeddings, the rest are transitions
        base = [cell(f"{self.prefix}_cell{i}", config.dim_emb, transition=i > 2)
                for i in range(1, config.dec_cell_base_depth + 1)]
        layers = [StackedCellConfig(tuple(base))]
        for layer in range(2, config.dec_depth + 1):
            high = [cell(f"{self.prefix}_l{layer}_cell{j}", config.dim_rnn)
                    for j in range(1, config.dec_cell_high_depth + 1)]
            layers.append(StackedCellConfig(tuple(high)))
        return RNNConfig(tuple(layers), skip=config.skip)

    def _tied_output_prefix(self) -> Optional[str]:
        config = self.config
        if not (config.tied_embeddings or config.tied_embeddings_all):
            return None
        if config.tied_embeddings_all or config.tied_embeddings_src:
            return "Wemb"
        return f"{self.prefix}_Wemb"

    def embeddings(self, graph: ComputationGraph) -> torch.Tensor:
        """Target embedding matrix [dim_vocab, dim_emb]."""
        config = self.config
        name = "Wemb" if (config.tied_embeddings_src or config.tied_embeddings_all) else f"{self.prefix}_Wemb"
        return graph.param(name, (config.dim_vocabs[self.batch_index], config.dim_emb),
                           inits.glorot_uniform)

    def start_state(self, graph: ComputationGraph, batch: CorpusBatch,
                    encoder_states: List[EncoderState]) -> DecoderState:
        if encoder_states:
            # Mask-weighted mean removes padding from the average
            means = [weighted_average(s.context, s.mask) for s in encoder_states]
            dense = Dense(graph, self.state_config, [m.size(-1) for m in means])
            start = dense.apply(means)
        else:
            start = torch.zeros(batch.size, self.config.dim_rnn, device=graph.device)

        states = [CellState(start, start) for _ in range(self.config.dec_depth)]
        return DecoderState(states, None, encoder_states, batch)

    def _construct(self, graph: ComputationGraph, training: bool) -> _DecoderNetworks:
        rnn = RNN(graph, self.rnn_config, training=training)
        hidden = Dense(graph, self.hidden_config, [self.config.dim_emb, self.config.dim_rnn])
        last = Output(graph, self.output_config, self.config.dim_emb)
        return _DecoderNetworks(graph, rnn, MLP([hidden, last]), training)

    def step(self, graph: ComputationGraph, state: DecoderState) -> DecoderState:
        embeddings = state.target_history_embeddings
        if embeddings is None:
            raise ModelError("Decoder step needs target history embeddings")

        training = not (self.inference or graph.inference)
        embeddings = word_dropout(embeddings, self.config.dropout_trg, training)

        if self._cache is None:
            self._cache = self._construct(graph, training)
        elif self._cache.graph is not graph:
            raise ModelError(
                f"Decoder networks were built for graph '{self._cache.graph.name}'; "
                f"call clear() before stepping with graph '{graph.name}'")

        decoder_context = self._cache.rnn.transduce(embeddings, state.states, mask=state.target_mask)
        # Last state per layer, needed to continue decoding with the next word
        decoder_states = self._cache.rnn.last_cell_states()
        logits = self._cache.output.apply([embeddings, decoder_context])

        return DecoderState(decoder_states, logits, state.encoder_states, state.batch,
                            position=state.position + 1)

    @property
    def cached(self) -> bool:
        return self._cache is not None

    def clear(self):
        """Drop the cached sub-networks; the next step rebuilds them."""
        self._cache = None
