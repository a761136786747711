# encoder/rnn_encoder.py
"""
Bidirectional RNN encoder producing the source context for the decoder.
"""
import logging
from dataclasses import dataclass
from typing import List

import torch
import torch.nn.functional as F

from config.schemas import ModelConfig
from data.dataset_classes import CorpusBatch
from encoder.custom_layers import (
    RNN,
    CellConfig,
    RNNConfig,
    StackedCellConfig,
    word_dropout,
)
from models.graph import ComputationGraph, inits

logger = logging.getLogger(__name__)


@dataclass
class EncoderState:
    """Encoded source stream"""
    context: torch.Tensor  # [batch, src_len, dim_context]
    mask: torch.Tensor     # [batch, src_len]
    batch_index: int


def encoder_prefix(batch_index: int) -> str:
    return "encoder" if batch_index == 0 else f"encoder{batch_index + 1}"


def embedding_name(config: ModelConfig, prefix: str) -> str:
    """Name of the embedding matrix, shared as ``Wemb`` when source and target are tied."""
    if config.tied_embeddings_src or config.tied_embeddings_all:
        return "Wemb"
    return f"{prefix}_Wemb"


def stack_config(config: ModelConfig, cell_type: str, prefix: str, dim_input: int,
                 depth: int, dropout: float) -> StackedCellConfig:
    """Deep-transition stack: the first cell reads the input, the others only the state."""
    cells = []
    for i in range(1, depth + 1):
        cells.append(CellConfig(
            cell_type=cell_type,
            prefix=prefix if i == 1 else f"{prefix}_cell{i}",
            dim_input=dim_input if i == 1 else 0,
            dim_state=config.dim_rnn,
            dropout=dropout,
            layer_normalization=config.layer_normalization,
            transition=i > 1,
        ))
    return StackedCellConfig(tuple(cells))


class BiRNNEncoder:
    """
    Encoder for one source stream.

    Parameters are named after ``prefix`` (``encoder`` for the first source,
    ``encoder2`` for the second and so on): ``{prefix}_Wemb`` for embeddings,
    ``{prefix}_bi`` / ``{prefix}_bi_r`` for the two directions and
    ``{prefix}_l{N}`` for additional unidirectional layers.
    """

    def __init__(self, config: ModelConfig, batch_index: int = 0, inference: bool = False):
        self.config = config
        self.batch_index = batch_index
        self.inference = inference
        self.prefix = encoder_prefix(batch_index)

        dropout_rnn = 0.0 if inference else config.dropout_rnn
        dim_emb, dim_rnn = config.dim_emb, config.dim_rnn

        self.forward_config = RNNConfig((stack_config(
            config, config.enc_cell, f"{self.prefix}_bi", dim_emb,
            config.enc_cell_depth, dropout_rnn),))
        self.backward_config = RNNConfig((stack_config(
            config, config.enc_cell, f"{self.prefix}_bi_r", dim_emb,
            config.enc_cell_depth, dropout_rnn),))

        self.deep_config = None
        if config.enc_depth > 1:
            layers = []
            for layer in range(2, config.enc_depth + 1):
                dim_input = 2 * dim_rnn if layer == 2 else dim_rnn
                layers.append(stack_config(
                    config, config.enc_cell, f"{self.prefix}_l{layer}", dim_input,
                    config.enc_cell_depth, dropout_rnn))
            self.deep_config = RNNConfig(tuple(layers), skip=config.skip)

    @property
    def dim_context(self) -> int:
        return self.config.dim_rnn if self.deep_config else 2 * self.config.dim_rnn

    def embeddings(self, graph: ComputationGraph) -> torch.Tensor:
        dim_vocab = self.config.dim_vocabs[self.batch_index]
        return graph.param(embedding_name(self.config, self.prefix),
                           (dim_vocab, self.config.dim_emb), inits.glorot_uniform)

    def build(self, graph: ComputationGraph, batch: CorpusBatch) -> EncoderState:
        training = not (self.inference or graph.inference)
        sub_batch = batch.sub_batches[self.batch_index]

        x = F.embedding(sub_batch.ids, self.embeddings(graph))
        x = word_dropout(x, self.config.dropout_src, training)
        mask = sub_batch.mask

        forward = RNN(graph, self.forward_config, training=training)
        backward = RNN(graph, self.backward_config, training=training)
        context = torch.cat([
            forward.transduce(x, mask=mask),
            backward.transduce(x, mask=mask, reverse=True),
        ], dim=-1)

        if self.deep_config is not None:
            context = RNN(graph, self.deep_config, training=training).transduce(context, mask=mask)

        # Padded positions carry stale states; zero them for downstream pooling
        context = context * mask.unsqueeze(-1)
        return EncoderState(context, mask, self.batch_index)


def build_encoders(config: ModelConfig, inference: bool = False) -> List[BiRNNEncoder]:
    """One encoder per source stream (all vocabularies except the last)."""
    return [BiRNNEncoder(config, index, inference) for index in range(len(config.dim_vocabs) - 1)]
