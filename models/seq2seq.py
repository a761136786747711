# models/seq2seq.py
"""
Sequence-to-sequence model builder.

The builder holds no parameters itself. ``build`` constructs the training
cost on a given graph and ``start_state``/``step`` expose incremental
decoding for beam search, so the same builder can run against the baseline
and the adapted graph.
"""
import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import torch
import torch.nn.functional as F

from config.schemas import ModelConfig, TrainingConfig
from data.dataset_classes import CorpusBatch, SubBatch
from decoder.sutskever_decoder import DecoderState, SutskeverDecoder
from encoder.rnn_encoder import EncoderState, build_encoders
from models.graph import ComputationGraph
from utils.exceptions import ConfigurationError, ModelError
from vocabulary.vocab import EOS_ID

logger = logging.getLogger(__name__)


class Seq2SeqModel:
    """RNN encoder-decoder over one or more source streams and one target stream"""

    def __init__(self, config: ModelConfig, training_config: Optional[TrainingConfig] = None,
                 inference: bool = False):
        if len(config.dim_vocabs) < 2:
            raise ConfigurationError(
                "Model needs resolved vocabulary dimensions for at least one source and the target",
                {"dim_vocabs": config.dim_vocabs})
        self.config = config
        self.inference = inference
        training_config = training_config or TrainingConfig()
        self.cost_type = training_config.cost_type
        self.label_smoothing = 0.0 if inference else training_config.label_smoothing

        self.encoders = build_encoders(config, inference)
        self.decoder = SutskeverDecoder(config, inference)

    def clear(self, graph: Optional[ComputationGraph] = None):
        """Drop cached sub-networks (and the graph's transient state if given)."""
        self.decoder.clear()
        if graph is not None:
            graph.clear()

    def encode(self, graph: ComputationGraph, batch: CorpusBatch) -> List[EncoderState]:
        return [encoder.build(graph, batch) for encoder in self.encoders]

    def start_state(self, graph: ComputationGraph, batch: CorpusBatch) -> DecoderState:
        return self.decoder.start_state(graph, batch, self.encode(graph, batch))

    def step(self, graph: ComputationGraph, state: DecoderState,
             hyp_indices: Optional[torch.Tensor] = None,
             word_ids: Optional[torch.Tensor] = None) -> DecoderState:
        """
        Advance decoding by one word.

        Args:
            graph: Graph holding the parameters
            state: State returned by ``start_state`` or a previous step
            hyp_indices: Rows of ``state`` each new hypothesis continues from
            word_ids: Last word of each hypothesis; None on the first step

        Returns:
            New state whose ``logits`` are [hypotheses, 1, dim_vocab]
        """
        if hyp_indices is not None:
            state = state.select(hyp_indices)

        rows = state.states[0].output.size(0)
        if word_ids is None:
            embeddings = torch.zeros(rows, 1, self.config.dim_emb, device=graph.device)
        else:
            embeddings = F.embedding(word_ids.view(rows, 1), self.decoder.embeddings(graph))
        return self.decoder.step(graph, state.with_embeddings(embeddings))

    def build(self, graph: ComputationGraph, batch: CorpusBatch, clear_graph: bool = True) -> torch.Tensor:
        """Return the scalar training cost of ``batch`` on ``graph``."""
        if clear_graph:
            self.clear(graph)

        state = self.start_state(graph, batch)
        target = batch.back()
        embeddings = F.embedding(target.ids, self.decoder.embeddings(graph))
        # Shift right: the first position sees a zero embedding
        shifted = torch.cat([torch.zeros_like(embeddings[:, :1]), embeddings[:, :-1]], dim=1)

        state = self.decoder.step(graph, state.with_embeddings(shifted, target.mask))
        logits = state.logits
        rows, width, dim_vocab = logits.shape

        ce = F.cross_entropy(logits.reshape(-1, dim_vocab), target.ids.reshape(-1),
                             reduction='none', label_smoothing=self.label_smoothing)
        ce = ce.view(rows, width) * target.mask

        if self.cost_type == "ce-sum":
            return ce.sum()
        if self.cost_type == "ce-mean-words":
            return ce.sum() / target.mask.sum().clamp(min=1.0)
        return ce.sum() / rows

    def dummy_batch(self, device: torch.device) -> CorpusBatch:
        """One-word batch touching every stream, used to create or check parameters."""
        sub_batches = [SubBatch(torch.full((1, 1), EOS_ID, dtype=torch.long, device=device),
                                torch.ones(1, 1, device=device))
                       for _ in self.config.dim_vocabs]
        return CorpusBatch(sub_batches, [0])

    def initialize(self, graph: ComputationGraph):
        """Create every parameter of the architecture on ``graph``."""
        with torch.no_grad():
            self.build(graph, self.dummy_batch(graph.device))
        self.clear(graph)
        logger.info(f"Initialized {len(graph.param_names())} parameters "
                    f"({graph.num_parameters():,} values) on graph '{graph.name}'")

    def check_params(self, graph: ComputationGraph):
        """
        Verify that ``graph`` holds every parameter with the configured shape.

        Raises:
            ConfigurationError: if parameters are missing or the model file
                does not match the configured vocabulary/model dimensions
        """
        if not graph.has_params():
            raise ConfigurationError(f"Graph '{graph.name}' holds no parameters")
        try:
            with torch.no_grad():
                self.build(graph, self.dummy_batch(graph.device))
        except ModelError as e:
            raise ConfigurationError(f"Model does not match configuration: {e}") from e
        finally:
            self.clear(graph)

    def load(self, graph: ComputationGraph, path: Union[str, Path]):
        """Load parameters from a ``.pt`` checkpoint or ``.npz`` archive."""
        path = Path(path)
        if not path.exists():
            raise ModelError(f"Model file not found: {path}")

        try:
            if path.suffix == '.npz':
                with np.load(path) as archive:
                    tensors = {name: torch.from_numpy(archive[name]) for name in archive.files}
            else:
                checkpoint = torch.load(path, map_location='cpu')
                tensors = checkpoint.get('model_state_dict', checkpoint)
        except (OSError, ValueError, RuntimeError, AttributeError) as e:
            raise ModelError(f"Cannot read model file {path}: {e}") from e

        if not tensors:
            raise ModelError(f"Model file {path} contains no parameters")

        graph.load_params(tensors)
        logger.info(f"Loaded {len(tensors)} parameters from {path} into graph '{graph.name}'")

    def save(self, graph: ComputationGraph, path: Union[str, Path]):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tensors = {name: p.detach().cpu() for name, p in graph.params.items()}

        if path.suffix == '.npz':
            np.savez(path, **{name: t.numpy() for name, t in tensors.items()})
        else:
            torch.save({'model_state_dict': tensors, 'config': self.config.model_dump()}, path)
        logger.info(f"Saved {len(tensors)} parameters to {path}")
