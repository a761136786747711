# translation/beam_search.py
"""
Beam search over one or more weighted scorers.

Sentences are decoded one at a time. The beam shrinks by one for every
hypothesis that ends in ``</s>``; decoding stops when the beam is empty or
the maximum output length is reached, at which point ``</s>`` is forced.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

import torch
import torch.nn.functional as F

from config.schemas import TranslationConfig
from data.dataset_classes import CorpusBatch
from models.graph import ComputationGraph
from translation.scorers import ScorerWrapper
from utils.exceptions import InferenceError
from vocabulary.vocab import EOS_ID, UNK_ID

logger = logging.getLogger(__name__)


@dataclass
class Hypothesis:
    words: List[int]
    score: float

    def normalized(self, alpha: float = 0.0) -> float:
        """Score divided by length**alpha (no normalization when alpha is 0)."""
        if alpha <= 0:
            return self.score
        return self.score / (max(1, len(self.words)) ** alpha)


@dataclass
class History:
    """Finished hypotheses for one input line"""
    line_num: int
    normalize: float = 0.0
    hypotheses: List[Hypothesis] = field(default_factory=list)

    def add(self, hypothesis: Hypothesis):
        self.hypotheses.append(hypothesis)

    def sorted(self) -> List[Hypothesis]:
        # Stable sort keeps search order among equal scores
        return sorted(self.hypotheses, key=lambda h: h.normalized(self.normalize), reverse=True)

    def top(self) -> Hypothesis:
        if not self.hypotheses:
            raise InferenceError(f"No hypotheses for line {self.line_num}")
        return self.sorted()[0]

    def nbest(self, n: int) -> List[Hypothesis]:
        return self.sorted()[:n]

    def __len__(self) -> int:
        return len(self.hypotheses)


class BeamSearch:
    """Beam search decoder producing one History per sentence of a batch"""

    def __init__(self, config: TranslationConfig, scorers: Sequence[ScorerWrapper]):
        if not scorers:
            raise InferenceError("Beam search needs at least one scorer")
        self.config = config
        self.scorers = list(scorers)

    def search(self, graph: ComputationGraph, batch: CorpusBatch) -> List[History]:
        if not graph.has_params():
            raise InferenceError(f"Cannot translate with graph '{graph.name}': it holds no parameters")

        for scorer in self.scorers:
            scorer.init(graph)

        with torch.no_grad():
            return [self._search_sentence(graph, batch.select([row])) for row in range(batch.size)]

    def _search_sentence(self, graph: ComputationGraph, batch: CorpusBatch) -> History:
        config = self.config
        history = History(batch.sentence_ids[0], config.normalize)
        max_length = max(1, int(config.max_length_factor * batch.front().words))
        beam_size = config.beam_size

        states = [scorer.start_state(graph, batch) for scorer in self.scorers]
        live: List[List[int]] = [[]]
        scores = torch.zeros(1, device=graph.device)
        hyp_indices = None
        word_ids = None

        for position in range(max_length):
            log_probs = None
            for i, scorer in enumerate(self.scorers):
                states[i] = scorer.step(graph, states[i], hyp_indices, word_ids)
                scorer_log_probs = F.log_softmax(states[i].logits[:, -1], dim=-1) * scorer.weight
                log_probs = scorer_log_probs if log_probs is None else log_probs + scorer_log_probs

            if not config.allow_unk:
                log_probs[:, UNK_ID] = -math.inf
            if config.word_penalty:
                log_probs = log_probs - config.word_penalty
                log_probs[:, EOS_ID] += config.word_penalty
            if position == max_length - 1:
                forced = torch.full_like(log_probs, -math.inf)
                forced[:, EOS_ID] = log_probs[:, EOS_ID]
                log_probs = forced

            total = scores.unsqueeze(1) + log_probs
            dim_vocab = total.size(1)
            k = min(beam_size, total.numel())
            top_scores, top_index = total.view(-1).topk(k)

            next_live, next_scores, prev_rows, next_words = [], [], [], []
            for score, flat in zip(top_scores.tolist(), top_index.tolist()):
                if not math.isfinite(score):
                    continue
                row, word = divmod(flat, dim_vocab)
                words = live[row] + [word]
                if word == EOS_ID:
                    history.add(Hypothesis(words, score))
                    beam_size -= 1
                else:
                    next_live.append(words)
                    next_scores.append(score)
                    prev_rows.append(row)
                    next_words.append(word)

            if beam_size <= 0 or not next_live:
                break

            live = next_live
            scores = torch.tensor(next_scores, device=graph.device)
            hyp_indices = torch.tensor(prev_rows, dtype=torch.long, device=graph.device)
            word_ids = torch.tensor(next_words, dtype=torch.long, device=graph.device)

        if not history.hypotheses:
            logger.warning(f"No finished hypothesis for line {history.line_num}; emitting empty translation")
            history.add(Hypothesis([EOS_ID], -math.inf))
        return history
