# translation/translator.py
"""
Translator: beam search with a fixed set of scorers, run against a chosen graph.
"""
import logging
from typing import List

from config.schemas import TranslationConfig
from data.dataset_classes import CorpusBatch
from models.graph import ComputationGraph
from translation.beam_search import BeamSearch
from translation.output import Printer, TranslationResult
from translation.scorers import ScorerWrapper
from vocabulary.vocab import Vocab

logger = logging.getLogger(__name__)


class Translator:
    def __init__(self, config: TranslationConfig, builder, target_vocab: Vocab):
        self.config = config
        self.scorers = [ScorerWrapper(builder, "F0", 1.0)]
        self.search = BeamSearch(config, self.scorers)
        self.printer = Printer(target_vocab, n_best_size=config.beam_size)

    def translate(self, graph: ComputationGraph, batch: CorpusBatch) -> List[TranslationResult]:
        """Translate every sentence of ``batch`` with the parameters of ``graph``."""
        results = []
        for history in self.search.search(graph, batch):
            best1, bestn = self.printer.render(history)
            results.append(TranslationResult(history.line_num, best1, bestn, graph.name,
                                             history.top().score))
            logger.debug(f"Line {history.line_num} [{graph.name}]: {best1}")
        return results
