# translation/output.py
"""
Rendering of search histories and ordered writing of translations.
"""
import logging
from dataclasses import dataclass
from typing import IO, Dict, Tuple

from translation.beam_search import History
from vocabulary.vocab import Vocab

logger = logging.getLogger(__name__)


@dataclass
class TranslationResult:
    """Rendered translation of one input line"""
    line_num: int
    best1: str
    bestn: str
    graph: str
    score: float


class Printer:
    """Renders a History as best-1 text and Moses-style n-best lines"""

    def __init__(self, vocab: Vocab, n_best_size: int = 1):
        self.vocab = vocab
        self.n_best_size = n_best_size

    def best1(self, history: History) -> str:
        return self.vocab.decode(history.top().words)

    def nbest(self, history: History) -> str:
        lines = []
        for hyp in history.nbest(self.n_best_size):
            lines.append(f"{history.line_num} ||| {self.vocab.decode(hyp.words)} ||| "
                         f"F0= {hyp.score:.4f} ||| {hyp.normalized(history.normalize):.4f}")
        return "\n".join(lines)

    def render(self, history: History) -> Tuple[str, str]:
        return self.best1(history), self.nbest(history)


class OutputCollector:
    """Writes translations strictly in line-number order.

    Results that arrive early are buffered until every preceding line has
    been written. Each write is flushed immediately.
    """

    def __init__(self, stream: IO[str], n_best: bool = False, first_line: int = 0):
        self.stream = stream
        self.n_best = n_best
        self.next_line = first_line
        self._pending: Dict[int, str] = {}
        self.written = 0

    def write(self, result: TranslationResult):
        if result.line_num < self.next_line or result.line_num in self._pending:
            logger.warning(f"Duplicate translation for line {result.line_num} ignored")
            return
        self._pending[result.line_num] = result.bestn if self.n_best else result.best1
        self._drain()

    def _drain(self):
        while self.next_line in self._pending:
            self.stream.write(self._pending.pop(self.next_line) + "\n")
            self.next_line += 1
            self.written += 1
        self.stream.flush()

    def finish(self):
        """Write whatever is still buffered, in order, despite gaps."""
        if self._pending:
            logger.warning(f"Missing translations before line(s) {sorted(self._pending)}; writing buffered output")
            for line_num in sorted(self._pending):
                self.stream.write(self._pending.pop(line_num) + "\n")
                self.written += 1
            self.stream.flush()
