# training/graph_manager.py
"""
Baseline and adapted computation graphs.

The baseline graph is frozen once handed to the manager. The adapted graph
is created on first use as a parameter copy of the baseline that borrows
the baseline's workspace; afterwards it is only ever mutated by training.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from models.graph import ComputationGraph
from utils.exceptions import ModelError

logger = logging.getLogger(__name__)


class DualGraphManager:
    """Owns the read-only baseline graph and the lazily created adapted copy"""

    def __init__(self, baseline: ComputationGraph):
        if not baseline.has_params():
            raise ModelError(f"Baseline graph '{baseline.name}' holds no parameters")
        baseline.freeze()
        self.baseline = baseline
        self._adapted: Optional[ComputationGraph] = None

    @property
    def adapted(self) -> Optional[ComputationGraph]:
        return self._adapted

    @property
    def adapted_constructed(self) -> bool:
        return self._adapted is not None

    def ensure_adapted(self) -> ComputationGraph:
        """Return the adapted graph, copying it from the baseline the first time."""
        if self._adapted is None:
            adapted = ComputationGraph("adapted", self.baseline.device)
            adapted.reuse_workspace(self.baseline)
            adapted.copy_params(self.baseline)
            adapted.set_inference(False)
            self._adapted = adapted
            logger.info(f"Created adapted graph from baseline "
                        f"({adapted.num_parameters():,} parameter values copied)")
        return self._adapted

    def select(self, use_baseline: bool) -> ComputationGraph:
        if use_baseline:
            return self.baseline
        if self._adapted is None:
            raise ModelError("Adapted graph requested before any training episode created it")
        return self._adapted

    @contextmanager
    def inference(self, graph: ComputationGraph) -> Iterator[ComputationGraph]:
        """Put ``graph`` in inference mode for a translation call.

        Transient state is cleared on entry. On exit the adapted graph goes
        back to training mode; the baseline stays in inference mode.
        """
        graph.set_inference(True)
        graph.clear()
        try:
            yield graph
        finally:
            if graph is self._adapted:
                graph.set_inference(False)
