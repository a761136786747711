# training/optimizers.py
"""
Optimizers acting on computation graphs.

Each optimizer wraps a ``torch.optim`` instance that is built lazily on the
first update and then kept for the lifetime of the trainer, so moments and
accumulators persist across adaptation episodes.
"""
import logging
from typing import Dict, List, Optional

import torch

from config.schemas import TrainingConfig
from models.graph import ComputationGraph
from training.training_state import TrainingObserver, TrainingState
from utils.exceptions import TrainingError

logger = logging.getLogger(__name__)


class OptimizerBase(TrainingObserver):
    """Applies accumulated gradients of a graph to its parameters"""

    def __init__(self, config: TrainingConfig):
        self.learning_rate = config.learn_rate
        self.clip_norm = config.clip_norm
        self.params = list(config.optimizer_params)
        self._optimizer: Optional[torch.optim.Optimizer] = None
        self._graph: Optional[ComputationGraph] = None
        self._tracked = set()

    def _create(self, params: List[torch.nn.Parameter]) -> torch.optim.Optimizer:
        raise NotImplementedError

    def update(self, graph: ComputationGraph):
        """Take one step with the gradients currently held by ``graph``."""
        if graph.frozen:
            raise TrainingError(f"Refusing to update frozen graph '{graph.name}'")

        params = [p for p in graph.params.values() if p.requires_grad]
        if not params:
            raise TrainingError(f"Graph '{graph.name}' has no trainable parameters")

        self._bind(graph, params)

        for group in self._optimizer.param_groups:
            group['lr'] = self.learning_rate

        if self.clip_norm > 0:
            torch.nn.utils.clip_grad_norm_(params, self.clip_norm)

        self._optimizer.step()
        self._optimizer.zero_grad(set_to_none=True)

    def _bind(self, graph: ComputationGraph, params: List[torch.nn.Parameter]):
        if self._optimizer is not None and self._graph is not graph:
            logger.warning(f"Optimizer rebound from graph '{self._graph.name}' to '{graph.name}'; "
                           f"auxiliary state is discarded")
            self._optimizer = None

        if self._optimizer is None:
            self._optimizer = self._create(params)
            self._graph = graph
            self._tracked = {id(p) for p in params}
            logger.debug(f"{type(self).__name__} bound to graph '{graph.name}' ({len(params)} tensors)")
            return

        new_params = [p for p in params if id(p) not in self._tracked]
        if new_params:
            self._optimizer.add_param_group({'params': new_params})
            self._tracked.update(id(p) for p in new_params)

    @property
    def auxiliary_state(self) -> Dict:
        """Per-parameter optimizer state, keyed by parameter."""
        return self._optimizer.state if self._optimizer is not None else {}

    # Listener hooks: follow the scheduler's learning rate

    def on_start(self, state: TrainingState):
        self.learning_rate = state.learning_rate

    def on_step(self, state: TrainingState, cost: float, batch):
        self.learning_rate = state.learning_rate

    def on_epoch_end(self, state: TrainingState):
        self.learning_rate = state.learning_rate


class Sgd(OptimizerBase):
    def _create(self, params):
        return torch.optim.SGD(params, lr=self.learning_rate)


class Adam(OptimizerBase):
    """Adam; ``optimizer_params`` may give beta1, beta2 and epsilon"""

    def _create(self, params):
        beta1 = self.params[0] if len(self.params) > 0 else 0.9
        beta2 = self.params[1] if len(self.params) > 1 else 0.98
        eps = self.params[2] if len(self.params) > 2 else 1e-9
        return torch.optim.Adam(params, lr=self.learning_rate, betas=(beta1, beta2), eps=eps)


class Adagrad(OptimizerBase):
    def _create(self, params):
        eps = self.params[0] if self.params else 1e-8
        return torch.optim.Adagrad(params, lr=self.learning_rate, eps=eps)


OPTIMIZERS = {
    "sgd": Sgd,
    "adam": Adam,
    "adagrad": Adagrad,
}


def create_optimizer(config: TrainingConfig) -> OptimizerBase:
    optimizer = OPTIMIZERS[config.optimizer](config)
    logger.info(f"Created {config.optimizer} optimizer (lr={config.learn_rate}, clip_norm={config.clip_norm})")
    return optimizer
