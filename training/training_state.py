# training/training_state.py
"""
Shared training state and the listener protocol for episode lifecycle events.
"""
import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class TrainingState:
    """Mutable record of learning rate and step counters.

    Created once per trainer. ``epoch``, ``batches`` and ``cost_sum`` are
    per-episode and reset by ``new_episode``; ``total_steps`` and
    ``episodes`` accumulate over the process lifetime.
    """
    learning_rate: float
    epoch: int = 0
    batches: int = 0
    total_steps: int = 0
    episodes: int = 0
    last_cost: Optional[float] = None
    cost_sum: float = 0.0

    def new_episode(self, learning_rate: float):
        self.learning_rate = learning_rate
        self.epoch = 0
        self.batches = 0
        self.last_cost = None
        self.cost_sum = 0.0
        self.episodes += 1

    @property
    def mean_cost(self) -> float:
        return self.cost_sum / self.batches if self.batches else 0.0


class TrainingObserver:
    """Listener for scheduler lifecycle events; all hooks default to no-ops"""

    def on_start(self, state: TrainingState):
        pass

    def on_step(self, state: TrainingState, cost: float, batch):
        pass

    def on_epoch_end(self, state: TrainingState):
        pass

    def on_finish(self, state: TrainingState):
        pass


def is_finite(cost) -> bool:
    return math.isfinite(float(cost))
