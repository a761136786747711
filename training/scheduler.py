# training/scheduler.py
"""
Episode scheduler: a small state machine driving one training episode.

    CREATED -> STARTED -> (RUNNING <-> EPOCH_BOUNDARY) -> FINISHED

The scheduler is the only component that advances the step and epoch
counters of the shared TrainingState. Listeners are notified in
registration order at each lifecycle point.
"""
import logging
from enum import Enum, auto
from typing import List, Sequence

from config.schemas import TrainingConfig
from training.training_state import TrainingObserver, TrainingState
from utils.exceptions import TrainingError

logger = logging.getLogger(__name__)


class EpisodePhase(Enum):
    """Lifecycle phases of a training episode"""
    CREATED = auto()
    STARTED = auto()
    RUNNING = auto()
    EPOCH_BOUNDARY = auto()
    FINISHED = auto()


class Scheduler:
    """Decides how long an episode runs and publishes its lifecycle events"""

    def __init__(self, config: TrainingConfig, state: TrainingState,
                 listeners: Sequence[TrainingObserver] = ()):
        self.config = config
        self.state = state
        self.listeners: List[TrainingObserver] = list(listeners)
        self.phase = EpisodePhase.CREATED

    def register_listener(self, listener: TrainingObserver):
        self.listeners.append(listener)

    def keep_going(self) -> bool:
        """Whether the episode should continue; has no side effects."""
        if self.phase == EpisodePhase.FINISHED:
            return False
        if self.config.after_epochs > 0 and self.state.epoch >= self.config.after_epochs:
            return False
        if self.config.after_batches > 0 and self.state.batches >= self.config.after_batches:
            return False
        return True

    def started(self):
        if self.phase != EpisodePhase.CREATED:
            raise TrainingError(f"Episode already started (phase {self.phase.name})")
        self.state.new_episode(self.config.learn_rate)
        self.phase = EpisodePhase.STARTED
        for listener in self.listeners:
            listener.on_start(self.state)

    def update(self, cost: float, batch):
        """Record one optimizer step on ``batch`` with training cost ``cost``."""
        self._check_active("update")
        self.phase = EpisodePhase.RUNNING

        state = self.state
        state.batches += 1
        state.total_steps += 1
        state.last_cost = cost
        state.cost_sum += cost

        if self.config.lr_decay_strategy == "batches" and state.batches >= self.config.lr_decay_start:
            self._decay()

        logger.debug(f"Step {state.total_steps}: cost {cost:.4f}, lr {state.learning_rate:.3g}")
        for listener in self.listeners:
            listener.on_step(state, cost, batch)

    def increase_epoch(self):
        self._check_active("increase_epoch")
        self.phase = EpisodePhase.EPOCH_BOUNDARY
        self.state.epoch += 1

        if self.config.lr_decay_strategy == "epoch" and self.state.epoch >= self.config.lr_decay_start:
            self._decay()

        for listener in self.listeners:
            listener.on_epoch_end(self.state)

    def finished(self):
        self._check_active("finished")
        self.phase = EpisodePhase.FINISHED
        state = self.state
        if state.batches:
            logger.info(f"Episode {state.episodes}: {state.batches} step(s) over {state.epoch} epoch(s), "
                        f"mean cost {state.mean_cost:.4f}, lr {state.learning_rate:.3g}")
        else:
            logger.info(f"Episode {state.episodes}: no training batches, parameters unchanged")
        for listener in self.listeners:
            listener.on_finish(state)

    def _check_active(self, operation: str):
        if self.phase == EpisodePhase.CREATED:
            raise TrainingError(f"Scheduler.{operation}() called before started()")
        if self.phase == EpisodePhase.FINISHED:
            raise TrainingError(f"Scheduler.{operation}() called after the episode finished")

    def _decay(self):
        if self.config.lr_decay > 0:
            old = self.state.learning_rate
            self.state.learning_rate = old * self.config.lr_decay
            logger.debug(f"Decaying learning rate {old:.3g} -> {self.state.learning_rate:.3g}")
