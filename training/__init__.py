# training/__init__.py
"""
Training module for online adaptation.

Provides the episode scheduler, optimizers, the baseline/adapted graph
manager and the adaptation trainer that ties them together.
"""

from .training_state import TrainingState, TrainingObserver
from .scheduler import Scheduler, EpisodePhase
from .optimizers import OptimizerBase, Sgd, Adam, Adagrad, create_optimizer
from .graph_manager import DualGraphManager
from .adaptation_trainer import AdaptationTrainer

__all__ = [
    "TrainingState",
    "TrainingObserver",
    "Scheduler",
    "EpisodePhase",
    "OptimizerBase",
    "Sgd",
    "Adam",
    "Adagrad",
    "create_optimizer",
    "DualGraphManager",
    "AdaptationTrainer",
]
