# utils/__init__.py
"""
Common utilities for the online adaptation system.

Provides the exception hierarchy, logging setup and device helpers.
"""
from .exceptions import (
    AdaptationSystemError,
    DataError,
    VocabularyError,
    ModelError,
    ConfigurationError,
    TrainingError,
    NumericDivergenceError,
    InferenceError,
    ResourceError,
)
from .logging_config import setup_logging
from .gpu_utils import resolve_device

__all__ = [
    "AdaptationSystemError",
    "DataError",
    "VocabularyError",
    "ModelError",
    "ConfigurationError",
    "TrainingError",
    "NumericDivergenceError",
    "InferenceError",
    "ResourceError",
    "setup_logging",
    "resolve_device",
]
