# utils/exceptions.py
"""
Custom exceptions for the online adaptation system
"""
from typing import Optional


class AdaptationSystemError(Exception):
    """Base exception for all online adaptation errors"""
    pass

class DataError(AdaptationSystemError):
    """Raised when input or training files cannot be read"""
    pass

class VocabularyError(AdaptationSystemError):
    """Raised when there are issues with vocabulary loading"""
    pass

class ModelError(AdaptationSystemError):
    """Raised when model parameters are missing, malformed or unreadable"""
    pass

class ConfigurationError(AdaptationSystemError):
    """Raised when there are configuration issues"""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}

class TrainingError(AdaptationSystemError):
    """Raised when there are training-related issues"""
    pass

class NumericDivergenceError(TrainingError):
    """Raised when a training cost is not finite"""

    def __init__(self, cost: float, step: int):
        super().__init__(f"Non-finite cost {cost} at step {step}")
        self.cost = cost
        self.step = step

class InferenceError(AdaptationSystemError):
    """Raised when there are inference-related issues"""
    pass

class ResourceError(AdaptationSystemError):
    """Raised when a shared resource (e.g. a workspace) is used concurrently"""
    pass
