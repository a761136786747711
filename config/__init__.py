# config/__init__.py
"""
Config package: pydantic schemas and the YAML loader for adaptation runs.
"""
from .schemas import (
    ModelConfig,
    TrainingConfig,
    TranslationConfig,
    DataConfig,
    HardwareConfig,
    LoggingConfig,
    RootConfig,
    check_consistency,
    load_config,
)

__all__ = [
    "ModelConfig",
    "TrainingConfig",
    "TranslationConfig",
    "DataConfig",
    "HardwareConfig",
    "LoggingConfig",
    "RootConfig",
    "check_consistency",
    "load_config",
]
