# utils/gpu_utils.py
import torch
import logging

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def resolve_device(name: str = "auto") -> torch.device:
    """Map a configured device name to a torch device"""
    if name == "auto":
        return torch.device('cuda' if torch.cuda.is_available() else 'cpu')

    device = torch.device(name)
    if device.type == 'cuda':
        if not torch.cuda.is_available():
            raise ConfigurationError(f"Device {name} requested but CUDA is not available")
        if device.index is not None and device.index >= torch.cuda.device_count():
            raise ConfigurationError(
                f"Device {name} requested but only {torch.cuda.device_count()} GPU(s) present")
    return device
