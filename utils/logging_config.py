# utils/logging_config.py
import logging
import logging.config
import os
from pathlib import Path
import sys
from typing import Optional

import torch


def _get_device_info() -> str:
    """Get compute device information"""
    if torch.cuda.is_available():
        names = [torch.cuda.get_device_name(i) for i in range(torch.cuda.device_count())]
        return f"CUDA ({', '.join(names)})"
    return "CPU only"

def _log_system_info(logger: logging.Logger):
    """Log standardized system information"""
    logger.info("=" * 60)
    logger.info("SYSTEM INFO")
    logger.info("=" * 60)
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"PyTorch version: {torch.__version__}")
    logger.info(f"Platform: {sys.platform}")
    logger.info(f"Working directory: {os.getcwd()}")
    logger.info(f"Compute devices: {_get_device_info()}")
    logger.info("=" * 60)

def setup_logging(log_dir: Optional[str] = "logs", log_level: str = "INFO", log_to_file: bool = False):
    """Setup logging configuration.

    Console output goes to stderr because stdout carries translations.
    """
    handlers = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': log_level,
            'formatter': 'standard',
            'stream': sys.stderr
        },
    }
    root_handlers = ['console']
    section_handlers = ['console']

    if log_to_file and log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': 'DEBUG',
            'formatter': 'detailed',
            'filename': f'{log_dir}/online_adaptation.log',
            'maxBytes': 10485760,
            'backupCount': 5
        }
        handlers['error_file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': 'ERROR',
            'formatter': 'detailed',
            'filename': f'{log_dir}/errors.log',
            'maxBytes': 10485760,
            'backupCount': 5
        }
        root_handlers += ['file', 'error_file']
        section_handlers += ['file']

    LOGGING_CONFIG = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'detailed': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s() - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            }
        },
        'handlers': handlers,
        'loggers': {
            'training': {
                'level': 'DEBUG',
                'handlers': section_handlers,
                'propagate': False
            },
            'data': {
                'level': log_level,
                'handlers': section_handlers,
                'propagate': False
            },
            'translation': {
                'level': log_level,
                'handlers': section_handlers,
                'propagate': False
            },
        },
        'root': {
            'level': log_level,
            'handlers': root_handlers
        }
    }

    logging.config.dictConfig(LOGGING_CONFIG)

    logger = logging.getLogger(__name__)
    logger.info("Online adaptation - logging initialized")
    logger.info(f"Log level: {log_level}")
    if log_to_file and log_dir:
        logger.info(f"Log directory: {log_dir}")

    _log_system_info(logger)
