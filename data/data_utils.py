# data/data_utils.py
"""
Shared text stream utilities for training sets and evaluation input
"""

import gzip
import sys
from pathlib import Path
from typing import IO, Union
import logging

from utils.exceptions import DataError

logger = logging.getLogger(__name__)

STDIN_NAMES = ("stdin", "-")
STDOUT_NAMES = ("stdout", "-")


def open_text(path: Union[str, Path]) -> IO[str]:
    """
    Open a text stream for line-by-line reading.

    Args:
        path: File path, a ``.gz`` file, or ``stdin``/``-``

    Returns:
        Text stream positioned at the first line
    """
    if str(path) in STDIN_NAMES:
        return sys.stdin

    path = Path(path)
    if not path.exists():
        raise DataError(f"Data file not found: {path}")

    try:
        if path.suffix == '.gz':
            return gzip.open(path, 'rt', encoding='utf-8')
        return open(path, 'r', encoding='utf-8')
    except OSError as e:
        raise DataError(f"Cannot open {path}: {e}") from e


def open_output(path: Union[str, Path]) -> IO[str]:
    """Open a text stream for writing translations (``stdout``/``-`` for console)."""
    if str(path) in STDOUT_NAMES:
        return sys.stdout
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, 'w', encoding='utf-8')


def read_line(stream: IO[str]):
    """Read one line without its trailing newline; None at end of stream."""
    line = stream.readline()
    if line == '':
        return None
    return line.rstrip('\r\n')
