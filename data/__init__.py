# data/__init__.py
"""
Data module for online adaptation.

Handles streaming parallel samples, evaluation corpora and batching.
"""

from .data_utils import open_text, open_output
from .sample_reader import TrainSetReader, ParallelSample
from .dataset_classes import (
    SentenceTuple,
    SubBatch,
    CorpusBatch,
    TextInput,
    Corpus,
    BatchGenerator,
    collate_sentences,
)

__all__ = [
    "open_text",
    "open_output",
    "TrainSetReader",
    "ParallelSample",
    "SentenceTuple",
    "SubBatch",
    "CorpusBatch",
    "TextInput",
    "Corpus",
    "BatchGenerator",
    "collate_sentences",
]
