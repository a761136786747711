# translation/__init__.py
"""
Translation module: beam search, scorers and output rendering.
"""

from .scorers import ScorerWrapper
from .beam_search import BeamSearch, History, Hypothesis
from .output import OutputCollector, Printer, TranslationResult
from .translator import Translator

__all__ = [
    "ScorerWrapper",
    "BeamSearch",
    "History",
    "Hypothesis",
    "OutputCollector",
    "Printer",
    "TranslationResult",
    "Translator",
]
