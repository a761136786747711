# vocabulary/__init__.py
"""
Vocabulary loading and word-level tokenization.
"""
from .vocab import Vocab, load_vocabs, EOS_ID, UNK_ID, EOS_TOKEN, UNK_TOKEN

__all__ = ["Vocab", "load_vocabs", "EOS_ID", "UNK_ID", "EOS_TOKEN", "UNK_TOKEN"]
