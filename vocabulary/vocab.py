# vocabulary/vocab.py
"""
Word-level vocabularies for the sequence-to-sequence model.

Supported formats:
- YAML or JSON mapping ``{token: id}``
- plain text with one token per line, numbered after the special tokens

``</s>`` (id 0) and ``<unk>`` (id 1) are always present.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Sequence, Union

import yaml

from utils.exceptions import VocabularyError

logger = logging.getLogger(__name__)

EOS_TOKEN = "</s>"
UNK_TOKEN = "<unk>"
EOS_ID = 0
UNK_ID = 1


class Vocab:
    """Bidirectional token/id mapping with an optional size cap"""

    def __init__(self, tokens: Dict[str, int] = None, max_size: int = 0):
        self.token_to_id: Dict[str, int] = {}
        self.id_to_token: Dict[int, str] = {}
        self.max_size = max_size
        if tokens:
            self._build(tokens)

    def _build(self, tokens: Dict[str, int]):
        mapping = {EOS_TOKEN: EOS_ID, UNK_TOKEN: UNK_ID}
        taken = set(mapping.values())
        for token, idx in tokens.items():
            if token in mapping:
                if idx != mapping[token]:
                    raise VocabularyError(
                        f"Special token {token} must have id {mapping[token]}, found {idx}")
                continue
            if idx in taken:
                raise VocabularyError(f"Duplicate vocabulary id {idx} for token {token!r}")
            mapping[token] = idx
            taken.add(idx)

        if self.max_size > 0:
            mapping = {tok: idx for tok, idx in mapping.items() if idx < self.max_size}

        self.token_to_id = mapping
        self.id_to_token = {idx: tok for tok, idx in mapping.items()}

    @classmethod
    def load(cls, path: Union[str, Path], max_size: int = 0) -> "Vocab":
        """Load a vocabulary file, keeping only ids below ``max_size`` if set."""
        path = Path(path)
        if not path.exists():
            raise VocabularyError(f"Vocabulary file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix in ('.yml', '.yaml'):
                    tokens = yaml.safe_load(f) or {}
                elif path.suffix == '.json':
                    tokens = json.load(f)
                else:
                    # Specials keep their fixed ids wherever they are listed
                    tokens = {EOS_TOKEN: EOS_ID, UNK_TOKEN: UNK_ID}
                    for line in f:
                        token = line.rstrip('\r\n')
                        if token and token not in tokens:
                            tokens[token] = len(tokens)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise VocabularyError(f"Cannot read vocabulary {path}: {e}") from e

        if not isinstance(tokens, dict):
            raise VocabularyError(f"Vocabulary {path} must be a token-to-id mapping")

        vocab = cls({str(k): int(v) for k, v in tokens.items()}, max_size=max_size)
        logger.info(f"Loaded vocabulary {path.name} with {len(vocab)} entries")
        return vocab

    def __len__(self) -> int:
        """Dimension needed to embed every id of this vocabulary."""
        if not self.id_to_token:
            return 0
        return max(self.id_to_token) + 1

    def __contains__(self, token: str) -> bool:
        return token in self.token_to_id

    def encode(self, line: str, add_eos: bool = True) -> List[int]:
        """Whitespace-tokenize a line and map tokens to ids."""
        ids = [self.token_to_id.get(word, UNK_ID) for word in line.split()]
        if add_eos:
            ids.append(EOS_ID)
        return ids

    def decode(self, ids: Sequence[int], ignore_eos: bool = True) -> str:
        """Map ids back to a whitespace-joined string, stopping at ``</s>``."""
        words = []
        for idx in ids:
            if idx == EOS_ID and ignore_eos:
                break
            words.append(self.id_to_token.get(int(idx), UNK_TOKEN))
        return " ".join(words)


def load_vocabs(paths: Sequence[Union[str, Path]], dims: Sequence[int] = ()) -> List[Vocab]:
    """Load one vocabulary per stream; ``dims[i] > 0`` caps the size of vocabulary i."""
    vocabs = []
    for i, path in enumerate(paths):
        max_size = dims[i] if i < len(dims) else 0
        vocabs.append(Vocab.load(path, max_size=max_size))
    return vocabs
