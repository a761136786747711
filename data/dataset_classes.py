# data/dataset_classes.py
"""
Dataset and batch classes for adaptation episodes and evaluation streams
"""
import sys
import torch
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union
import logging
from dataclasses import dataclass, field

from data.data_utils import open_text, read_line
from vocabulary.vocab import Vocab, EOS_ID

logger = logging.getLogger(__name__)


@dataclass
class SentenceTuple:
    """One aligned item: token ids per stream plus its line number"""
    id: int
    streams: List[List[int]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.streams)


@dataclass
class SubBatch:
    """Padded token ids and mask for one stream of a batch"""
    ids: torch.Tensor   # [batch, length] long
    mask: torch.Tensor  # [batch, length] float, 1.0 on real tokens

    @property
    def size(self) -> int:
        return self.ids.size(0)

    @property
    def width(self) -> int:
        return self.ids.size(1)

    @property
    def words(self) -> int:
        return int(self.mask.sum().item())

    def to(self, device: torch.device) -> "SubBatch":
        return SubBatch(self.ids.to(device), self.mask.to(device))

    def select(self, indices: Sequence[int]) -> "SubBatch":
        index = torch.as_tensor(list(indices), dtype=torch.long, device=self.ids.device)
        ids = self.ids.index_select(0, index)
        mask = self.mask.index_select(0, index)
        # Drop trailing all-padding columns
        width = max(1, int(mask.sum(dim=1).max().item()))
        return SubBatch(ids[:, :width].contiguous(), mask[:, :width].contiguous())


@dataclass
class CorpusBatch:
    """A batch over all streams; the last stream is the target when training"""
    sub_batches: List[SubBatch]
    sentence_ids: List[int]

    @property
    def size(self) -> int:
        return len(self.sentence_ids)

    def __len__(self) -> int:
        return self.size

    def front(self) -> SubBatch:
        return self.sub_batches[0]

    def back(self) -> SubBatch:
        return self.sub_batches[-1]

    def words(self, index: int = -1) -> int:
        return self.sub_batches[index].words

    def to(self, device: torch.device) -> "CorpusBatch":
        return CorpusBatch([sb.to(device) for sb in self.sub_batches], list(self.sentence_ids))

    def select(self, indices: Sequence[int]) -> "CorpusBatch":
        """Sub-batch of the given rows, keeping their line numbers"""
        return CorpusBatch([sb.select(indices) for sb in self.sub_batches],
                           [self.sentence_ids[i] for i in indices])


def collate_sentences(items: Sequence[SentenceTuple], pad_id: int = EOS_ID) -> CorpusBatch:
    """Pad every stream of the given sentence tuples into a CorpusBatch"""
    num_streams = len(items[0])
    sub_batches = []
    for s in range(num_streams):
        width = max(len(item.streams[s]) for item in items)
        ids = torch.full((len(items), width), pad_id, dtype=torch.long)
        mask = torch.zeros(len(items), width, dtype=torch.float)
        for row, item in enumerate(items):
            tokens = item.streams[s]
            ids[row, :len(tokens)] = torch.tensor(tokens, dtype=torch.long)
            mask[row, :len(tokens)] = 1.0
        sub_batches.append(SubBatch(ids, mask))
    return CorpusBatch(sub_batches, [item.id for item in items])


class _LengthFilter:
    """Skips or crops sentences longer than max_length (eos included)"""

    def __init__(self, max_length: int, crop: bool):
        self.max_length = max_length
        self.crop = crop
        self.skipped = 0

    def __call__(self, streams: List[List[int]]) -> Optional[List[List[int]]]:
        if all(len(s) <= self.max_length for s in streams):
            return streams
        if self.crop:
            return [s if len(s) <= self.max_length else s[:self.max_length - 1] + [EOS_ID] for s in streams]
        self.skipped += 1
        return None


class TextInput:
    """In-memory dataset built from one parallel sample.

    Each entry of ``samples`` belongs to one stream and may hold several
    newline-separated sentences; sentences are aligned by position.
    """

    def __init__(self, samples: Sequence[str], vocabs: Sequence[Vocab],
                 max_length: int = 1000, max_length_crop: bool = False):
        if len(samples) != len(vocabs):
            raise ValueError(f"Got {len(samples)} streams but {len(vocabs)} vocabularies")
        self.vocabs = list(vocabs)
        self.filter = _LengthFilter(max_length, max_length_crop)
        self.lines = [sample.split("\n") for sample in samples]

    def __iter__(self) -> Iterator[SentenceTuple]:
        for idx, aligned in enumerate(zip(*self.lines)):
            streams = [vocab.encode(line) for vocab, line in zip(self.vocabs, aligned)]
            streams = self.filter(streams)
            if streams is None:
                logger.debug(f"Skipping training sentence {idx}: longer than {self.filter.max_length} tokens")
                continue
            yield SentenceTuple(idx, streams)


class Corpus:
    """Line-aligned text files read lazily in lock-step"""

    def __init__(self, paths: Sequence[Union[str, Path]], vocabs: Sequence[Vocab],
                 max_length: int = 1000, max_length_crop: bool = True):
        if len(paths) != len(vocabs):
            raise ValueError(f"Got {len(paths)} files but {len(vocabs)} vocabularies")
        self.paths = [str(p) for p in paths]
        self.vocabs = list(vocabs)
        self.filter = _LengthFilter(max_length, max_length_crop)

    def __iter__(self) -> Iterator[SentenceTuple]:
        streams = [open_text(p) for p in self.paths]
        try:
            line_num = 0
            while True:
                lines = [read_line(s) for s in streams]
                if any(line is None for line in lines):
                    if not all(line is None for line in lines):
                        logger.warning(f"Input streams have different lengths; stopping after {line_num} lines")
                    return
                encoded = self.filter([v.encode(line) for v, line in zip(self.vocabs, lines)])
                if encoded is not None:
                    yield SentenceTuple(line_num, encoded)
                else:
                    logger.warning(f"Skipping input line {line_num}: longer than {self.filter.max_length} tokens")
                line_num += 1
        finally:
            for s in streams:
                if s is not sys.stdin:
                    s.close()


class BatchGenerator:
    """Groups dataset items into padded mini-batches"""

    def __init__(self, dataset, mini_batch: int = 1):
        self.dataset = dataset
        self.mini_batch = mini_batch
        self._iterator: Optional[Iterator[CorpusBatch]] = None

    def prepare(self, shuffle: bool = False):
        """(Re)start iteration over the dataset.

        Shuffling is not supported for streamed data and is ignored.
        """
        if shuffle:
            logger.debug("Shuffling is ignored for streamed datasets")
        self._iterator = self._batches()

    def _batches(self) -> Iterator[CorpusBatch]:
        buffer: List[SentenceTuple] = []
        for item in self.dataset:
            buffer.append(item)
            if len(buffer) == self.mini_batch:
                yield collate_sentences(buffer)
                buffer = []
        if buffer:
            yield collate_sentences(buffer)

    def __iter__(self) -> Iterator[CorpusBatch]:
        if self._iterator is None:
            self.prepare()
        return self

    def __next__(self) -> CorpusBatch:
        if self._iterator is None:
            self.prepare()
        return next(self._iterator)
