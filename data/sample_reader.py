# data/sample_reader.py
"""
Streaming reader for aligned parallel training samples.

Each call pulls the next ``n`` lines from every parallel file. A sample is
only returned when every file could deliver all ``n`` lines; otherwise the
whole sample is dropped and an empty tuple is returned.
"""
import logging
import sys
from pathlib import Path
from typing import IO, List, Sequence, Tuple, Union

from data.data_utils import open_text, read_line

logger = logging.getLogger(__name__)

# One string per parallel source; multi-line samples are joined by "\n"
ParallelSample = Tuple[str, ...]


class TrainSetReader:
    """Reads aligned samples from parallel text files in lock-step"""

    def __init__(self, paths: Sequence[Union[str, Path]]):
        self.paths = [str(p) for p in paths]
        self._files: List[IO[str]] = [open_text(p) for p in self.paths]
        self._exhausted = False
        logger.info(f"Opened {len(self._files)} parallel training streams: {', '.join(self.paths)}")

    @property
    def exhausted(self) -> bool:
        """True once any stream has run dry; never reset"""
        return self._exhausted

    def get_samples(self, n: int = 1) -> ParallelSample:
        """
        Read the next ``n`` lines from each file.

        Args:
            n: Number of lines to take from every file

        Returns:
            One string per file, or an empty tuple if any file ran short
        """
        if n < 1 or self._exhausted:
            return ()

        samples = []
        for path, stream in zip(self.paths, self._files):
            lines = []
            for _ in range(n):
                line = read_line(stream)
                if line is None:
                    self._mark_exhausted(path, len(lines), n)
                    return ()
                lines.append(line)
            samples.append("\n".join(lines))

        return tuple(samples)

    def _mark_exhausted(self, path: str, got: int, wanted: int):
        self._exhausted = True
        if got:
            logger.warning(f"Training stream {path} ended after {got} of {wanted} lines; dropping partial sample")
        else:
            logger.info(f"Training stream {path} exhausted")

    def close(self):
        for stream in self._files:
            if stream is not sys.stdin and not stream.closed:
                stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
