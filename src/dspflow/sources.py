"""Sample sources feeding the audio-file generator block."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator

import numpy as np
import soundfile as sf

from .state import RAW_DTYPE

MAX_FILE_BYTES = 100 * 1024 * 1024


class SampleSource(ABC):
    """Mono sample stream with a known rate and length."""

    @property
    @abstractmethod
    def sample_rate(self) -> int: ...

    @property
    @abstractmethod
    def frame_count(self) -> int: ...

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate) if self.sample_rate else 0.0

    @abstractmethod
    def read(self, offset: int, frames: int) -> np.ndarray:
        """Return up to ``frames`` samples starting at ``offset`` (may be short at the end)."""


class ArraySampleSource(SampleSource):
    """In-memory mono buffer."""

    def __init__(self, samples, sample_rate: int, *, name: str = "") -> None:
        array = np.asarray(samples, dtype=RAW_DTYPE)
        if array.ndim == 2:
            # (frames, channels): keep the first channel
            array = array[:, 0]
        if array.ndim != 1:
            raise ValueError(f"samples must be 1-D or (frames, channels), got rank {array.ndim}")
        if int(sample_rate) <= 0:
            raise ValueError("sample rate must be positive")
        self._samples = np.ascontiguousarray(array)
        self._sample_rate = int(sample_rate)
        self.name = name

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_count(self) -> int:
        return int(self._samples.shape[0])

    @property
    def samples(self) -> np.ndarray:
        return self._samples

    def read(self, offset: int, frames: int) -> np.ndarray:
        offset = max(0, int(offset))
        return self._samples[offset:offset + max(0, int(frames))].copy()


class SoundFileSampleSource(ArraySampleSource):
    """Audio file decoded with ``soundfile``; only the first channel is kept."""

    def __init__(self, samples, sample_rate: int, *, path: str | Path, channels: int) -> None:
        super().__init__(samples, sample_rate, name=Path(path).name)
        self.path = Path(path)
        self.channels = int(channels)

    @classmethod
    def open(cls, path: str | Path) -> "SoundFileSampleSource":
        path = Path(path)
        size = os.path.getsize(path)
        if size > MAX_FILE_BYTES:
            raise ValueError(
                f"{path.name}: file too large ({size / 1024 / 1024:.1f} MiB, "
                f"limit {MAX_FILE_BYTES // (1024 * 1024)} MiB)"
            )
        data, rate = sf.read(str(path), always_2d=True, dtype="float64")
        return cls(data[:, 0], int(rate), path=path, channels=data.shape[1])


def iter_blocks(source: SampleSource, block_size: int) -> Iterator[np.ndarray]:
    """Yield ``block_size`` chunks of ``source``; the final chunk is zero padded."""

    block_size = int(block_size)
    if block_size <= 0:
        raise ValueError("block size must be positive")
    offset = 0
    total = source.frame_count
    while offset < total:
        chunk = source.read(offset, block_size)
        block = np.zeros(block_size, RAW_DTYPE)
        block[:chunk.shape[0]] = chunk
        yield block
        offset += block_size


__all__ = [
    "ArraySampleSource",
    "MAX_FILE_BYTES",
    "SampleSource",
    "SoundFileSampleSource",
    "iter_blocks",
]
