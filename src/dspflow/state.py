"""Numeric defaults and typed per-node runtime state records."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Tuple

import numpy as np

# =========================
# Settings / fidelity
# =========================
RAW_DTYPE = np.float64
DEFAULT_SAMPLE_RATE = 48000
DEFAULT_BUFFER_SIZE = 1024
TWO_PI = 2.0 * math.pi

# dB floor used when converting magnitudes.
DB_FLOOR = 1e-10


def wrap_phase(phase: float) -> float:
    """Wrap ``phase`` into ``[0, 2*pi)``."""

    wrapped = math.fmod(phase, TWO_PI)
    if wrapped < 0.0:
        wrapped += TWO_PI
    # fmod can return exactly 2*pi after the correction for tiny negatives
    return 0.0 if wrapped >= TWO_PI else wrapped


# =========================
# Runtime state records
# =========================
#
# Only these records survive from one cycle to the next; node outputs are
# recomputed every cycle.  Each record is created lazily the first time its
# node runs and discarded whenever the engine starts or is re-initialised.


@dataclass(slots=True)
class OscillatorState:
    """Phase accumulator for the sine/cosine generators."""

    phase: float | None = None

    def advance(self, frequency: float, sample_rate: float, frames: int) -> None:
        start = 0.0 if self.phase is None else self.phase
        self.phase = wrap_phase(start + TWO_PI * frequency / sample_rate * frames)


@dataclass(slots=True)
class FIRState:
    """Ring buffer of past input samples for a streaming FIR filter.

    ``history`` holds the last ``len(history)`` inputs; ``pointer`` indexes the
    oldest sample.  ``key`` records the design the cached ``coefficients`` were
    built for so a parameter change rebuilds them and clears the history.
    """

    key: Tuple[Any, ...] | None = None
    coefficients: np.ndarray = field(default_factory=lambda: np.zeros(0, RAW_DTYPE))
    history: np.ndarray = field(default_factory=lambda: np.zeros(0, RAW_DTYPE))
    pointer: int = 0

    def configure(self, key: Tuple[Any, ...], coefficients: np.ndarray) -> None:
        if key == self.key:
            return
        self.key = key
        self.coefficients = np.asarray(coefficients, dtype=RAW_DTYPE)
        self.history = np.zeros(max(0, self.coefficients.shape[0] - 1), RAW_DTYPE)
        self.pointer = 0

    def ordered_history(self) -> np.ndarray:
        """Return the stored samples oldest first."""

        if self.history.size == 0:
            return self.history
        return np.roll(self.history, -self.pointer)

    def push(self, samples: np.ndarray) -> None:
        capacity = self.history.shape[0]
        if capacity == 0:
            return
        samples = np.asarray(samples, dtype=RAW_DTYPE)
        if samples.shape[0] >= capacity:
            self.history[:] = samples[-capacity:]
            self.pointer = 0
            return
        idx = (self.pointer + np.arange(samples.shape[0])) % capacity
        self.history[idx] = samples
        self.pointer = int((self.pointer + samples.shape[0]) % capacity)


@dataclass(slots=True)
class BandpassState:
    """Two streaming lowpass paths whose difference forms the passband."""

    upper: FIRState = field(default_factory=FIRState)
    lower: FIRState = field(default_factory=FIRState)


@dataclass(slots=True)
class IntegratorState:
    accumulator: float = 0.0


@dataclass(slots=True)
class PlaybackState:
    """Read position into an audio-file sample source."""

    offset: int = 0
    source: Any = None


@dataclass(slots=True)
class PhaseReferenceState:
    """Reference oscillator phase for the phase detector."""

    phase: float = 0.0


__all__ = [
    "BandpassState",
    "DB_FLOOR",
    "DEFAULT_BUFFER_SIZE",
    "DEFAULT_SAMPLE_RATE",
    "FIRState",
    "IntegratorState",
    "OscillatorState",
    "PhaseReferenceState",
    "PlaybackState",
    "RAW_DTYPE",
    "TWO_PI",
    "wrap_phase",
]
