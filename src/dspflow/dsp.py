"""Stateless DSP kernels used by the built-in blocks.

Every function here is pure: state that has to survive a buffer boundary
(oscillator phase, filter history, integrator value) is passed in and handed
back by the caller.  Real buffers are 1-D ``float64`` arrays; complex buffers
are :class:`ComplexSignal` pairs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .state import DB_FLOOR, RAW_DTYPE, TWO_PI


@dataclass(slots=True)
class ComplexSignal:
    """Quadrature buffer made of separate real and imaginary planes."""

    real: np.ndarray
    imag: np.ndarray

    def __post_init__(self) -> None:
        self.real = np.asarray(self.real, dtype=RAW_DTYPE)
        self.imag = np.asarray(self.imag, dtype=RAW_DTYPE)
        if self.real.shape != self.imag.shape:
            raise ValueError(
                f"real/imag planes differ in shape: {self.real.shape} vs {self.imag.shape}"
            )

    def __len__(self) -> int:
        return int(self.real.shape[0])

    @classmethod
    def zeros(cls, length: int) -> "ComplexSignal":
        return cls(np.zeros(length, RAW_DTYPE), np.zeros(length, RAW_DTYPE))

    def as_complex(self) -> np.ndarray:
        return self.real + 1j * self.imag


@dataclass(slots=True)
class SpectrumFrame:
    """One windowed FFT frame of a sliding transform, in dB."""

    spectrum: np.ndarray
    timestamp: float


def _as_real(buffer) -> np.ndarray:
    array = np.asarray(buffer, dtype=RAW_DTYPE)
    if array.ndim != 1:
        raise ValueError(f"expected a 1-D buffer, got rank {array.ndim}")
    return array


# =========================
# FIR filtering
# =========================


def fir_filter(buffer, coefficients, history=None) -> np.ndarray:
    """Convolve ``buffer`` with ``coefficients``.

    ``output[n] = sum(coefficients[k] * buffer[n - k])``.  Samples before the
    start of ``buffer`` come from ``history`` (oldest first, up to
    ``len(coefficients) - 1`` samples used) and are zero when it is omitted.
    """

    x = _as_real(buffer)
    taps = _as_real(coefficients)
    if x.shape[0] == 0:
        return np.zeros(0, RAW_DTYPE)
    if taps.shape[0] == 0:
        return np.zeros_like(x)
    need = taps.shape[0] - 1
    past = np.zeros(need, RAW_DTYPE)
    if history is not None and need:
        prior = _as_real(history)[-need:]
        if prior.shape[0]:
            past[need - prior.shape[0]:] = prior
    extended = np.concatenate([past, x])
    return np.convolve(extended, taps, mode="valid").astype(RAW_DTYPE, copy=False)


def design_fir(order: int, cutoff: float, sample_rate: float, filter_type: str = "lowpass") -> np.ndarray:
    """Windowed-sinc FIR design with a Hamming window.

    The lowpass prototype is normalised to unity DC gain.  ``highpass``
    applies spectral inversion to the normalised prototype.
    """

    order = int(order)
    if order < 1:
        raise ValueError(f"FIR order must be at least 1, got {order}")
    if sample_rate <= 0:
        raise ValueError("sample rate must be positive")
    if filter_type not in ("lowpass", "highpass"):
        raise ValueError(f"unsupported FIR filter type '{filter_type}'")

    # cutoffs past Nyquist are designed at Nyquist
    fc = min(float(cutoff) / float(sample_rate), 0.5)
    n = np.arange(order, dtype=RAW_DTYPE)
    centre = (order - 1) / 2.0
    ideal = 2.0 * fc * np.sinc(2.0 * fc * (n - centre))
    coefficients = ideal * np.hamming(order)

    total = float(np.sum(coefficients))
    if total <= 0.0:
        raise ValueError(f"cutoff {cutoff} Hz yields a degenerate lowpass prototype")
    coefficients /= total

    if filter_type == "highpass":
        coefficients = -coefficients
        coefficients[order // 2] += 1.0
    return coefficients


def bandpass_filter(buffer, order: int, low_cutoff: float, high_cutoff: float, sample_rate: float) -> np.ndarray:
    upper = fir_filter(buffer, design_fir(order, high_cutoff, sample_rate))
    lower = fir_filter(buffer, design_fir(order, low_cutoff, sample_rate))
    return upper - lower


def hilbert_coefficients(order: int) -> np.ndarray:
    """Hamming-windowed discrete Hilbert quadrature filter of ``order`` taps."""

    order = int(order)
    if order < 1:
        raise ValueError(f"Hilbert order must be at least 1, got {order}")
    offset = np.arange(order, dtype=RAW_DTYPE) - (order - 1) / 2.0
    taps = np.zeros(order, RAW_DTYPE)
    off_centre = offset != 0.0
    k = offset[off_centre]
    taps[off_centre] = (1.0 - np.cos(np.pi * k)) / (np.pi * k)
    return taps * np.hamming(order)


def hilbert_transform(buffer, order: int = 64, history=None) -> ComplexSignal:
    # Zero-delay approximation: the real path is not delayed to match the
    # filter's group delay.
    x = _as_real(buffer)
    imag = fir_filter(x, hilbert_coefficients(order), history)
    return ComplexSignal(x.copy(), imag)


# =========================
# Spectral analysis
# =========================


def next_power_of_two(n: int) -> int:
    n = int(n)
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def is_power_of_two(n) -> bool:
    try:
        value = int(n)
    except (TypeError, ValueError):
        return False
    return value > 0 and value == n and (value & (value - 1)) == 0


def fft(buffer, fft_size: int | None = None) -> ComplexSignal:
    """Radix-2 real FFT returning bins ``0 .. fft_size/2`` inclusive.

    Shorter inputs are zero padded, longer inputs truncated to ``fft_size``.
    """

    x = _as_real(buffer)
    size = int(fft_size) if fft_size else next_power_of_two(x.shape[0])
    if not is_power_of_two(size):
        raise ValueError(f"FFT size must be a power of two, got {fft_size}")
    padded = np.zeros(size, RAW_DTYPE)
    count = min(size, x.shape[0])
    padded[:count] = x[:count]
    bins = np.fft.rfft(padded)
    return ComplexSignal(bins.real.copy(), bins.imag.copy())


def power_spectrum(spectrum: ComplexSignal) -> np.ndarray:
    return np.hypot(spectrum.real, spectrum.imag)


def to_decibels(values, reference: float = 1.0) -> np.ndarray:
    """``20*log10(value/reference)`` floored at ``DB_FLOOR`` to avoid ``-inf``."""

    ratio = np.asarray(values, dtype=RAW_DTYPE) / float(reference)
    return 20.0 * np.log10(np.maximum(ratio, DB_FLOOR))


def sliding_fft(buffer, window_size: int, hop_size: int, fft_size: int | None = None) -> List[SpectrumFrame]:
    """Overlapping Hamming-windowed FFT frames for spectrogram consumers."""

    x = _as_real(buffer)
    window_size = int(window_size)
    hop_size = int(hop_size)
    if window_size <= 0:
        raise ValueError("window size must be positive")
    if hop_size <= 0:
        raise ValueError("hop size must be positive (overlap must be smaller than the window)")
    size = int(fft_size) if fft_size else window_size
    length = x.shape[0]
    if length < window_size:
        return []
    window = np.hamming(window_size)
    count = (length - window_size) // hop_size + 1
    frames: List[SpectrumFrame] = []
    for idx in range(count):
        start = idx * hop_size
        segment = x[start:start + window_size] * window
        spectrum = to_decibels(power_spectrum(fft(segment, size)))
        frames.append(SpectrumFrame(spectrum=spectrum, timestamp=start / length))
    return frames


# =========================
# Generators
# =========================


def generate_sine(frequency: float, amplitude: float, sample_rate: float, num_samples: int, phase: float = 0.0) -> np.ndarray:
    n = np.arange(int(num_samples), dtype=RAW_DTYPE)
    return float(amplitude) * np.sin(TWO_PI * float(frequency) / float(sample_rate) * n + float(phase))


def generate_cosine(frequency: float, amplitude: float, sample_rate: float, num_samples: int, phase: float = 0.0) -> np.ndarray:
    n = np.arange(int(num_samples), dtype=RAW_DTYPE)
    return float(amplitude) * np.cos(TWO_PI * float(frequency) / float(sample_rate) * n + float(phase))


# =========================
# Arithmetic
# =========================


def integrate(buffer, initial_value: float = 0.0, max_value: float | None = None) -> np.ndarray:
    """Running sum of ``buffer`` starting from ``initial_value``.

    When ``max_value`` is given the accumulator restarts from zero at any
    sample where its magnitude would exceed it.
    """

    x = _as_real(buffer)
    if max_value is None:
        return float(initial_value) + np.cumsum(x)
    limit = abs(float(max_value))
    out = np.empty_like(x)
    acc = float(initial_value)
    for i, value in enumerate(x):
        acc += float(value)
        if abs(acc) > limit:
            acc = 0.0
        out[i] = acc
    return out


def sum_signals(inputs: Sequence[np.ndarray], length: int | None = None) -> np.ndarray:
    """Sample-wise sum; the first input fixes the length, short inputs count as zero."""

    buffers = [_as_real(item) for item in inputs if item is not None]
    if not buffers:
        return np.zeros(int(length or 0), RAW_DTYPE)
    size = buffers[0].shape[0] if length is None else int(length)
    out = np.zeros(size, RAW_DTYPE)
    for buffer in buffers:
        count = min(size, buffer.shape[0])
        out[:count] += buffer[:count]
    return out


def multiply(first, second) -> np.ndarray:
    a = _as_real(first)
    b = _as_real(second)
    count = min(a.shape[0], b.shape[0])
    return a[:count] * b[:count]


def multiply_signals(inputs: Sequence[np.ndarray]) -> np.ndarray:
    buffers = [_as_real(item) for item in inputs if item is not None]
    if not buffers:
        return np.zeros(0, RAW_DTYPE)
    product = buffers[0].copy()
    for buffer in buffers[1:]:
        product = multiply(product, buffer)
    return product


# =========================
# Detectors
# =========================


def instantaneous_phase(signal: ComplexSignal) -> np.ndarray:
    return np.arctan2(signal.imag, signal.real)


def wrap_to_pi(values) -> np.ndarray:
    """Wrap angles into ``[-pi, pi)``."""

    return np.mod(np.asarray(values, dtype=RAW_DTYPE) + np.pi, TWO_PI) - np.pi


def phase_detector(signal: ComplexSignal, reference_frequency: float, sample_rate: float, reference_phase: float = 0.0) -> np.ndarray:
    """Phase error against a linearly advancing reference, in degrees."""

    n = np.arange(len(signal), dtype=RAW_DTYPE)
    reference = float(reference_phase) + TWO_PI * float(reference_frequency) / float(sample_rate) * n
    error = wrap_to_pi(instantaneous_phase(signal) - reference)
    return np.degrees(error)


def frequency_detector(signal: ComplexSignal, sample_rate: float) -> np.ndarray:
    """Instantaneous frequency in Hz from the unwrapped phase derivative.

    The final sample repeats the last computable difference so the output
    keeps the input length.
    """

    length = len(signal)
    out = np.zeros(length, RAW_DTYPE)
    if length < 2:
        return out
    step = wrap_to_pi(np.diff(instantaneous_phase(signal)))
    out[:-1] = step * float(sample_rate) / TWO_PI
    out[-1] = out[-2]
    return out


def goertzel(buffer, target_frequency: float, sample_rate: float, block_size: int) -> np.ndarray:
    """Single-bin Goertzel magnitude, held constant across each block of ``block_size``."""

    x = _as_real(buffer)
    block_size = int(block_size)
    if block_size <= 0:
        raise ValueError("Goertzel block size must be positive")
    k = math.floor(block_size * float(target_frequency) / float(sample_rate) + 0.5)
    coeff = 2.0 * math.cos(TWO_PI * k / block_size)
    out = np.zeros_like(x)
    for start in range(0, x.shape[0], block_size):
        stop = min(start + block_size, x.shape[0])
        s1 = 0.0
        s2 = 0.0
        for sample in x[start:stop]:
            s0 = float(sample) + coeff * s1 - s2
            s2 = s1
            s1 = s0
        power = s1 * s1 + s2 * s2 - coeff * s1 * s2
        out[start:stop] = math.sqrt(max(power, 0.0))
    return out


__all__ = [
    "ComplexSignal",
    "SpectrumFrame",
    "bandpass_filter",
    "design_fir",
    "fft",
    "fir_filter",
    "frequency_detector",
    "generate_cosine",
    "generate_sine",
    "goertzel",
    "hilbert_coefficients",
    "hilbert_transform",
    "instantaneous_phase",
    "integrate",
    "is_power_of_two",
    "multiply",
    "multiply_signals",
    "next_power_of_two",
    "phase_detector",
    "power_spectrum",
    "sliding_fft",
    "sum_signals",
    "to_decibels",
    "wrap_to_pi",
]
