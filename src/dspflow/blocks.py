"""Built-in block descriptors and the default catalog."""

from __future__ import annotations

from typing import Any, List, Mapping

import numpy as np

from . import dsp
from .catalog import (
    BlockCatalog,
    BlockContext,
    BlockDescriptor,
    BlockSignals,
    ParamField,
    SignalType,
)
from .sources import ArraySampleSource, SampleSource, SoundFileSampleSource
from .state import (
    RAW_DTYPE,
    TWO_PI,
    BandpassState,
    FIRState,
    IntegratorState,
    OscillatorState,
    PhaseReferenceState,
    PlaybackState,
    wrap_phase,
)

REAL = SignalType.REAL
COMPLEX = SignalType.COMPLEX

MAX_FIR_ORDER = 1024
MIN_FFT_SIZE = 64
MAX_FFT_SIZE = 16384


# =========================
# Shared helpers
# =========================


def _silence(ctx: BlockContext) -> np.ndarray:
    return np.zeros(ctx.buffer_size, RAW_DTYPE)


def _first_input(ctx: BlockContext):
    if not ctx.inputs:
        return None
    return ctx.inputs[0]


def _real_inputs(ctx: BlockContext) -> List[np.ndarray]:
    return [np.asarray(item, dtype=RAW_DTYPE) for item in ctx.inputs if item is not None]


def _copy_signal(value):
    if isinstance(value, dsp.ComplexSignal):
        return dsp.ComplexSignal(value.real.copy(), value.imag.copy())
    if isinstance(value, np.ndarray):
        return value.copy()
    return value


def _is_positive(value) -> bool:
    try:
        return float(value) > 0.0
    except (TypeError, ValueError):
        return False


def _check_order(params: Mapping[str, Any], errors: List[str], label: str = "Filter order") -> None:
    order = params.get("order")
    try:
        ok = 1 <= int(order) <= MAX_FIR_ORDER and int(order) == order
    except (TypeError, ValueError):
        ok = False
    if not ok:
        errors.append(f"{label} must be an integer between 1 and {MAX_FIR_ORDER}")


def _stream_fir(state: FIRState, key, design, buffer: np.ndarray) -> np.ndarray:
    """Filter ``buffer`` through the ring-buffered history held in ``state``."""

    if state.key != key:
        state.configure(key, design())
    out = dsp.fir_filter(buffer, state.coefficients, state.ordered_history())
    state.push(buffer)
    return out


# =========================
# Filters
# =========================


def _validate_fir(params):
    errors: List[str] = []
    _check_order(params, errors)
    if not _is_positive(params.get("cutoff")):
        errors.append("Cutoff frequency must be positive")
    if params.get("filterType", "lowpass") not in ("lowpass", "highpass"):
        errors.append("Filter type must be 'lowpass' or 'highpass'")
    return errors


def _fir_block(filter_type: str | None):
    def process(ctx: BlockContext):
        buffer = _first_input(ctx)
        if buffer is None:
            return _silence(ctx)
        order = int(ctx.params.get("order", 64))
        cutoff = float(ctx.params.get("cutoff", 1000.0))
        kind = filter_type or str(ctx.params.get("filterType", "lowpass"))
        key = (kind, order, cutoff, ctx.sample_rate)
        return _stream_fir(
            ctx.state,
            key,
            lambda: dsp.design_fir(order, cutoff, ctx.sample_rate, kind),
            np.asarray(buffer, dtype=RAW_DTYPE),
        )

    return process


def _validate_bandpass(params):
    errors: List[str] = []
    _check_order(params, errors)
    low = params.get("lowCutoff")
    high = params.get("highCutoff")
    if not _is_positive(low):
        errors.append("Lower cutoff frequency must be positive")
    if not _is_positive(high):
        errors.append("Upper cutoff frequency must be positive")
    if _is_positive(low) and _is_positive(high) and float(low) >= float(high):
        errors.append("Lower cutoff must be below the upper cutoff")
    return errors


def _process_bandpass(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return _silence(ctx)
    x = np.asarray(buffer, dtype=RAW_DTYPE)
    order = int(ctx.params.get("order", 64))
    low = float(ctx.params.get("lowCutoff", 1000.0))
    high = float(ctx.params.get("highCutoff", 3000.0))
    state: BandpassState = ctx.state
    upper = _stream_fir(
        state.upper,
        ("lowpass", order, high, ctx.sample_rate),
        lambda: dsp.design_fir(order, high, ctx.sample_rate),
        x,
    )
    lower = _stream_fir(
        state.lower,
        ("lowpass", order, low, ctx.sample_rate),
        lambda: dsp.design_fir(order, low, ctx.sample_rate),
        x,
    )
    return upper - lower


def _validate_hilbert(params):
    errors: List[str] = []
    _check_order(params, errors, "Transformer order")
    return errors


def _process_hilbert(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return dsp.ComplexSignal.zeros(ctx.buffer_size)
    x = np.asarray(buffer, dtype=RAW_DTYPE)
    order = int(ctx.params.get("order", 64))
    imag = _stream_fir(ctx.state, ("hilbert", order), lambda: dsp.hilbert_coefficients(order), x)
    return dsp.ComplexSignal(x.copy(), imag)


def _validate_goertzel(params):
    errors: List[str] = []
    if not _is_positive(params.get("targetFrequency")):
        errors.append("Target frequency must be positive")
    if not _is_positive(params.get("N")):
        errors.append("Block size N must be positive")
    return errors


def _process_goertzel(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return _silence(ctx)
    return dsp.goertzel(
        buffer,
        float(ctx.params.get("targetFrequency", 1000.0)),
        ctx.sample_rate,
        int(ctx.params.get("N", 256)),
    )


# =========================
# Generators
# =========================


def _validate_generator(params):
    errors: List[str] = []
    if not _is_positive(params.get("frequency")):
        errors.append("Frequency must be positive")
    if not _is_positive(params.get("amplitude")):
        errors.append("Amplitude must be positive")
    return errors


def _oscillator(waveform: str | None, *, use_phase_param: bool):
    def process(ctx: BlockContext):
        frequency = float(ctx.params.get("frequency", 1000.0))
        amplitude = float(ctx.params.get("amplitude", 1.0))
        state: OscillatorState = ctx.state
        if state.phase is None:
            state.phase = float(ctx.params.get("phase", 0.0)) if use_phase_param else 0.0
        kind = waveform or str(ctx.params.get("signalType", "sine"))
        generate = dsp.generate_sine if kind == "sine" else dsp.generate_cosine
        out = generate(frequency, amplitude, ctx.sample_rate, ctx.buffer_size, state.phase)
        state.advance(frequency, ctx.sample_rate, ctx.buffer_size)
        return out

    return process


def _validate_input_signal(params):
    errors = _validate_generator(params)
    if params.get("signalType", "sine") not in ("sine", "cosine"):
        errors.append("Signal type must be 'sine' or 'cosine'")
    return errors


def _validate_audio_file(params):
    errors: List[str] = []
    if "loop" in params and not isinstance(params["loop"], bool):
        errors.append("Parameter 'loop' must be a boolean")
    source = params.get("source")
    if source is not None and not isinstance(source, SampleSource):
        errors.append("Parameter 'source' must be a SampleSource")
    return errors


def _resolve_source(ctx: BlockContext, state: PlaybackState) -> SampleSource | None:
    if state.source is not None:
        return state.source
    source = ctx.params.get("source")
    if source is None:
        audio = ctx.params.get("audioData")
        if isinstance(audio, Mapping) and audio.get("samples") is not None:
            source = ArraySampleSource(audio["samples"], int(audio.get("sampleRate", ctx.sample_rate)))
        elif ctx.params.get("path"):
            source = SoundFileSampleSource.open(ctx.params["path"])
    state.source = source
    return source


def _process_audio_file(ctx: BlockContext):
    state: PlaybackState = ctx.state
    source = _resolve_source(ctx, state)
    out = _silence(ctx)
    if source is None or source.frame_count == 0:
        return out
    loop = bool(ctx.params.get("loop", False))
    written = 0
    while written < ctx.buffer_size:
        remaining = source.frame_count - state.offset
        if remaining <= 0:
            if loop:
                state.offset = 0
                continue
            break
        chunk = source.read(state.offset, min(ctx.buffer_size - written, remaining))
        out[written:written + chunk.shape[0]] = chunk
        state.offset += chunk.shape[0]
        written += chunk.shape[0]
    return out


# =========================
# FFT / analysis
# =========================


def _validate_fft(params):
    errors: List[str] = []
    size = params.get("fftSize")
    if not dsp.is_power_of_two(size):
        errors.append("FFT size must be a power of two")
    elif not MIN_FFT_SIZE <= int(size) <= MAX_FFT_SIZE:
        errors.append(f"FFT size must be between {MIN_FFT_SIZE} and {MAX_FFT_SIZE}")
    return errors


def _process_fft(ctx: BlockContext):
    size = int(ctx.params.get("fftSize") or ctx.buffer_size)
    buffer = _first_input(ctx)
    if buffer is None:
        return dsp.ComplexSignal.zeros(size // 2 + 1)
    return dsp.fft(buffer, size)


def _validate_sliding_fft(params):
    errors: List[str] = []
    window = params.get("windowSize")
    overlap = params.get("overlap")
    if not _is_positive(window):
        errors.append("Window size must be positive")
    if overlap is None or not isinstance(overlap, (int, float)) or overlap < 0:
        errors.append("Overlap must be non-negative")
    elif _is_positive(window) and overlap >= window:
        errors.append("Overlap must be smaller than the window size")
    if not dsp.is_power_of_two(params.get("fftSize")):
        errors.append("FFT size must be a power of two")
    return errors


def _process_sliding_fft(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return []
    window = int(ctx.params.get("windowSize", 1024))
    overlap = int(ctx.params.get("overlap", 512))
    return dsp.sliding_fft(buffer, window, window - overlap, int(ctx.params.get("fftSize", 1024)))


def _passthrough(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return _silence(ctx)
    return _copy_signal(buffer)


# =========================
# Detectors
# =========================


def _validate_phase_detector(params):
    if not _is_positive(params.get("referenceFrequency")):
        return ["Reference frequency must be positive"]
    return []


def _process_phase_detector(ctx: BlockContext):
    signal = _first_input(ctx)
    if not isinstance(signal, dsp.ComplexSignal):
        return _silence(ctx)
    frequency = float(ctx.params.get("referenceFrequency", 1000.0))
    state: PhaseReferenceState = ctx.state
    out = dsp.phase_detector(signal, frequency, ctx.sample_rate, state.phase)
    state.phase = wrap_phase(state.phase + TWO_PI * frequency / ctx.sample_rate * len(signal))
    return out


def _process_frequency_detector(ctx: BlockContext):
    signal = _first_input(ctx)
    if not isinstance(signal, dsp.ComplexSignal):
        return _silence(ctx)
    return dsp.frequency_detector(signal, ctx.sample_rate)


# =========================
# Math
# =========================


def _validate_integrator(params):
    errors: List[str] = []
    if not isinstance(params.get("resetOnOverflow", False), bool):
        errors.append("Parameter 'resetOnOverflow' must be a boolean")
    if params.get("resetOnOverflow") and not _is_positive(params.get("maxValue")):
        errors.append("Maximum value must be positive when overflow reset is enabled")
    return errors


def _process_integrator(ctx: BlockContext):
    buffer = _first_input(ctx)
    if buffer is None:
        return _silence(ctx)
    state: IntegratorState = ctx.state
    limit = float(ctx.params.get("maxValue", 1000.0)) if ctx.params.get("resetOnOverflow") else None
    out = dsp.integrate(buffer, state.accumulator, limit)
    if out.shape[0]:
        state.accumulator = float(out[-1])
    return out


def _process_summer(ctx: BlockContext):
    inputs = _real_inputs(ctx)
    if not inputs:
        return _silence(ctx)
    return dsp.sum_signals(inputs)


def _process_multiplier(ctx: BlockContext):
    inputs = _real_inputs(ctx)
    if len(inputs) < 2:
        return _silence(ctx)
    return dsp.multiply_signals(inputs)


# =========================
# Descriptors
# =========================

_ORDER_FIELD = ParamField("order", "Filter order", default=64, minimum=1, maximum=MAX_FIR_ORDER, step=1)
_CUTOFF_FIELD = ParamField("cutoff", "Cutoff frequency (Hz)", default=1000, minimum=1, maximum=24000, step=10)
_FREQUENCY_FIELD = ParamField("frequency", "Frequency (Hz)", default=1000, minimum=1, maximum=20000, step=10)
_AMPLITUDE_FIELD = ParamField("amplitude", "Amplitude", default=1.0, minimum=0.1, maximum=10, step=0.1)
_PHASE_FIELD = ParamField("phase", "Phase (rad)", default=0, minimum=0, maximum=6.28, step=0.01)

GROUPS = (
    ("filters", "Filters", 0),
    ("generators", "Generators", 1),
    ("fft-blocks", "FFT / Analysis", 2),
    ("detectors", "Detectors", 3),
    ("math-blocks", "Math", 4),
    ("visualization", "Visualization", 5),
)

BUILTIN_BLOCKS = (
    BlockDescriptor(
        id="FIR_FILTER",
        name="FIR Filter",
        description="FIR filter (lowpass or highpass)",
        icon="filter_alt",
        group="filters",
        group_order=0,
        signals=BlockSignals(REAL, REAL),
        default_params={"order": 64, "cutoff": 1000, "filterType": "lowpass"},
        param_fields=(
            _ORDER_FIELD,
            _CUTOFF_FIELD,
            ParamField("filterType", "Filter type", kind="select", default="lowpass", options=("lowpass", "highpass")),
        ),
        validate=_validate_fir,
        process=_fir_block(None),
        state_factory=FIRState,
    ),
    BlockDescriptor(
        id="BANDPASS_FIR",
        name="Bandpass FIR",
        description="Bandpass FIR filter",
        icon="tune",
        group="filters",
        group_order=1,
        signals=BlockSignals(REAL, REAL),
        default_params={"order": 64, "lowCutoff": 1000, "highCutoff": 3000},
        param_fields=(
            _ORDER_FIELD,
            ParamField("lowCutoff", "Lower cutoff (Hz)", default=1000, minimum=1, maximum=24000, step=10),
            ParamField("highCutoff", "Upper cutoff (Hz)", default=3000, minimum=1, maximum=24000, step=10),
        ),
        validate=_validate_bandpass,
        process=_process_bandpass,
        state_factory=BandpassState,
    ),
    BlockDescriptor(
        id="HIGHPASS_FIR",
        name="Highpass FIR",
        description="Highpass FIR filter",
        icon="trending_up",
        group="filters",
        group_order=2,
        signals=BlockSignals(REAL, REAL),
        default_params={"order": 64, "cutoff": 1000},
        param_fields=(_ORDER_FIELD, _CUTOFF_FIELD),
        validate=_validate_fir,
        process=_fir_block("highpass"),
        state_factory=FIRState,
    ),
    BlockDescriptor(
        id="LOWPASS_FIR",
        name="Lowpass FIR",
        description="Lowpass FIR filter",
        icon="trending_down",
        group="filters",
        group_order=3,
        signals=BlockSignals(REAL, REAL),
        default_params={"order": 64, "cutoff": 1000},
        param_fields=(_ORDER_FIELD, _CUTOFF_FIELD),
        validate=_validate_fir,
        process=_fir_block("lowpass"),
        state_factory=FIRState,
    ),
    BlockDescriptor(
        id="HILBERT_TRANSFORMER",
        name="Hilbert Transformer",
        description="Hilbert transformer producing an analytic signal",
        icon="transform",
        group="filters",
        group_order=4,
        signals=BlockSignals(REAL, COMPLEX),
        default_params={"order": 64},
        param_fields=(ParamField("order", "Transformer order", default=64, minimum=1, maximum=MAX_FIR_ORDER, step=1),),
        validate=_validate_hilbert,
        process=_process_hilbert,
        state_factory=FIRState,
    ),
    BlockDescriptor(
        id="GOERTZEL_FILTER",
        name="Goertzel Filter",
        description="Single-bin Goertzel detector",
        icon="psychology",
        group="filters",
        group_order=5,
        signals=BlockSignals(REAL, REAL),
        default_params={"targetFrequency": 1000, "N": 256},
        param_fields=(
            ParamField("targetFrequency", "Target frequency (Hz)", default=1000, minimum=1, maximum=24000, step=10),
            ParamField("N", "Block size (N)", default=256, minimum=16, maximum=4096, step=16),
        ),
        validate=_validate_goertzel,
        process=_process_goertzel,
    ),
    BlockDescriptor(
        id="AUDIO_FILE",
        name="Audio File",
        description="Plays back a decoded audio file",
        icon="audio_file",
        group="generators",
        group_order=0,
        signals=BlockSignals(None, REAL),
        default_params={"path": "", "loop": False, "source": None},
        param_fields=(ParamField("loop", "Loop playback", kind="checkbox", default=False),),
        validate=_validate_audio_file,
        process=_process_audio_file,
        state_factory=PlaybackState,
    ),
    BlockDescriptor(
        id="INPUT_SIGNAL",
        name="Input Signal",
        description="Sine or cosine test signal",
        icon="network_ping",
        group="generators",
        group_order=1,
        signals=BlockSignals(None, REAL),
        default_params={"frequency": 1000, "amplitude": 1.0, "signalType": "sine"},
        param_fields=(
            _FREQUENCY_FIELD,
            _AMPLITUDE_FIELD,
            ParamField("signalType", "Signal type", kind="select", default="sine", options=("sine", "cosine")),
        ),
        validate=_validate_input_signal,
        process=_oscillator(None, use_phase_param=False),
        state_factory=OscillatorState,
    ),
    BlockDescriptor(
        id="SINE_GEN",
        name="Sine Generator",
        description="Sine wave generator",
        icon="waves",
        group="generators",
        group_order=2,
        signals=BlockSignals(None, REAL),
        default_params={"frequency": 1000, "amplitude": 1.0, "phase": 0},
        param_fields=(_FREQUENCY_FIELD, _AMPLITUDE_FIELD, _PHASE_FIELD),
        validate=_validate_generator,
        process=_oscillator("sine", use_phase_param=True),
        state_factory=OscillatorState,
    ),
    BlockDescriptor(
        id="REF_COSINE_GEN",
        name="Cosine Generator",
        description="Reference cosine generator",
        icon="graphic_eq",
        group="generators",
        group_order=3,
        signals=BlockSignals(None, REAL),
        default_params={"frequency": 1000, "amplitude": 1.0, "phase": 0},
        param_fields=(_FREQUENCY_FIELD, _AMPLITUDE_FIELD, _PHASE_FIELD),
        validate=_validate_generator,
        process=_oscillator("cosine", use_phase_param=True),
        state_factory=OscillatorState,
    ),
    BlockDescriptor(
        id="SLIDING_FFT",
        name="Sliding FFT",
        description="Overlapping windowed FFT frames for waterfall displays",
        icon="show_chart",
        group="fft-blocks",
        group_order=0,
        signals=BlockSignals(REAL, None),
        default_params={"windowSize": 1024, "overlap": 512, "fftSize": 1024},
        param_fields=(
            ParamField("windowSize", "Window size", default=1024, minimum=64, maximum=8192, step=64),
            ParamField("overlap", "Overlap (samples)", default=512, minimum=0, maximum=8191, step=64),
            ParamField("fftSize", "FFT size", default=1024, minimum=64, maximum=MAX_FFT_SIZE, step=64),
        ),
        validate=_validate_sliding_fft,
        process=_process_sliding_fft,
        visualization_type="waterfall",
    ),
    BlockDescriptor(
        id="FFT",
        name="FFT",
        description="FFT (power-of-two size)",
        icon="multiline_chart",
        group="fft-blocks",
        group_order=1,
        signals=BlockSignals(REAL, COMPLEX),
        default_params={"fftSize": 1024},
        param_fields=(
            ParamField(
                "fftSize",
                "FFT size",
                kind="select",
                default=1024,
                options=(256, 512, 1024, 2048, 4096, 8192, 16384),
            ),
        ),
        validate=_validate_fft,
        process=_process_fft,
    ),
    BlockDescriptor(
        id="SPECTRUM_ANALYZER",
        name="Spectrum Analyzer",
        description="Spectrum analysis display",
        icon="analytics",
        group="fft-blocks",
        group_order=2,
        signals=BlockSignals(REAL, REAL),
        default_params={"fftSize": 2048, "dBScale": True, "averaging": 5},
        process=_passthrough,
        visualization_type="spectrum",
    ),
    BlockDescriptor(
        id="PHASE_DETECTOR",
        name="Phase Detector",
        description="Phase error against a reference oscillator",
        icon="speed",
        group="detectors",
        group_order=0,
        signals=BlockSignals(COMPLEX, REAL),
        default_params={"referenceFrequency": 1000},
        param_fields=(
            ParamField("referenceFrequency", "Reference frequency (Hz)", default=1000, minimum=1, maximum=24000, step=10),
        ),
        validate=_validate_phase_detector,
        process=_process_phase_detector,
        state_factory=PhaseReferenceState,
    ),
    BlockDescriptor(
        id="FREQUENCY_DETECTOR",
        name="Frequency Detector",
        description="Instantaneous frequency detector",
        icon="timeline",
        group="detectors",
        group_order=1,
        signals=BlockSignals(COMPLEX, REAL),
        process=_process_frequency_detector,
    ),
    BlockDescriptor(
        id="INTEGRATOR",
        name="Integrator",
        description="Running-sum integrator",
        icon="functions",
        group="math-blocks",
        group_order=0,
        signals=BlockSignals(REAL, REAL),
        default_params={"resetOnOverflow": False, "maxValue": 1000},
        param_fields=(
            ParamField("resetOnOverflow", "Reset on overflow", kind="checkbox", default=False),
            ParamField("maxValue", "Overflow limit", default=1000, minimum=0),
        ),
        validate=_validate_integrator,
        process=_process_integrator,
        state_factory=IntegratorState,
    ),
    BlockDescriptor(
        id="SUMMER",
        name="Summer",
        description="Sum of all inputs",
        icon="add",
        group="math-blocks",
        group_order=1,
        signals=BlockSignals(REAL, REAL),
        process=_process_summer,
    ),
    BlockDescriptor(
        id="MULTIPLIER",
        name="Multiplier",
        description="Product of all inputs",
        icon="close",
        group="math-blocks",
        group_order=2,
        signals=BlockSignals(REAL, REAL),
        process=_process_multiplier,
    ),
    BlockDescriptor(
        id="OSCILLOSCOPE",
        name="Oscilloscope",
        description="Time-domain signal display",
        icon="show_chart",
        group="visualization",
        group_order=0,
        signals=BlockSignals(REAL, None),
        default_params={"timeWindow": 10, "channels": 1},
        process=_passthrough,
        visualization_type="oscilloscope",
    ),
    BlockDescriptor(
        id="CONSTELLATION",
        name="Constellation",
        description="IQ constellation display",
        icon="star",
        group="visualization",
        group_order=1,
        signals=BlockSignals(COMPLEX, None),
        default_params={"symbolRate": 1000},
        process=_passthrough,
        visualization_type="constellation",
    ),
)


def build_default_catalog() -> BlockCatalog:
    """Return a frozen catalog holding every built-in block."""

    catalog = BlockCatalog()
    for group_id, name, order in GROUPS:
        catalog.define_group(group_id, name, order)
    for descriptor in BUILTIN_BLOCKS:
        catalog.register(descriptor)
    return catalog.freeze()


__all__ = ["BUILTIN_BLOCKS", "GROUPS", "build_default_catalog"]
