"""Command line entry point for the dataflow engine."""

from __future__ import annotations

import argparse
import wave
from pathlib import Path
from typing import Any, Dict, Sequence

import numpy as np

from .application import DSPApplication
from .blocks import build_default_catalog
from .config import DEFAULT_CONFIG_PATH, EngineConfig, load_configuration
from .diagnostics import configure_logging, enable_cycle_tracing

EXIT_OK = 0
EXIT_INVALID_GRAPH = 1
EXIT_RUNTIME_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compile and run a DSP block graph")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
    parser.add_argument("--cycles", type=int, help="Number of cycles to run (overrides the configuration)")
    parser.add_argument("--sample-rate", type=int, help="Sample rate in Hz (overrides the configuration)")
    parser.add_argument("--buffer-size", type=int, help="Samples per cycle (overrides the configuration)")
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional path to write the selected sink as 16-bit mono WAV",
    )
    parser.add_argument("--sink", help="Sink node id written by --output (default: first real-valued sink)")
    parser.add_argument("--list-blocks", action="store_true", help="Print the block catalog and exit")
    parser.add_argument("--trace", action="store_true", help="Log per-node timings for every cycle")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        type=str.upper,
        help="Logging verbosity (default: WARNING)",
    )
    return parser


def write_wav(path: Path, pcm: np.ndarray, sample_rate: int) -> None:
    """Write ``pcm`` as 16-bit mono WAV, scaling down only if it would clip."""

    pcm = np.asarray(pcm, dtype=np.float64)
    peak = float(np.max(np.abs(pcm))) if pcm.size else 0.0
    scaled = pcm / peak * 0.98 if peak > 1.0 else pcm
    pcm16 = np.clip(np.rint(scaled * 32767.0), -32768, 32767).astype(np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm16.tobytes())


def _print_catalog() -> None:
    catalog = build_default_catalog()
    for group in catalog.groups():
        print(group["name"])
        for block in group["blocks"]:
            signals = catalog.signals_for(block["id"])
            shape = f"{_signal_name(signals.input)} -> {_signal_name(signals.output)}"
            print(f"  {block['id']:<20} {shape:<18} {block['description']}")


def _signal_name(signal) -> str:
    return "-" if signal is None else signal.value


def _select_sink(outputs: Dict[str, Any], sink_id: str | None) -> tuple[str, np.ndarray] | None:
    if sink_id is not None:
        data = outputs.get(sink_id)
        if isinstance(data, np.ndarray):
            return sink_id, data
        return None
    for node_id, data in outputs.items():
        if isinstance(data, np.ndarray):
            return node_id, data
    return None


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    enable_cycle_tracing(args.trace)

    if args.list_blocks:
        _print_catalog()
        return EXIT_OK

    try:
        config = load_configuration(args.config)
        if args.sample_rate is not None or args.buffer_size is not None:
            config.engine = EngineConfig(
                sample_rate=config.engine.sample_rate if args.sample_rate is None else args.sample_rate,
                buffer_size=config.engine.buffer_size if args.buffer_size is None else args.buffer_size,
            )
        if args.cycles is not None:
            if args.cycles <= 0:
                raise ValueError("--cycles must be a positive integer")
            config.cycles = args.cycles
    except (OSError, ValueError) as exc:
        print(f"Error loading configuration: {exc}")
        return EXIT_INVALID_GRAPH

    app = DSPApplication.from_config(config)
    print(app.summary())

    param_errors = app.validate_params()
    if param_errors:
        for node_id, errors in param_errors.items():
            for message in errors:
                print(f"Parameter error in '{node_id}': {message}")
        return EXIT_INVALID_GRAPH
    if app.compile_result is None or not app.compile_result.success:
        return EXIT_INVALID_GRAPH

    try:
        outputs = app.run()
    except Exception as exc:
        print(f"Runtime error: {exc}")
        return EXIT_RUNTIME_ERROR

    stats = app.engine.get_stats()
    print(f"Rendered {stats.cycles_executed} cycles ({stats.total_samples} samples per node)")

    if args.output is not None:
        selected = _select_sink(outputs, args.sink)
        if selected is None:
            print("No real-valued sink output to write" + (f" for '{args.sink}'" if args.sink else ""))
            return EXIT_INVALID_GRAPH
        node_id, data = selected
        write_wav(args.output, data, config.engine.sample_rate)
        print(f"Wrote {data.shape[0]} samples from '{node_id}' to {args.output}")
    return EXIT_OK


__all__ = ["build_parser", "main", "write_wav"]
