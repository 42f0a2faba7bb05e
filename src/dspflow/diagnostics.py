"""Logging setup and optional per-node cycle tracing."""
from __future__ import annotations

import logging
import sys

__all__ = [
    "configure_logging",
    "cycle_tracing_enabled",
    "enable_cycle_tracing",
    "trace_node",
]


_TRACE_CYCLES = False
_TRACE_LOGGER = logging.getLogger("dspflow.trace")
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.WARNING) -> None:
    """Attach a stderr handler to the ``dspflow`` logger.

    Library code never calls this; it is meant for the command line entry
    point and interactive sessions.
    """

    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown log level '{name}'")
    root = logging.getLogger("dspflow")
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_dspflow", False):
            # the stream it holds may already be closed; never flush it
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._dspflow = True
    root.addHandler(handler)


def enable_cycle_tracing(enabled: bool) -> None:
    """Enable or disable per-node timing lines on the ``dspflow.trace`` logger."""

    global _TRACE_CYCLES
    _TRACE_CYCLES = bool(enabled)
    if _TRACE_CYCLES and _TRACE_LOGGER.getEffectiveLevel() > logging.DEBUG:
        _TRACE_LOGGER.setLevel(logging.DEBUG)


def cycle_tracing_enabled() -> bool:
    """Return ``True`` when per-node tracing is enabled."""

    return _TRACE_CYCLES


def trace_node(cycle: int, node_id: str, block_type: str, seconds: float) -> None:
    """Record how long ``node_id`` took in ``cycle`` when tracing is enabled."""

    if not _TRACE_CYCLES:
        return
    _TRACE_LOGGER.debug("cycle=%d node=%s block=%s elapsed_ms=%.3f", cycle, node_id, block_type, seconds * 1000.0)
