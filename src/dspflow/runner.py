"""Host-side ticker driving an :class:`ExecutionEngine` cycle by cycle."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Iterator, Optional

from .engine import ExecutionEngine, SinkOutput

logger = logging.getLogger(__name__)


def iter_cycles(
    engine: ExecutionEngine,
    cycles: int,
    *,
    stop_event: Optional[threading.Event] = None,
) -> Iterator[Dict[str, SinkOutput]]:
    """Yield the sink outputs of up to ``cycles`` consecutive cycles.

    Iteration ends early once the engine stops or ``stop_event`` is set; a
    stop requested from another thread takes effect before the next cycle.
    """

    for _ in range(int(cycles)):
        if stop_event is not None and stop_event.is_set():
            logger.debug("stop event set; ending run")
            return
        result = engine.execute_one_cycle()
        if result is None:
            return
        yield result


def run_cycles(
    engine: ExecutionEngine,
    cycles: int,
    *,
    stop_event: Optional[threading.Event] = None,
    on_cycle: Optional[Callable[[int, Dict[str, SinkOutput]], None]] = None,
) -> int:
    """Run up to ``cycles`` cycles and return how many completed."""

    completed = 0
    for outputs in iter_cycles(engine, cycles, stop_event=stop_event):
        if on_cycle is not None:
            on_cycle(completed, outputs)
        completed += 1
    stats = engine.get_stats()
    logger.info(
        "ran %d cycles (%d samples, last cycle %.3f ms)",
        completed,
        stats.total_samples,
        stats.execution_time * 1000.0,
    )
    return completed


__all__ = ["iter_cycles", "run_cycles"]
