"""Buffer-synchronous execution engine for compiled graphs."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Tuple

import numpy as np

from .catalog import BlockCatalog, BlockContext, ProcessFn
from .config import EngineConfig
from .diagnostics import trace_node
from .graph import CompiledGraph, NodeDescriptor
from .state import RAW_DTYPE

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    RUNNING = "running"


@dataclass(frozen=True)
class EngineStats:
    cycles_executed: int
    total_samples: int
    execution_time: float
    is_running: bool
    sample_rate: int
    buffer_size: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SinkOutput:
    node: NodeDescriptor
    data: Any


@dataclass(slots=True)
class _NodeStep:
    node: NodeDescriptor
    params: Mapping[str, Any]
    dependencies: Tuple[str, ...]
    process: ProcessFn
    state_factory: Callable[[], Any] | None


def _missing_block_fallback(ctx: BlockContext):
    if ctx.inputs and ctx.inputs[0] is not None:
        value = ctx.inputs[0]
        return value.copy() if isinstance(value, np.ndarray) else value
    return np.zeros(ctx.buffer_size, RAW_DTYPE)


class ExecutionEngine:
    """Runs a :class:`CompiledGraph` one cycle at a time.

    The engine is single threaded and never schedules itself: the host calls
    :meth:`execute_one_cycle` once per tick.  Per-node runtime state is the
    only data kept between cycles and is discarded on :meth:`initialize` and
    :meth:`start`.
    """

    def __init__(self, catalog: BlockCatalog) -> None:
        self.catalog = catalog
        self.config = EngineConfig()
        self._compiled: CompiledGraph | None = None
        self._steps: Tuple[_NodeStep, ...] = ()
        self._state = EngineState.IDLE
        self._node_outputs: Dict[str, Any] = {}
        self._node_state: Dict[str, Any] = {}
        self._last_node_timings: Dict[str, float] = {}
        self._cycles_executed = 0
        self._total_samples = 0
        self._execution_time = 0.0

    # --- lifecycle ---

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def compiled_graph(self) -> CompiledGraph | None:
        return self._compiled

    def initialize(
        self,
        compiled_graph: CompiledGraph,
        config: EngineConfig | Mapping[str, Any] | None = None,
    ) -> bool:
        """Load a new plan, discarding outputs and runtime state from the previous one."""

        if isinstance(config, EngineConfig):
            self.config = EngineConfig(config.sample_rate, config.buffer_size)
        elif config is not None:
            self.config = EngineConfig.from_mapping(config, self.config)
        self._compiled = compiled_graph
        self._steps = self._build_steps(compiled_graph)
        self._node_outputs = {}
        self._node_state = {}
        self._last_node_timings = {}
        self._cycles_executed = 0
        self._total_samples = 0
        self._execution_time = 0.0
        self._state = EngineState.READY
        logger.info(
            "engine initialized: %d nodes, sample_rate=%d, buffer_size=%d",
            len(self._steps),
            self.config.sample_rate,
            self.config.buffer_size,
        )
        return True

    def _build_steps(self, compiled: CompiledGraph) -> Tuple[_NodeStep, ...]:
        steps: List[_NodeStep] = []
        for node in compiled.execution_order:
            descriptor = self.catalog.resolve(node.block_type)
            if descriptor is None:
                logger.warning(
                    "unknown block type '%s' for node '%s'; passing its first input through",
                    node.block_type,
                    node.id,
                )
                params: Dict[str, Any] = dict(node.params)
                process: ProcessFn = _missing_block_fallback
                factory = None
            else:
                params = descriptor.defaults()
                params.update(node.params)
                process = descriptor.process
                factory = descriptor.state_factory
            steps.append(
                _NodeStep(
                    node=node,
                    params=params,
                    dependencies=tuple(compiled.dependencies.get(node.id, ())),
                    process=process,
                    state_factory=factory,
                )
            )
        return tuple(steps)

    def start(self) -> bool:
        if self._compiled is None:
            logger.error("cannot start: no compiled graph")
            return False
        self._node_state = {}
        self._cycles_executed = 0
        self._total_samples = 0
        self._state = EngineState.RUNNING
        logger.info("engine started")
        return True

    def stop(self) -> bool:
        """Prevent the next cycle from starting; an in-flight cycle is unaffected."""

        if self._state is EngineState.RUNNING:
            logger.info("engine stopped after %d cycles", self._cycles_executed)
        self._state = EngineState.READY if self._compiled is not None else EngineState.IDLE
        return True

    def set_config(self, config: EngineConfig | Mapping[str, Any]) -> EngineConfig:
        """Change sample rate or buffer size from the next cycle on.

        The compiled plan, node state and lifecycle state are kept.  Missing
        mapping keys keep their current values.
        """

        if isinstance(config, EngineConfig):
            self.config = EngineConfig(config.sample_rate, config.buffer_size)
        else:
            self.config = EngineConfig.from_mapping(config, self.config)
        logger.info(
            "engine config updated: sample_rate=%d, buffer_size=%d",
            self.config.sample_rate,
            self.config.buffer_size,
        )
        return self.config

    def reset(self) -> None:
        """Drop the compiled graph, e.g. after a failed recompilation."""

        self._compiled = None
        self._steps = ()
        self._node_outputs = {}
        self._node_state = {}
        self._state = EngineState.IDLE

    # --- execution ---

    def state_for(self, node_id: str, factory: Callable[[], Any] | None = None) -> Any:
        """Return the runtime state record for ``node_id``, creating it on first use."""

        if node_id not in self._node_state:
            self._node_state[node_id] = factory() if factory is not None else None
        return self._node_state[node_id]

    def execute_one_cycle(self) -> Dict[str, SinkOutput] | None:
        """Compute one buffer for every node and return the sink outputs.

        Returns ``None`` unless the engine is running.  An exception raised by
        a block stops the engine and propagates; no outputs of the failed cycle
        are published.
        """

        if self._state is not EngineState.RUNNING or self._compiled is None:
            return None
        self._node_outputs = {}
        outputs: Dict[str, Any] = {}
        timings: Dict[str, float] = {}
        sample_rate = self.config.sample_rate
        buffer_size = self.config.buffer_size
        cycle = self._cycles_executed
        started = time.perf_counter()
        for step in self._steps:
            node = step.node
            ctx = BlockContext(
                inputs=[outputs[dep] for dep in step.dependencies],
                params=step.params,
                state=self.state_for(node.id, step.state_factory),
                sample_rate=sample_rate,
                buffer_size=buffer_size,
                node_id=node.id,
            )
            node_started = time.perf_counter()
            try:
                outputs[node.id] = step.process(ctx)
            except Exception:
                logger.exception("error executing node '%s' (%s)", node.display_name, node.block_type)
                self.stop()
                raise
            elapsed = time.perf_counter() - node_started
            timings[node.id] = elapsed
            trace_node(cycle, node.id, node.block_type, elapsed)

        self._node_outputs = outputs
        self._last_node_timings = timings
        self._cycles_executed += 1
        self._total_samples += buffer_size
        self._execution_time = time.perf_counter() - started
        return {
            sink.id: SinkOutput(node=sink, data=outputs[sink.id])
            for sink in self._compiled.sink_nodes
        }

    # --- inspection ---

    def get_node_output(self, node_id: str) -> Any:
        return self._node_outputs.get(node_id)

    @property
    def last_node_timings(self) -> Dict[str, float]:
        return dict(self._last_node_timings)

    def get_stats(self) -> EngineStats:
        return EngineStats(
            cycles_executed=self._cycles_executed,
            total_samples=self._total_samples,
            execution_time=self._execution_time,
            is_running=self.is_running,
            sample_rate=self.config.sample_rate,
            buffer_size=self.config.buffer_size,
        )


__all__ = ["EngineState", "EngineStats", "ExecutionEngine", "SinkOutput"]
