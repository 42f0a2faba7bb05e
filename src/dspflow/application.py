"""High level application orchestration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .blocks import build_default_catalog
from .catalog import BlockCatalog
from .config import AppConfig, load_configuration
from .dsp import ComplexSignal
from .engine import ExecutionEngine, SinkOutput
from .graph import CompileResult, compile_graph
from .runner import run_cycles

logger = logging.getLogger(__name__)


def _concatenate(chunks: List[Any]) -> Any:
    if not chunks:
        return np.zeros(0)
    if all(isinstance(chunk, ComplexSignal) for chunk in chunks):
        return ComplexSignal(
            np.concatenate([chunk.real for chunk in chunks]),
            np.concatenate([chunk.imag for chunk in chunks]),
        )
    if all(isinstance(chunk, np.ndarray) for chunk in chunks):
        return np.concatenate(chunks)
    # Frame lists (sliding FFT) are flattened in cycle order.
    flattened: List[Any] = []
    for chunk in chunks:
        if isinstance(chunk, list):
            flattened.extend(chunk)
        else:
            flattened.append(chunk)
    return flattened


@dataclass(slots=True)
class DSPApplication:
    """Compiled graph plus the engine that runs it.

    The application compiles the configured graph once on construction and
    exposes a small API for running a fixed number of cycles in-process.  No
    audio device or UI is involved, which keeps tests and command line usage
    deterministic.
    """

    config: AppConfig
    catalog: BlockCatalog
    engine: ExecutionEngine
    compile_result: CompileResult | None = field(default=None)

    @classmethod
    def from_config(cls, config: AppConfig, catalog: BlockCatalog | None = None) -> "DSPApplication":
        catalog = catalog if catalog is not None else build_default_catalog()
        app = cls(config=config, catalog=catalog, engine=ExecutionEngine(catalog))
        app.compile()
        return app

    @classmethod
    def from_file(cls, path: str, catalog: BlockCatalog | None = None) -> "DSPApplication":
        return cls.from_config(load_configuration(path), catalog)

    def compile(self) -> CompileResult:
        """Recompile the configured graph; on failure the engine is left idle."""

        result = compile_graph(self.catalog, self.config.graph.nodes, self.config.graph.edges)
        self.compile_result = result
        if result.success and result.compiled_graph is not None:
            self.engine.initialize(result.compiled_graph, self.config.engine)
        else:
            self.engine.reset()
            for error in result.errors:
                logger.error("%s: %s", error.code.value, error.message)
        return result

    def validate_params(self) -> Dict[str, List[str]]:
        """Return parameter errors keyed by node id; nodes without errors are omitted."""

        problems: Dict[str, List[str]] = {}
        for node in self.config.graph.nodes:
            errors = self.catalog.validate_params(node.block_type, node.params)
            if errors:
                problems[node.id] = errors
        return problems

    def run(self, cycles: Optional[int] = None) -> Dict[str, Any]:
        """Run ``cycles`` cycles and return each sink's outputs joined in time order.

        Raises ``RuntimeError`` when the graph did not compile and
        ``ValueError`` for a non-positive cycle count.  Exceptions raised by
        blocks propagate after the engine has stopped.
        """

        if self.compile_result is None or not self.compile_result.success:
            raise RuntimeError("graph did not compile; nothing to run")
        cycle_count = self.config.cycles if cycles is None else int(cycles)
        if cycle_count <= 0:
            raise ValueError(f"cycles must be a positive integer, got {cycle_count}")
        collected: Dict[str, List[Any]] = {
            node.id: [] for node in self.compile_result.compiled_graph.sink_nodes
        }

        def _collect(_index: int, outputs: Dict[str, SinkOutput]) -> None:
            for sink_id, sink in outputs.items():
                collected[sink_id].append(sink.data)

        self.engine.start()
        try:
            run_cycles(self.engine, cycle_count, on_cycle=_collect)
        finally:
            self.engine.stop()
        return {sink_id: _concatenate(chunks) for sink_id, chunks in collected.items()}

    def summary(self) -> str:
        """Return a human-readable description of the graph and its plan."""

        engine = self.config.engine
        lines = [
            f"Sample rate: {engine.sample_rate} Hz",
            f"Buffer size: {engine.buffer_size} samples",
            f"Cycles: {self.config.cycles}",
        ]
        result = self.compile_result
        if result is None or not result.success or result.compiled_graph is None:
            lines.append("Compilation: failed")
            for error in result.errors if result is not None else ():
                lines.append(f"  - {error.code.value}: {error.message}")
            return "\n".join(lines)
        compiled = result.compiled_graph
        lines.append("Compilation: ok")
        lines.append("Execution order:")
        for node in compiled.execution_order:
            descriptor = self.catalog.resolve(node.block_type)
            kind = descriptor.name if descriptor is not None else "unknown block"
            lines.append(f"  - {node.display_name} ({kind})")
        lines.append("Sources: " + ", ".join(node.id for node in compiled.source_nodes))
        lines.append("Sinks: " + ", ".join(node.id for node in compiled.sink_nodes))
        return "\n".join(lines)


__all__ = ["DSPApplication"]
