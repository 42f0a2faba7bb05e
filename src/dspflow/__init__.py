"""Block-diagram DSP graph compiler and buffer-synchronous execution engine."""

from __future__ import annotations

from .application import DSPApplication
from .blocks import build_default_catalog
from .catalog import BlockCatalog, BlockContext, BlockDescriptor, BlockSignals, CatalogError, SignalType
from .config import AppConfig, EngineConfig, GraphConfig, load_configuration
from .engine import EngineState, EngineStats, ExecutionEngine, SinkOutput
from .graph import (
    CompileError,
    CompileErrorCode,
    CompileResult,
    CompiledGraph,
    EdgeDescriptor,
    GraphCompiler,
    NodeDescriptor,
    compile_graph,
)
from .runner import iter_cycles, run_cycles

__all__ = [
    "AppConfig",
    "BlockCatalog",
    "BlockContext",
    "BlockDescriptor",
    "BlockSignals",
    "CatalogError",
    "CompileError",
    "CompileErrorCode",
    "CompileResult",
    "CompiledGraph",
    "DSPApplication",
    "EdgeDescriptor",
    "EngineConfig",
    "EngineState",
    "EngineStats",
    "ExecutionEngine",
    "GraphCompiler",
    "GraphConfig",
    "NodeDescriptor",
    "SignalType",
    "SinkOutput",
    "build_default_catalog",
    "compile_graph",
    "iter_cycles",
    "load_configuration",
    "run_cycles",
]
