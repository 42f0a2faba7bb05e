"""Graph compiler: validates a node/edge graph and plans its execution order."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Sequence, Tuple

from .catalog import BlockCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeDescriptor:
    """A block instance placed in the graph by the host."""

    id: str
    block_type: str
    params: Mapping[str, Any] = field(default_factory=dict)
    label: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params or {})))

    @property
    def display_name(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class EdgeDescriptor:
    """Directed connection from ``source``'s output to ``target``'s input."""

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


class CompileErrorCode(str, Enum):
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    INVALID_CONNECTION = "INVALID_CONNECTION"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    TOPOLOGICAL_SORT_FAILED = "TOPOLOGICAL_SORT_FAILED"


@dataclass(frozen=True)
class CompileError:
    code: CompileErrorCode
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledGraph:
    """Execution plan for a validated acyclic graph.

    ``execution_order`` is topological: every edge's source precedes its
    target.  ``dependencies`` and ``outputs`` list upstream/downstream node ids
    in edge order.
    """

    execution_order: Tuple[NodeDescriptor, ...]
    dependencies: Mapping[str, Tuple[str, ...]]
    outputs: Mapping[str, Tuple[str, ...]]
    source_nodes: Tuple[NodeDescriptor, ...]
    sink_nodes: Tuple[NodeDescriptor, ...]

    @property
    def node_map(self) -> Dict[str, NodeDescriptor]:
        return {node.id: node for node in self.execution_order}

    def order_ids(self) -> List[str]:
        return [node.id for node in self.execution_order]


@dataclass(frozen=True)
class CompileStats:
    total_nodes: int
    total_edges: int
    execution_steps: int
    source_nodes: int
    sink_nodes: int


@dataclass(frozen=True)
class CompileResult:
    success: bool
    compiled_graph: CompiledGraph | None = None
    errors: Tuple[CompileError, ...] = ()
    stats: CompileStats | None = None

    def error_codes(self) -> List[CompileErrorCode]:
        return [error.code for error in self.errors]


class GraphCompiler:
    """Compiles node/edge records into a :class:`CompiledGraph`.

    Compilation never mutates its inputs and either yields a complete plan or
    none at all.  Steps run in order and stop at the first failing one:
    unique node ids, connection validation, cycle detection, topological sort.
    """

    def __init__(self, catalog: BlockCatalog) -> None:
        self.catalog = catalog

    def compile(self, nodes: Sequence[NodeDescriptor], edges: Sequence[EdgeDescriptor]) -> CompileResult:
        nodes = tuple(nodes)
        edges = tuple(edges)
        logger.debug("compiling graph: %d nodes, %d edges", len(nodes), len(edges))

        duplicates = _duplicate_ids(nodes)
        if duplicates:
            return self._fail(
                [
                    CompileError(
                        CompileErrorCode.DUPLICATE_NODE_ID,
                        f"Node id '{node_id}' is used by more than one node",
                        {"node": node_id},
                    )
                    for node_id in duplicates
                ]
            )

        node_map: Dict[str, NodeDescriptor] = {node.id: node for node in nodes}
        out_edges: Dict[str, List[EdgeDescriptor]] = {node.id: [] for node in nodes}
        in_edges: Dict[str, List[EdgeDescriptor]] = {node.id: [] for node in nodes}
        for edge in edges:
            if edge.source in out_edges:
                out_edges[edge.source].append(edge)
            if edge.target in in_edges:
                in_edges[edge.target].append(edge)

        errors = self._validate_connections(node_map, edges)
        if errors:
            return self._fail(errors)

        cycles = self._detect_cycles(nodes, out_edges)
        if cycles:
            return self._fail(
                [
                    CompileError(
                        CompileErrorCode.CYCLE_DETECTED,
                        "Graph contains cycles: "
                        + "; ".join(" -> ".join(cycle) for cycle in cycles),
                        {"cycles": tuple(tuple(cycle) for cycle in cycles)},
                    )
                ]
            )

        order = self._topological_sort(nodes, edges, node_map, out_edges)
        if order is None:
            return self._fail(
                [
                    CompileError(
                        CompileErrorCode.TOPOLOGICAL_SORT_FAILED,
                        "Topological sort could not order every node (graph may contain a cycle)",
                    )
                ]
            )

        compiled = self._build_plan(order, in_edges, out_edges)
        stats = CompileStats(
            total_nodes=len(nodes),
            total_edges=len(edges),
            execution_steps=len(compiled.execution_order),
            source_nodes=len(compiled.source_nodes),
            sink_nodes=len(compiled.sink_nodes),
        )
        logger.info("graph compiled; execution order: %s", [node.display_name for node in order])
        return CompileResult(success=True, compiled_graph=compiled, stats=stats)

    def _fail(self, errors: List[CompileError]) -> CompileResult:
        logger.warning("graph compilation failed: %s", [error.code.value for error in errors])
        return CompileResult(success=False, errors=tuple(errors))

    def _validate_connections(
        self, node_map: Mapping[str, NodeDescriptor], edges: Sequence[EdgeDescriptor]
    ) -> List[CompileError]:
        errors: List[CompileError] = []
        for edge in edges:
            source = node_map.get(edge.source)
            target = node_map.get(edge.target)
            if source is None or target is None:
                missing = edge.source if source is None else edge.target
                errors.append(
                    CompileError(
                        CompileErrorCode.INVALID_CONNECTION,
                        f"Edge '{edge.id}' references unknown node '{missing}'",
                        {"edge": edge},
                    )
                )
                continue
            source_type = self.catalog.signals_for(source.block_type).output
            target_type = self.catalog.signals_for(target.block_type).input
            if source_type != target_type:
                errors.append(
                    CompileError(
                        CompileErrorCode.TYPE_MISMATCH,
                        "Incompatible signal types: "
                        f"{source.display_name} ({_type_name(source_type)}) -> "
                        f"{target.display_name} ({_type_name(target_type)})",
                        {
                            "edge": edge,
                            "source": source.id,
                            "target": target.id,
                            "source_type": source_type,
                            "target_type": target_type,
                        },
                    )
                )
        return errors

    def _detect_cycles(
        self, nodes: Sequence[NodeDescriptor], out_edges: Mapping[str, List[EdgeDescriptor]]
    ) -> List[List[str]]:
        """Depth-first search reporting every back edge as a closed path."""

        visited: set[str] = set()
        on_stack: set[str] = set()
        cycles: List[List[str]] = []
        for root in nodes:
            if root.id in visited:
                continue
            # Explicit stack of (node id, iterator position) keeps deep graphs
            # clear of the interpreter recursion limit.
            path: List[str] = [root.id]
            cursor: List[int] = [0]
            visited.add(root.id)
            on_stack.add(root.id)
            while path:
                current = path[-1]
                outgoing = out_edges.get(current, ())
                if cursor[-1] < len(outgoing):
                    successor = outgoing[cursor[-1]].target
                    cursor[-1] += 1
                    if successor in on_stack:
                        start = path.index(successor)
                        cycles.append(path[start:] + [successor])
                    elif successor not in visited:
                        visited.add(successor)
                        on_stack.add(successor)
                        path.append(successor)
                        cursor.append(0)
                    continue
                on_stack.discard(current)
                path.pop()
                cursor.pop()
        if cycles:
            logger.debug("cycles detected: %s", cycles)
        return cycles

    def _topological_sort(
        self,
        nodes: Sequence[NodeDescriptor],
        edges: Sequence[EdgeDescriptor],
        node_map: Mapping[str, NodeDescriptor],
        out_edges: Mapping[str, List[EdgeDescriptor]],
    ) -> List[NodeDescriptor] | None:
        in_degree: Dict[str, int] = {node.id: 0 for node in nodes}
        for edge in edges:
            in_degree[edge.target] = in_degree.get(edge.target, 0) + 1
        queue: Deque[str] = deque(node.id for node in nodes if in_degree[node.id] == 0)
        order: List[NodeDescriptor] = []
        while queue:
            node_id = queue.popleft()
            order.append(node_map[node_id])
            for edge in out_edges.get(node_id, ()):
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)
        if len(order) != len(nodes):
            return None
        return order

    def _build_plan(
        self,
        order: Sequence[NodeDescriptor],
        in_edges: Mapping[str, List[EdgeDescriptor]],
        out_edges: Mapping[str, List[EdgeDescriptor]],
    ) -> CompiledGraph:
        dependencies = {node.id: tuple(edge.source for edge in in_edges.get(node.id, ())) for node in order}
        outputs = {node.id: tuple(edge.target for edge in out_edges.get(node.id, ())) for node in order}
        return CompiledGraph(
            execution_order=tuple(order),
            dependencies=MappingProxyType(dependencies),
            outputs=MappingProxyType(outputs),
            source_nodes=tuple(node for node in order if not dependencies[node.id]),
            sink_nodes=tuple(node for node in order if not outputs[node.id]),
        )


def _type_name(signal) -> str:
    return "none" if signal is None else signal.value


def _duplicate_ids(nodes: Sequence[NodeDescriptor]) -> List[str]:
    seen: set[str] = set()
    duplicates: List[str] = []
    for node in nodes:
        if node.id in seen and node.id not in duplicates:
            duplicates.append(node.id)
        seen.add(node.id)
    return duplicates


def compile_graph(
    catalog: BlockCatalog, nodes: Sequence[NodeDescriptor], edges: Sequence[EdgeDescriptor]
) -> CompileResult:
    """Compile ``nodes``/``edges`` against ``catalog``."""

    return GraphCompiler(catalog).compile(nodes, edges)


__all__ = [
    "CompileError",
    "CompileErrorCode",
    "CompileResult",
    "CompileStats",
    "CompiledGraph",
    "EdgeDescriptor",
    "GraphCompiler",
    "NodeDescriptor",
    "compile_graph",
]
