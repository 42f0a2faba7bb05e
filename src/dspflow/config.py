"""Configuration loading and plain-record graph round-tripping."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence

from .graph import EdgeDescriptor, NodeDescriptor
from .state import DEFAULT_BUFFER_SIZE, DEFAULT_SAMPLE_RATE

_REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = _REPO_ROOT / "configs" / "default.json"
DEFAULT_CYCLES = 8


@dataclass(slots=True)
class EngineConfig:
    """Sample rate and per-cycle buffer size shared by every node."""

    sample_rate: int = DEFAULT_SAMPLE_RATE
    buffer_size: int = DEFAULT_BUFFER_SIZE

    def __post_init__(self) -> None:
        self.sample_rate = int(self.sample_rate)
        self.buffer_size = int(self.buffer_size)
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be a positive integer")
        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be a positive integer")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: "EngineConfig | None" = None) -> "EngineConfig":
        """Accept snake_case or camelCase keys; missing keys keep ``base``'s values."""

        base = base or cls()
        sample_rate = data.get("sample_rate", data.get("sampleRate"))
        buffer_size = data.get("buffer_size", data.get("bufferSize"))
        return cls(
            sample_rate=base.sample_rate if sample_rate is None else sample_rate,
            buffer_size=base.buffer_size if buffer_size is None else buffer_size,
        )


@dataclass(slots=True)
class GraphConfig:
    nodes: List[NodeDescriptor] = field(default_factory=list)
    edges: List[EdgeDescriptor] = field(default_factory=list)
    viewport: Mapping[str, Any] | None = None


@dataclass(slots=True)
class AppConfig:
    engine: EngineConfig
    graph: GraphConfig
    cycles: int = DEFAULT_CYCLES


def _node_from_record(index: int, item: Mapping[str, Any]) -> NodeDescriptor:
    # Editor records nest the block fields under "data".
    data = item.get("data") if isinstance(item.get("data"), Mapping) else item
    node_id = item.get("id")
    block_type = data.get("blockType", data.get("block_type"))
    if not node_id:
        raise ValueError(f"graph.nodes[{index}] has no id")
    if not block_type:
        raise ValueError(f"graph.nodes[{index}] ('{node_id}') has no blockType")
    label = data.get("label")
    return NodeDescriptor(
        id=str(node_id),
        block_type=str(block_type),
        params=dict(data.get("params", {}) or {}),
        label=None if label is None else str(label),
    )


def _edge_from_record(index: int, item: Mapping[str, Any]) -> EdgeDescriptor:
    for key in ("source", "target"):
        if not item.get(key):
            raise ValueError(f"graph.edges[{index}] has no {key}")
    source_handle = item.get("sourceHandle", item.get("source_handle"))
    target_handle = item.get("targetHandle", item.get("target_handle"))
    return EdgeDescriptor(
        id=str(item.get("id") or f"e{index}"),
        source=str(item["source"]),
        target=str(item["target"]),
        source_handle=None if source_handle is None else str(source_handle),
        target_handle=None if target_handle is None else str(target_handle),
    )


def graph_from_records(data: Mapping[str, Any]) -> GraphConfig:
    """Build a :class:`GraphConfig` from plain ``{"nodes", "edges", "viewport"}`` records."""

    nodes = [_node_from_record(idx, item) for idx, item in enumerate(data.get("nodes", []) or [])]
    edges = [_edge_from_record(idx, item) for idx, item in enumerate(data.get("edges", []) or [])]
    viewport = data.get("viewport")
    return GraphConfig(nodes=nodes, edges=edges, viewport=None if viewport is None else dict(viewport))


def graph_to_records(
    nodes: Sequence[NodeDescriptor],
    edges: Sequence[EdgeDescriptor],
    viewport: Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    """Inverse of :func:`graph_from_records` for an external storage layer."""

    node_records = []
    for node in nodes:
        record: Dict[str, Any] = {"id": node.id, "blockType": node.block_type, "params": dict(node.params)}
        if node.label is not None:
            record["label"] = node.label
        node_records.append(record)
    edge_records = []
    for edge in edges:
        record = {"id": edge.id, "source": edge.source, "target": edge.target}
        if edge.source_handle is not None:
            record["sourceHandle"] = edge.source_handle
        if edge.target_handle is not None:
            record["targetHandle"] = edge.target_handle
        edge_records.append(record)
    result: Dict[str, Any] = {"nodes": node_records, "edges": edge_records}
    if viewport is not None:
        result["viewport"] = dict(viewport)
    return result


def _normalise_engine(raw: MutableMapping[str, Any]) -> EngineConfig:
    engine = raw.get("engine")
    if isinstance(engine, Mapping):
        return EngineConfig.from_mapping(engine)
    return EngineConfig.from_mapping(raw)


def load_configuration(path: str | Path) -> AppConfig:
    """Load an :class:`AppConfig` from the JSON file at ``path``."""

    with open(path, "r", encoding="utf8") as fh:
        raw = json.load(fh)
    engine = _normalise_engine(dict(raw))
    graph_data = raw.get("graph", {}) or {}
    graph = graph_from_records(graph_data)
    if not graph.nodes:
        raise ValueError("graph.nodes must contain at least one node definition")
    cycles = int(raw.get("cycles", DEFAULT_CYCLES))
    if cycles <= 0:
        raise ValueError("cycles must be a positive integer")
    return AppConfig(engine=engine, graph=graph, cycles=cycles)


def save_configuration(config: AppConfig, path: str | Path) -> None:
    payload = {
        "sample_rate": config.engine.sample_rate,
        "buffer_size": config.engine.buffer_size,
        "cycles": config.cycles,
        "graph": graph_to_records(config.graph.nodes, config.graph.edges, config.graph.viewport),
    }
    with open(path, "w", encoding="utf8") as fh:
        json.dump(payload, fh, indent=2)


__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_CYCLES",
    "EngineConfig",
    "GraphConfig",
    "graph_from_records",
    "graph_to_records",
    "load_configuration",
    "save_configuration",
]
