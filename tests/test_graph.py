import numpy as np
import pytest

from dspflow.blocks import build_default_catalog
from dspflow.graph import (
    CompileErrorCode,
    EdgeDescriptor,
    GraphCompiler,
    NodeDescriptor,
    compile_graph,
)

CATALOG = build_default_catalog()


def node(node_id: str, block_type: str, **params) -> NodeDescriptor:
    return NodeDescriptor(id=node_id, block_type=block_type, params=params, label=node_id.title())


def edge(source: str, target: str) -> EdgeDescriptor:
    return EdgeDescriptor(id=f"{source}->{target}", source=source, target=target)


def assert_topological(order, edges) -> None:
    position = {item.id: idx for idx, item in enumerate(order)}
    for item in edges:
        assert position[item.source] < position[item.target], item


def test_sine_lowpass_scope_scenario() -> None:
    nodes = [
        node("scope", "OSCILLOSCOPE"),
        node("lowpass", "LOWPASS_FIR", order=64, cutoff=500),
        node("sine", "SINE_GEN", frequency=1000),
    ]
    edges = [edge("sine", "lowpass"), edge("lowpass", "scope")]
    result = compile_graph(CATALOG, nodes, edges)

    assert result.success
    assert result.errors == ()
    compiled = result.compiled_graph
    assert compiled.order_ids() == ["sine", "lowpass", "scope"]
    assert [item.id for item in compiled.source_nodes] == ["sine"]
    assert [item.id for item in compiled.sink_nodes] == ["scope"]
    assert compiled.dependencies["lowpass"] == ("sine",)
    assert compiled.outputs["lowpass"] == ("scope",)
    assert compiled.dependencies["sine"] == ()
    assert result.stats.total_nodes == 3
    assert result.stats.total_edges == 2
    assert result.stats.execution_steps == 3
    assert result.stats.source_nodes == 1
    assert result.stats.sink_nodes == 1


def test_diamond_and_fan_in_respect_edges() -> None:
    nodes = [
        node("sum", "SUMMER"),
        node("lp", "LOWPASS_FIR"),
        node("hp", "HIGHPASS_FIR"),
        node("osc", "SINE_GEN"),
        node("cos", "REF_COSINE_GEN"),
        node("mul", "MULTIPLIER"),
        node("scope", "OSCILLOSCOPE"),
    ]
    edges = [
        edge("osc", "lp"),
        edge("osc", "hp"),
        edge("lp", "sum"),
        edge("hp", "sum"),
        edge("sum", "mul"),
        edge("cos", "mul"),
        edge("mul", "scope"),
    ]
    result = compile_graph(CATALOG, nodes, edges)
    assert result.success
    compiled = result.compiled_graph
    assert_topological(compiled.execution_order, edges)
    assert compiled.dependencies["sum"] == ("lp", "hp")
    assert compiled.dependencies["mul"] == ("sum", "cos")
    assert {item.id for item in compiled.source_nodes} == {"osc", "cos"}
    assert [item.id for item in compiled.sink_nodes] == ["scope"]


def test_random_acyclic_graphs_compile_in_order() -> None:
    rng = np.random.default_rng(5)
    for _ in range(25):
        count = int(rng.integers(2, 12))
        nodes = [node(f"n{i}", "SUMMER") for i in range(count)]
        rng.shuffle(nodes)
        edges = []
        for src in range(count):
            for dst in range(src + 1, count):
                if rng.random() < 0.3:
                    edges.append(edge(f"n{src}", f"n{dst}"))
        result = compile_graph(CATALOG, nodes, edges)
        assert result.success
        assert len(result.compiled_graph.execution_order) == count
        assert_topological(result.compiled_graph.execution_order, edges)


def test_cycle_is_rejected() -> None:
    nodes = [node("a", "LOWPASS_FIR"), node("b", "HIGHPASS_FIR"), node("c", "SUMMER")]
    edges = [edge("a", "b"), edge("b", "c"), edge("c", "a")]
    result = compile_graph(CATALOG, nodes, edges)
    assert not result.success
    assert result.compiled_graph is None
    assert result.error_codes() == [CompileErrorCode.CYCLE_DETECTED]
    cycles = result.errors[0].details["cycles"]
    assert cycles == (("a", "b", "c", "a"),)


def test_self_loop_is_rejected() -> None:
    nodes = [node("osc", "SINE_GEN"), node("sum", "SUMMER")]
    edges = [edge("osc", "sum"), edge("sum", "sum")]
    result = compile_graph(CATALOG, nodes, edges)
    assert not result.success
    assert result.compiled_graph is None
    assert result.error_codes() == [CompileErrorCode.CYCLE_DETECTED]
    assert result.errors[0].details["cycles"] == (("sum", "sum"),)


def test_every_cycle_is_reported_once() -> None:
    nodes = [node(name, "SUMMER") for name in "abcd"]
    edges = [edge("a", "b"), edge("b", "a"), edge("c", "d"), edge("d", "c")]
    result = compile_graph(CATALOG, nodes, edges)
    assert len(result.errors) == 1
    assert len(result.errors[0].details["cycles"]) == 2
    assert "a -> b -> a" in result.errors[0].message


def test_complex_into_real_is_type_mismatch() -> None:
    nodes = [node("osc", "SINE_GEN"), node("fft", "FFT"), node("lp", "LOWPASS_FIR")]
    edges = [edge("osc", "fft"), edge("fft", "lp")]
    result = compile_graph(CATALOG, nodes, edges)
    assert not result.success
    assert result.error_codes() == [CompileErrorCode.TYPE_MISMATCH]
    error = result.errors[0]
    assert "Fft (complex) -> Lp (real)" in error.message
    assert error.details["source"] == "fft"
    assert error.details["target"] == "lp"


def test_type_mismatch_reported_before_cycles() -> None:
    nodes = [node("h", "HILBERT_TRANSFORMER"), node("lp", "LOWPASS_FIR")]
    edges = [edge("lp", "h"), edge("h", "lp")]
    result = compile_graph(CATALOG, nodes, edges)
    assert result.error_codes() == [CompileErrorCode.TYPE_MISMATCH]


def test_edges_into_generators_or_out_of_sinks_mismatch() -> None:
    nodes = [node("a", "SINE_GEN"), node("b", "SINE_GEN"), node("scope", "OSCILLOSCOPE"), node("lp", "LOWPASS_FIR")]
    edges = [edge("a", "b"), edge("scope", "lp")]
    result = compile_graph(CATALOG, nodes, edges)
    assert result.error_codes() == [CompileErrorCode.TYPE_MISMATCH, CompileErrorCode.TYPE_MISMATCH]


def test_dangling_edge_is_invalid_connection() -> None:
    nodes = [node("osc", "SINE_GEN"), node("fft", "FFT"), node("lp", "LOWPASS_FIR")]
    edges = [edge("osc", "ghost"), edge("fft", "lp")]
    result = compile_graph(CATALOG, nodes, edges)
    assert not result.success
    assert result.error_codes() == [CompileErrorCode.INVALID_CONNECTION, CompileErrorCode.TYPE_MISMATCH]
    assert "ghost" in result.errors[0].message


def test_unknown_block_type_compiles_as_real_passthrough() -> None:
    nodes = [node("osc", "SINE_GEN"), node("mystery", "NOT_A_BLOCK"), node("scope", "OSCILLOSCOPE")]
    edges = [edge("osc", "mystery"), edge("mystery", "scope")]
    result = compile_graph(CATALOG, nodes, edges)
    assert result.success
    assert result.compiled_graph.order_ids() == ["osc", "mystery", "scope"]


def test_isolated_nodes_are_both_source_and_sink() -> None:
    result = compile_graph(CATALOG, [node("lonely", "SUMMER")], [])
    assert result.success
    compiled = result.compiled_graph
    assert [item.id for item in compiled.source_nodes] == ["lonely"]
    assert [item.id for item in compiled.sink_nodes] == ["lonely"]


def test_empty_graph_compiles() -> None:
    result = GraphCompiler(CATALOG).compile([], [])
    assert result.success
    assert result.compiled_graph.execution_order == ()
    assert result.stats.total_nodes == 0


def test_compile_does_not_mutate_inputs() -> None:
    nodes = [node("osc", "SINE_GEN", frequency=440), node("scope", "OSCILLOSCOPE")]
    edges = [edge("osc", "scope")]
    nodes_before = list(nodes)
    edges_before = list(edges)
    compile_graph(CATALOG, nodes, edges)
    assert nodes == nodes_before
    assert edges == edges_before
    assert dict(nodes[0].params) == {"frequency": 440}
    with pytest.raises(TypeError):
        nodes[0].params["frequency"] = 1


def test_duplicate_node_ids_are_rejected() -> None:
    nodes = [node("a", "SINE_GEN"), node("a", "REF_COSINE_GEN"), node("scope", "OSCILLOSCOPE")]
    result = compile_graph(CATALOG, nodes, [])
    assert not result.success
    assert result.compiled_graph is None
    assert result.error_codes() == [CompileErrorCode.DUPLICATE_NODE_ID]
    assert "'a'" in result.errors[0].message
    assert result.errors[0].details["node"] == "a"

    with_edge = compile_graph(CATALOG, nodes, [edge("a", "scope")])
    assert with_edge.error_codes() == [CompileErrorCode.DUPLICATE_NODE_ID]


def test_topological_sort_failure_is_reported(monkeypatch) -> None:
    nodes = [node("a", "SUMMER"), node("b", "SUMMER")]
    edges = [edge("a", "b"), edge("b", "a")]
    monkeypatch.setattr(GraphCompiler, "_detect_cycles", lambda self, nodes, out_edges: [])
    result = GraphCompiler(CATALOG).compile(nodes, edges)
    assert not result.success
    assert result.compiled_graph is None
    assert result.error_codes() == [CompileErrorCode.TOPOLOGICAL_SORT_FAILED]
