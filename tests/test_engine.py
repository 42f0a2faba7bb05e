import logging

import numpy as np
import pytest

from dspflow import dsp
from dspflow.blocks import BUILTIN_BLOCKS, GROUPS, build_default_catalog
from dspflow.catalog import BlockCatalog, BlockDescriptor, BlockSignals, SignalType
from dspflow.config import EngineConfig
from dspflow.diagnostics import enable_cycle_tracing
from dspflow.dsp import ComplexSignal
from dspflow.engine import EngineState, ExecutionEngine
from dspflow.graph import EdgeDescriptor, NodeDescriptor, compile_graph

CATALOG = build_default_catalog()


def node(node_id: str, block_type: str, **params) -> NodeDescriptor:
    return NodeDescriptor(id=node_id, block_type=block_type, params=params)


def edge(source: str, target: str) -> EdgeDescriptor:
    return EdgeDescriptor(id=f"{source}->{target}", source=source, target=target)


def build_engine(nodes, edges, catalog=CATALOG, sample_rate=48000, buffer_size=256) -> ExecutionEngine:
    result = compile_graph(catalog, nodes, edges)
    assert result.success, result.errors
    engine = ExecutionEngine(catalog)
    engine.initialize(result.compiled_graph, EngineConfig(sample_rate=sample_rate, buffer_size=buffer_size))
    return engine


def sine_chain() -> ExecutionEngine:
    return build_engine(
        [
            node("sine", "SINE_GEN", frequency=1000, amplitude=1.0),
            node("lowpass", "LOWPASS_FIR", order=64, cutoff=500),
            node("scope", "OSCILLOSCOPE"),
        ],
        [edge("sine", "lowpass"), edge("lowpass", "scope")],
    )


def test_lifecycle_states() -> None:
    engine = ExecutionEngine(CATALOG)
    assert engine.state is EngineState.IDLE
    assert not engine.start()
    assert engine.execute_one_cycle() is None

    engine = sine_chain()
    assert engine.state is EngineState.READY
    assert engine.execute_one_cycle() is None
    assert engine.start()
    assert engine.state is EngineState.RUNNING
    assert engine.stop()
    assert engine.state is EngineState.READY
    assert engine.execute_one_cycle() is None
    engine.reset()
    assert engine.state is EngineState.IDLE
    assert engine.compiled_graph is None


def test_cycle_returns_sink_outputs() -> None:
    engine = sine_chain()
    engine.start()
    outputs = engine.execute_one_cycle()
    assert list(outputs) == ["scope"]
    sink = outputs["scope"]
    assert sink.node.id == "scope"
    assert sink.data.shape == (256,)
    np.testing.assert_array_equal(sink.data, engine.get_node_output("lowpass"))
    assert engine.get_node_output("sine").shape == (256,)
    assert engine.get_node_output("missing") is None


def test_stats_track_cycles() -> None:
    engine = sine_chain()
    engine.start()
    for _ in range(3):
        engine.execute_one_cycle()
    stats = engine.get_stats()
    assert stats.cycles_executed == 3
    assert stats.total_samples == 3 * 256
    assert stats.execution_time >= 0.0
    assert stats.is_running
    assert stats.sample_rate == 48000
    assert stats.buffer_size == 256
    assert stats.as_dict()["cycles_executed"] == 3
    assert set(engine.last_node_timings) == {"sine", "lowpass", "scope"}


def test_start_resets_runtime_state() -> None:
    engine = build_engine([node("sine", "SINE_GEN", frequency=700)], [])
    engine.start()
    first = engine.execute_one_cycle()["sine"].data
    engine.execute_one_cycle()
    engine.stop()
    engine.start()
    assert engine.get_stats().cycles_executed == 0
    again = engine.execute_one_cycle()["sine"].data
    np.testing.assert_array_equal(first, again)


def test_generator_output_is_continuous_across_cycles() -> None:
    engine = build_engine([node("sine", "SINE_GEN", frequency=1234, amplitude=1.0, phase=0.0)], [])
    engine.start()
    first = engine.execute_one_cycle()["sine"].data
    second = engine.execute_one_cycle()["sine"].data
    assert first[0] == pytest.approx(0.0)
    joined = np.concatenate([first, second])
    curvature = np.diff(joined, n=2)
    # curvature[255] spans the buffer seam; a jump there would dwarf the interior.
    assert abs(curvature[255]) <= np.max(np.abs(curvature[:250])) + 1e-9
    np.testing.assert_allclose(joined, dsp.generate_sine(1234, 1.0, 48000, 512), atol=1e-9)


def test_sample_rate_and_buffer_size_from_mapping() -> None:
    result = compile_graph(CATALOG, [node("sine", "SINE_GEN")], [])
    engine = ExecutionEngine(CATALOG)
    engine.initialize(result.compiled_graph, {"sampleRate": 8000, "bufferSize": 32})
    engine.start()
    assert engine.execute_one_cycle()["sine"].data.shape == (32,)
    assert engine.get_stats().sample_rate == 8000


def test_set_config_applies_to_next_cycle_and_keeps_state() -> None:
    engine = build_engine([node("sine", "SINE_GEN", frequency=1234, amplitude=1.0)], [])
    engine.start()
    first = engine.execute_one_cycle()["sine"].data
    updated = engine.set_config({"bufferSize": 128})
    assert updated == EngineConfig(sample_rate=48000, buffer_size=128)
    assert engine.state is EngineState.RUNNING
    second = engine.execute_one_cycle()["sine"].data
    assert second.shape == (128,)
    joined = np.concatenate([first, second])
    np.testing.assert_allclose(joined, dsp.generate_sine(1234, 1.0, 48000, 384), atol=1e-9)
    stats = engine.get_stats()
    assert stats.cycles_executed == 2
    assert stats.buffer_size == 128
    with pytest.raises(ValueError):
        engine.set_config({"sampleRate": 0})


def test_fan_out_consumers_see_identical_input() -> None:
    engine = build_engine(
        [
            node("osc", "SINE_GEN", frequency=440),
            node("a", "INTEGRATOR"),
            node("b", "OSCILLOSCOPE"),
        ],
        [edge("osc", "a"), edge("osc", "b")],
    )
    engine.start()
    outputs = engine.execute_one_cycle()
    np.testing.assert_array_equal(outputs["b"].data, engine.get_node_output("osc"))
    np.testing.assert_allclose(outputs["a"].data, np.cumsum(engine.get_node_output("osc")))


def test_hilbert_phase_detector_chain() -> None:
    engine = build_engine(
        [
            node("osc", "SINE_GEN", frequency=1000),
            node("hilbert", "HILBERT_TRANSFORMER", order=63),
            node("phase", "PHASE_DETECTOR", referenceFrequency=1000),
            node("freq", "FREQUENCY_DETECTOR"),
            node("iq", "CONSTELLATION"),
        ],
        [
            edge("osc", "hilbert"),
            edge("hilbert", "phase"),
            edge("hilbert", "freq"),
            edge("hilbert", "iq"),
        ],
    )
    engine.start()
    outputs = engine.execute_one_cycle()
    assert set(outputs) == {"phase", "freq", "iq"}
    assert isinstance(outputs["iq"].data, ComplexSignal)
    assert outputs["phase"].data.shape == (256,)
    assert outputs["freq"].data.shape == (256,)


def test_unknown_block_passes_input_through(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="dspflow.engine"):
        engine = build_engine(
            [node("osc", "SINE_GEN"), node("mystery", "NOT_A_BLOCK"), node("scope", "OSCILLOSCOPE")],
            [edge("osc", "mystery"), edge("mystery", "scope")],
        )
    assert "NOT_A_BLOCK" in caplog.text
    engine.start()
    outputs = engine.execute_one_cycle()
    np.testing.assert_array_equal(outputs["scope"].data, engine.get_node_output("osc"))


def test_unknown_source_block_emits_silence() -> None:
    engine = build_engine([node("mystery", "NOT_A_BLOCK")], [])
    engine.start()
    np.testing.assert_array_equal(engine.execute_one_cycle()["mystery"].data, np.zeros(256))


def _explode(ctx):
    raise RuntimeError("boom")


def _catalog_with_failing_block() -> BlockCatalog:
    catalog = BlockCatalog()
    for group_id, name, order in GROUPS:
        catalog.define_group(group_id, name, order)
    for descriptor in BUILTIN_BLOCKS:
        catalog.register(descriptor)
    catalog.register(
        BlockDescriptor(
            id="EXPLODE",
            name="Explode",
            icon="warning",
            group="math-blocks",
            signals=BlockSignals(SignalType.REAL, SignalType.REAL),
            process=_explode,
        )
    )
    return catalog.freeze()


def test_block_error_stops_engine_and_propagates() -> None:
    catalog = _catalog_with_failing_block()
    engine = build_engine(
        [node("osc", "SINE_GEN"), node("bad", "EXPLODE"), node("scope", "OSCILLOSCOPE")],
        [edge("osc", "bad"), edge("bad", "scope")],
        catalog=catalog,
    )
    engine.start()
    with pytest.raises(RuntimeError, match="boom"):
        engine.execute_one_cycle()
    assert engine.state is EngineState.READY
    assert engine.get_node_output("osc") is None
    assert engine.get_stats().cycles_executed == 0
    assert engine.execute_one_cycle() is None


def test_cycle_tracing_logs_node_timings(caplog) -> None:
    engine = sine_chain()
    engine.start()
    enable_cycle_tracing(True)
    try:
        with caplog.at_level(logging.DEBUG, logger="dspflow.trace"):
            engine.execute_one_cycle()
    finally:
        enable_cycle_tracing(False)
    assert "node=lowpass" in caplog.text
    assert "block=SINE_GEN" in caplog.text


def test_initialize_discards_previous_outputs() -> None:
    engine = sine_chain()
    engine.start()
    engine.execute_one_cycle()
    result = compile_graph(CATALOG, [node("cos", "REF_COSINE_GEN")], [])
    engine.initialize(result.compiled_graph)
    assert engine.state is EngineState.READY
    assert engine.get_node_output("sine") is None
    assert engine.config.buffer_size == 256
