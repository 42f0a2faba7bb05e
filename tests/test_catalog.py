import pytest

from dspflow.blocks import BUILTIN_BLOCKS, build_default_catalog
from dspflow.catalog import (
    BlockCatalog,
    BlockDescriptor,
    BlockSignals,
    CatalogError,
    SignalType,
    descriptor_from_mapping,
)

REAL = SignalType.REAL
COMPLEX = SignalType.COMPLEX


def _noop(ctx):
    return None


def _descriptor(block_id: str = "CUSTOM", name: str = "Custom") -> BlockDescriptor:
    return BlockDescriptor(
        id=block_id,
        name=name,
        icon="star",
        group="math-blocks",
        signals=BlockSignals(REAL, REAL),
        process=_noop,
    )


def test_default_catalog_contents() -> None:
    catalog = build_default_catalog()
    assert catalog.frozen
    assert len(catalog) == len(BUILTIN_BLOCKS) == 20
    for block_id in ("FIR_FILTER", "SINE_GEN", "FFT", "GOERTZEL_FILTER", "CONSTELLATION"):
        assert block_id in catalog


def test_signal_shapes_of_builtin_blocks() -> None:
    catalog = build_default_catalog()
    assert catalog.signals_for("HILBERT_TRANSFORMER") == BlockSignals(REAL, COMPLEX)
    assert catalog.signals_for("FFT") == BlockSignals(REAL, COMPLEX)
    assert catalog.signals_for("PHASE_DETECTOR") == BlockSignals(COMPLEX, REAL)
    assert catalog.signals_for("SINE_GEN") == BlockSignals(None, REAL)
    assert catalog.signals_for("OSCILLOSCOPE") == BlockSignals(REAL, None)
    assert catalog.signals_for("CONSTELLATION") == BlockSignals(COMPLEX, None)


def test_unknown_type_defaults_to_real_passthrough_signals() -> None:
    catalog = build_default_catalog()
    assert catalog.signals_for("DOES_NOT_EXIST") == BlockSignals(REAL, REAL)
    assert catalog.resolve("DOES_NOT_EXIST") is None
    assert not catalog.is_generator("DOES_NOT_EXIST")
    assert catalog.default_params("DOES_NOT_EXIST") == {}
    assert catalog.validate_params("DOES_NOT_EXIST", {"x": 1}) == []


def test_resolve_by_id_or_display_name() -> None:
    catalog = build_default_catalog()
    assert catalog.resolve("Sine Generator") is catalog.get("SINE_GEN")
    assert catalog.get_by_name("Lowpass FIR").id == "LOWPASS_FIR"
    assert "Oscilloscope" in catalog


def test_generator_and_visualization_views() -> None:
    catalog = build_default_catalog()
    assert set(catalog.generator_types()) == {"AUDIO_FILE", "INPUT_SIGNAL", "SINE_GEN", "REF_COSINE_GEN"}
    assert set(catalog.visualization_types()) == {"SLIDING_FFT", "SPECTRUM_ANALYZER", "OSCILLOSCOPE", "CONSTELLATION"}
    assert catalog.visualization_type("OSCILLOSCOPE") == "oscilloscope"
    assert catalog.is_sink("SLIDING_FFT")
    assert catalog.block_types()["FFT"] == "FFT"
    assert catalog.default_params_map()["GOERTZEL_FILTER"] == {"targetFrequency": 1000, "N": 256}
    assert catalog.signal_config()["INTEGRATOR"] == BlockSignals(REAL, REAL)


def test_groups_are_ordered() -> None:
    groups = build_default_catalog().groups()
    assert [group["id"] for group in groups] == [
        "filters",
        "generators",
        "fft-blocks",
        "detectors",
        "math-blocks",
        "visualization",
    ]
    filters = [block["id"] for block in groups[0]["blocks"]]
    assert filters[0] == "FIR_FILTER"
    assert filters[-1] == "GOERTZEL_FILTER"


def test_default_params_are_copies() -> None:
    catalog = build_default_catalog()
    params = catalog.default_params("LOWPASS_FIR")
    params["order"] = 3
    assert catalog.default_params("LOWPASS_FIR")["order"] == 64


def test_validate_params_merges_defaults() -> None:
    catalog = build_default_catalog()
    assert catalog.validate_params("LOWPASS_FIR", {}) == []
    assert catalog.validate_params("LOWPASS_FIR", {"order": 0})
    assert catalog.validate_params("FFT", {"fftSize": 1000}) == ["FFT size must be a power of two"]
    assert catalog.validate_params("BANDPASS_FIR", {"lowCutoff": 4000, "highCutoff": 3000})
    assert catalog.validate_params("SLIDING_FFT", {"windowSize": 256, "overlap": 256})
    assert catalog.validate_params("SINE_GEN", {"frequency": -5})


def test_frozen_catalog_rejects_registration() -> None:
    catalog = build_default_catalog()
    with pytest.raises(CatalogError):
        catalog.register(_descriptor())
    with pytest.raises(CatalogError):
        catalog.define_group("extra", "Extra", 9)


def test_register_rejects_duplicates() -> None:
    catalog = BlockCatalog()
    catalog.register(_descriptor())
    with pytest.raises(CatalogError, match="name"):
        catalog.register(_descriptor(block_id="OTHER"))
    with pytest.raises(CatalogError, match="id"):
        catalog.register(_descriptor(name="Other"))


def test_register_from_mapping() -> None:
    catalog = BlockCatalog()
    descriptor = catalog.register(
        {
            "id": "GAIN",
            "name": "Gain",
            "icon": "volume_up",
            "group": "math-blocks",
            "signals": {"input": "real", "output": "real"},
            "process": _noop,
            "defaultParams": {"gain": 2.0},
            "visualizationType": None,
        }
    )
    assert descriptor.signals == BlockSignals(REAL, REAL)
    assert catalog.default_params("GAIN") == {"gain": 2.0}
    assert descriptor.description == "Gain"


def test_mapping_missing_required_field() -> None:
    with pytest.raises(CatalogError, match="icon"):
        descriptor_from_mapping(
            {"id": "X", "name": "X", "group": "g", "signals": BlockSignals(REAL, REAL), "process": _noop}
        )
    assert issubclass(CatalogError, ValueError)
