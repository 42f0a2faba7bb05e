from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from dspflow import sources
from dspflow.sources import ArraySampleSource, SoundFileSampleSource, iter_blocks


def test_array_source_contract() -> None:
    source = ArraySampleSource(np.arange(480.0), 48000, name="ramp")
    assert source.frame_count == 480
    assert source.sample_rate == 48000
    assert source.duration == pytest.approx(0.01)
    np.testing.assert_array_equal(source.read(470, 20), np.arange(470.0, 480.0))
    assert source.read(500, 10).shape == (0,)


def test_array_source_keeps_first_channel() -> None:
    stereo = np.stack([np.ones(10), -np.ones(10)], axis=1)
    source = ArraySampleSource(stereo, 44100)
    np.testing.assert_array_equal(source.samples, np.ones(10))
    with pytest.raises(ValueError):
        ArraySampleSource(np.zeros((2, 2, 2)), 44100)
    with pytest.raises(ValueError):
        ArraySampleSource(np.zeros(4), 0)


def test_iter_blocks_zero_pads_tail() -> None:
    blocks = list(iter_blocks(ArraySampleSource(np.arange(1.0, 11.0), 8000), 4))
    assert len(blocks) == 3
    np.testing.assert_array_equal(blocks[2], [9.0, 10.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        list(iter_blocks(ArraySampleSource(np.ones(4), 8000), 0))


def test_soundfile_source_decodes_wav(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    left = 0.5 * np.sin(2 * np.pi * 440 * np.arange(800) / 16000)
    right = np.zeros(800)
    sf.write(str(path), np.stack([left, right], axis=1), 16000, subtype="FLOAT")
    source = SoundFileSampleSource.open(path)
    assert source.sample_rate == 16000
    assert source.frame_count == 800
    assert source.channels == 2
    assert source.name == "tone.wav"
    np.testing.assert_allclose(source.samples, left, atol=1e-6)


def test_soundfile_source_rejects_large_files(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "big.wav"
    sf.write(str(path), np.zeros(1000), 8000)
    monkeypatch.setattr(sources, "MAX_FILE_BYTES", 100)
    with pytest.raises(ValueError, match="too large"):
        SoundFileSampleSource.open(path)
