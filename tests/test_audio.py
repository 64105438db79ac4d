"""
Audio collaborators never raise; None means "unknown".

1. Duration comes from real soundfile headers
2. Tempo detection maps backend output to a BPM float, or None
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import soundfile as sf

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from samplesort import audio


SAMPLE_RATE = 22050


def write_sine(path: Path, seconds: float) -> Path:
    t = np.arange(int(SAMPLE_RATE * seconds)) / SAMPLE_RATE
    sf.write(str(path), 0.5 * np.sin(2 * np.pi * 440.0 * t), SAMPLE_RATE)
    return path


def fake_backend(tempo=None, signal=None, load_error=None):
    load = MagicMock(return_value=(np.ones(SAMPLE_RATE) if signal is None else signal, SAMPLE_RATE))
    if load_error is not None:
        load.side_effect = load_error
    return {"load": load, "beat_track": MagicMock(return_value=(tempo, np.array([])))}


# ============================================================================
# DURATION
# ============================================================================

def test_duration_of_a_real_wav(tmp_path: Path):
    wav = write_sine(tmp_path / "tone.wav", 1.5)
    assert audio.get_duration(wav) == pytest.approx(1.5, abs=1e-3)


def test_duration_of_non_audio_is_none(tmp_path: Path):
    text = tmp_path / "notes.wav"
    text.write_text("this is not audio", encoding="utf-8")
    assert audio.get_duration(text) is None
    assert audio.get_duration(tmp_path / "missing.wav") is None


# ============================================================================
# TEMPO
# ============================================================================

def test_tempo_from_backend(tmp_path: Path):
    backend = fake_backend(tempo=np.array([123.4]))
    with patch.object(audio, "_get_tempo_backend", return_value=backend):
        assert audio.detect_tempo(tmp_path / "loop.wav") == pytest.approx(123.4)
    backend["load"].assert_called_once()


@pytest.mark.parametrize(
    "backend",
    [
        None,
        fake_backend(load_error=RuntimeError("decoder exploded")),
        fake_backend(signal=np.zeros(0)),
        fake_backend(tempo=np.array([0.0])),
        fake_backend(tempo=np.array([np.nan])),
    ],
)
def test_tempo_failures_are_none(tmp_path: Path, backend):
    with patch.object(audio, "_get_tempo_backend", return_value=backend):
        assert audio.detect_tempo(tmp_path / "loop.wav") is None


def test_tempo_of_garbage_file_is_none(tmp_path: Path):
    garbage = tmp_path / "garbage.wav"
    garbage.write_bytes(b"\x00\x01not audio at all" * 64)
    assert audio.detect_tempo(garbage) is None
