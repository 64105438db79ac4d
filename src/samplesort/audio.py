"""Audio collaborators: duration lookup and tempo detection.

Both are opaque to the pipeline and never raise past this boundary:
``None`` means "unknown". Duration comes from ``soundfile`` headers (no
decode); tempo detection decodes with ``librosa`` and runs its beat
tracker. ``librosa`` is imported lazily the first time a tempo is
requested, because importing it is slow.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import soundfile as sf

from . import tuning

_backend: Optional[Dict[str, Any]] = None
_backend_checked = False


def _get_tempo_backend() -> Optional[Dict[str, Any]]:
    """Import and cache librosa entry points once per process."""
    global _backend, _backend_checked
    if _backend_checked:
        return _backend
    _backend_checked = True
    try:
        import librosa  # type: ignore
    except Exception:
        _backend = None
        return None
    _backend = {
        "load": librosa.load,
        "beat_track": librosa.beat.beat_track,
    }
    return _backend


def get_duration(path: Path) -> Optional[float]:
    """Return the duration in seconds, or None when it cannot be read."""
    try:
        info = sf.info(str(path))
    except Exception:
        return None
    duration = float(getattr(info, "duration", 0.0) or 0.0)
    if not math.isfinite(duration) or duration <= 0.0:
        return None
    return duration


def detect_tempo(path: Path) -> Optional[float]:
    """Estimate the tempo of an audio file in BPM, or None."""
    backend = _get_tempo_backend()
    if backend is None:
        return None
    try:
        y, sr = backend["load"](str(path), sr=tuning.TEMPO_SAMPLE_RATE, mono=True)
        if y is None or len(y) == 0:
            return None
        tempo, _beats = backend["beat_track"](y=y, sr=sr)
    except Exception:
        return None
    value = float(np.atleast_1d(tempo)[0]) if np.size(tempo) else 0.0
    if not math.isfinite(value) or value <= 0.0:
        return None
    return value
