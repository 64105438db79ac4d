"""Centralized tuning constants for the SampleSort pipeline.

Folder names, yield cadences, hashing defaults and decode limits are
defined here and referenced by the engine (single source of truth).
"""

from __future__ import annotations

from typing import Any, Dict

# ---------------------------------------------------------------------------
# Reserved folder names
FALLBACK_CATEGORY = "Miscellaneous"
DUPLICATES_FOLDER_NAME = "_Duplicates"
DEFAULT_MIDI_FOLDER_NAME = "MIDI"
SCRATCH_PREFIX = "_temp_"

# ---------------------------------------------------------------------------
# Cooperative scheduling
YIELD_EVERY = 50
TEMPO_YIELD_EVERY = 30
KEY_YIELD_EVERY = 100
PREPARE_YIELD_EVERY = 200

# ---------------------------------------------------------------------------
# Hashing / decoding
DEFAULT_HASH_ALGORITHM = "sha256"
HASH_CHUNK_SIZE = 1024 * 1024
MAX_DECODE_MB = 64
TEMPO_SAMPLE_RATE = 22050

DEFAULT_EXTENSIONS = ["wav", "mp3", "aif", "aiff", "flac", "ogg", "mid", "midi"]

ARCHIVE_EXTENSIONS = ("zip", "rar")
MIDI_EXTENSIONS = ("mid", "midi")

DEDUPE_MODES = ("skip", "quarantine")


def apply_overrides(data: Dict[str, Any]) -> None:
    """Merge scalar/list tuning overrides into module globals (best-effort)."""
    if not isinstance(data, dict):
        return

    module_globals = globals()
    for key, value in data.items():
        if key not in module_globals or not key.isupper():
            continue
        current = module_globals[key]
        if isinstance(current, bool) or isinstance(value, bool):
            continue
        if isinstance(current, (int, float)) and isinstance(value, (int, float)):
            module_globals[key] = value
        elif isinstance(current, str) and isinstance(value, str) and value.strip():
            module_globals[key] = value.strip()
        elif isinstance(current, list) and isinstance(value, list):
            module_globals[key] = [str(v) for v in value]
