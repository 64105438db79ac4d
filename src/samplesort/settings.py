from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from . import tuning
from .dedupe import is_supported_algorithm
from .path_policy import normalize_extension


class ConfigurationError(ValueError):
    """Invalid run configuration; detected before any file is touched."""


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class OrganizerSettings:
    samples_dir: str = ""
    dest_dir: str = ""
    extensions: Tuple[str, ...] = ()
    check_parent_folder: bool = False
    check_length: bool = False
    length_threshold: float = 0.0
    keep_pack_subfolder: bool = False
    sort_midi_to_folder: bool = False
    midi_folder_name: str = tuning.DEFAULT_MIDI_FOLDER_NAME
    move_files: bool = True
    dry_run: bool = False
    keep_archives: bool = True
    dedupe_enabled: bool = False
    dedupe_algo: str = tuning.DEFAULT_HASH_ALGORITHM
    dedupe_mode: str = "skip"
    dedupe_prefer_dest: bool = True
    sort_by_bpm: bool = False
    bpm_threshold: float = 0.0
    bpm_debug: bool = False
    sort_by_key: bool = False
    key_from_parent: bool = True
    key_note_only_fallback: bool = False
    max_decode_mb: float = tuning.MAX_DECODE_MB
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "OrganizerSettings":
        exts = config.get("extensions")
        extensions: List[str] = []
        if isinstance(exts, (list, tuple)):
            for e in exts:
                norm = normalize_extension(e)
                if norm and norm not in extensions:
                    extensions.append(norm)
        midi_name = str(config.get("midi_folder_name") or "").strip() or tuning.DEFAULT_MIDI_FOLDER_NAME
        return cls(
            samples_dir=str(config.get("samples_dir") or ""),
            dest_dir=str(config.get("dest_dir") or ""),
            extensions=tuple(extensions),
            check_parent_folder=bool(config.get("check_parent_folder", False)),
            check_length=bool(config.get("check_length", False)),
            length_threshold=_as_float(config.get("length_threshold"), 0.0),
            keep_pack_subfolder=bool(config.get("keep_pack_subfolder", False)),
            sort_midi_to_folder=bool(config.get("sort_midi_to_folder", False)),
            midi_folder_name=midi_name,
            move_files=bool(config.get("move_files", True)),
            dry_run=bool(config.get("dry_run", False)),
            keep_archives=bool(config.get("keep_archives", True)),
            dedupe_enabled=bool(config.get("dedupe_enabled", False)),
            dedupe_algo=str(config.get("dedupe_algo") or tuning.DEFAULT_HASH_ALGORITHM).strip().lower(),
            dedupe_mode=str(config.get("dedupe_mode") or "skip").strip().lower(),
            dedupe_prefer_dest=config.get("dedupe_prefer_dest", True) is not False,
            sort_by_bpm=bool(config.get("sort_by_bpm", False)),
            bpm_threshold=_as_float(config.get("bpm_threshold"), 0.0),
            bpm_debug=bool(config.get("bpm_debug", False)),
            sort_by_key=bool(config.get("sort_by_key", False)),
            key_from_parent=bool(config.get("key_from_parent", True)),
            key_note_only_fallback=bool(config.get("key_note_only_fallback", False)),
            max_decode_mb=_as_float(config.get("max_decode_mb"), float(tuning.MAX_DECODE_MB)),
            raw=dict(config),
        )

    @property
    def samples_root(self) -> Optional[Path]:
        return Path(self.samples_dir).expanduser() if self.samples_dir else None

    @property
    def dest_root(self) -> Path:
        return Path(self.dest_dir).expanduser()

    def accepts(self, path: Path) -> bool:
        """Empty allow-list accepts every extension."""
        if not self.extensions:
            return True
        return normalize_extension(Path(path).suffix) in self.extensions

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for problems that must abort a run."""
        if not self.samples_dir:
            raise ConfigurationError("Samples directory is empty.")
        root = self.samples_root
        if root is None or not root.is_dir():
            raise ConfigurationError(f"Samples directory {self.samples_dir} does not exist")
        if not self.dest_dir:
            raise ConfigurationError("Destination directory is empty.")
        if self.dest_root.exists() and not self.dest_root.is_dir():
            raise ConfigurationError(f"Destination {self.dest_dir} is not a directory")
        if self.dedupe_enabled:
            if self.dedupe_mode not in tuning.DEDUPE_MODES:
                raise ConfigurationError(f"Unknown duplicate policy: {self.dedupe_mode}")
            if not is_supported_algorithm(self.dedupe_algo):
                raise ConfigurationError(f"Unsupported hash algorithm: {self.dedupe_algo}")
