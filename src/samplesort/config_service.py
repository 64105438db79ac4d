"""Configuration management for SampleSort.

This module finds, loads and saves the JSON files that drive a run:
``config.json`` (folders, categories and switches) and an optional
``tuning.json`` whose upper-case keys override :mod:`samplesort.tuning`
constants. Both are validated with ``jsonschema`` against the schemas
bundled in ``samplesort/schemas``.

Portable mode is controlled via a ``portable.flag`` file located in the
application directory or by passing ``--portable`` to the CLI. The flag
file takes precedence over the command line.

Example usage::

    from samplesort.config_service import ConfigService

    config_service = ConfigService(app_dir=Path.cwd())
    cfg = config_service.load_config()
    cfg["samples_dir"] = "C:/Samples/Downloads"
    config_service.save_config(cfg)

"""

from __future__ import annotations

import copy
import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from . import tuning

APP_NAME = "SampleSort"
SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

DEFAULT_CONFIG: Dict[str, Any] = {
    "samples_dir": "",
    "dest_dir": "",
    "extensions": list(tuning.DEFAULT_EXTENSIONS),
    "main_categories": [
        {
            "name": "Drums",
            "categories": [
                {"name": "Kicks", "keywords": ["kick", "bd"]},
                {"name": "Snares", "keywords": ["snare", "snr"]},
                {"name": "Claps", "keywords": ["clap"]},
                {"name": "Hi-Hats", "keywords": ["hihat", "hi hat", "hat"]},
                {"name": "Percussion", "keywords": ["perc", "shaker", "conga", "bongo"]},
                {"name": "808s", "keywords": ["808"]},
            ],
        },
        {
            "name": "Melodic",
            "categories": [
                {"name": "Loops", "keywords": ["loop"]},
                {"name": "Vocals", "keywords": ["vocal", "vox"]},
                {"name": "FX", "keywords": ["fx", "riser", "impact", "sweep"]},
            ],
        },
    ],
    "check_parent_folder": True,
    "check_length": False,
    "length_threshold": 10,
    "keep_pack_subfolder": False,
    "sort_midi_to_folder": True,
    "midi_folder_name": tuning.DEFAULT_MIDI_FOLDER_NAME,
    "move_files": True,
    "dry_run": False,
    "keep_archives": True,
    "dedupe_enabled": False,
    "dedupe_algo": tuning.DEFAULT_HASH_ALGORITHM,
    "dedupe_mode": "skip",
    "dedupe_prefer_dest": True,
    "sort_by_bpm": False,
    "bpm_threshold": 0,
    "bpm_debug": False,
    "sort_by_key": False,
    "key_from_parent": True,
    "key_note_only_fallback": False,
    "max_decode_mb": tuning.MAX_DECODE_MB,
}


def default_config() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG)


def _get_appdata_root(app_name: str = APP_NAME) -> Path:
    """Return the platform-specific base directory for config files."""
    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / app_name
        return Path.home() / f"AppData/Roaming/{app_name}"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name
    return Path.home() / ".config" / app_name


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(data: Any, file_path: Path) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2)


def _validate_json(data: Any, schema_path: Path) -> None:
    """Validate ``data`` against the schema at ``schema_path``; raise ValueError."""
    schema = _load_json(schema_path)
    if not schema:
        return
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc.message}")


@dataclass
class ConfigService:
    """Resolve and manage SampleSort configuration."""

    app_dir: Path
    portable_flag_filename: str = "portable.flag"
    config_filename: str = "config.json"
    tuning_filename: str = "tuning.json"
    schema_dir: Path = SCHEMA_DIR
    _cached_mode: Optional[bool] = field(default=None, init=False, repr=False)

    def _portable_flag_exists(self) -> bool:
        return (Path(self.app_dir) / self.portable_flag_filename).exists()

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """Return ``True`` if portable mode should be used.

        A ``portable.flag`` file in the application directory always forces
        portable mode; otherwise ``cli_portable`` decides. The result is
        cached for subsequent calls.
        """
        if self._cached_mode is None:
            if self._portable_flag_exists():
                self._cached_mode = True
            else:
                self._cached_mode = bool(cli_portable)
        return self._cached_mode

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        if self.detect_mode(cli_portable=cli_portable):
            return Path(self.app_dir)
        return _get_appdata_root()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_filename

    def get_tuning_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.tuning_filename

    def get_schema_path(self, schema_name: str) -> Path:
        return Path(self.schema_dir) / schema_name

    def load_config(self, cli_portable: bool = False, path: Optional[Path] = None) -> Dict[str, Any]:
        """Load ``config.json`` (or ``path``) merged over the defaults.

        A missing file yields the defaults. An unreadable or invalid file
        prints a warning and falls back to the defaults.
        """
        cfg_path = Path(path) if path is not None else self.get_config_path(cli_portable)
        cfg = default_config()
        try:
            data = _load_json(cfg_path)
        except (OSError, json.JSONDecodeError) as exc:
            print(f"Warning: could not read {cfg_path}: {exc}. Falling back to defaults.")
            return cfg
        if data is None:
            return cfg
        try:
            _validate_json(data, self.get_schema_path("config.schema.json"))
        except ValueError as exc:
            print(f"Warning: {exc}. Falling back to defaults.")
            return cfg
        cfg.update(data)
        return cfg

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False, path: Optional[Path] = None) -> Path:
        """Validate and write ``config``; return the path written."""
        _validate_json(config, self.get_schema_path("config.schema.json"))
        out = Path(path) if path is not None else self.get_config_path(cli_portable)
        _save_json(config, out)
        return out

    def load_tuning(self, cli_portable: bool = False) -> Dict[str, Any]:
        """Load tuning overrides; an invalid file is ignored with a warning."""
        tuning_path = self.get_tuning_path(cli_portable)
        try:
            data = _load_json(tuning_path) or {}
        except (OSError, json.JSONDecodeError) as exc:
            print(f"Warning: could not read {tuning_path}: {exc}. Ignoring tuning overrides.")
            return {}
        try:
            _validate_json(data, self.get_schema_path("tuning.schema.json"))
        except ValueError as exc:
            print(f"Warning: {exc}. Ignoring tuning overrides.")
            return {}
        return data

    def apply_tuning(self, cli_portable: bool = False) -> Dict[str, Any]:
        data = self.load_tuning(cli_portable)
        if data:
            tuning.apply_overrides(data)
        return data
