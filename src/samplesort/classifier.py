"""Keyword classification and placement of single files.

:func:`classify` computes where a file belongs (relative to the
destination root) without touching the filesystem; :func:`place` performs
the move/copy. Splitting the two keeps dry-run and real runs on the same
code path up to the final mutation.

Precedence:

1. the file name is matched against the rules (first rule wins),
2. then the parent folder name, when ``check_parent_folder`` is set,
3. otherwise the file lands in ``Miscellaneous``.

MIDI files with ``sort_midi_to_folder`` bypass categories entirely and go
to ``<MIDI folder>[/<pack>]`` at the destination root.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Set

from . import tuning
from .category_rules import CategoryRule, CompiledRules
from .path_policy import (
    file_extension,
    is_hidden_name,
    move_or_copy,
    sanitize_folder_name,
    unique_dest_path,
)
from .run_log import RunLog
from .settings import OrganizerSettings

DurationFn = Callable[[Path], Optional[float]]

_ARCHIVE_SUFFIXES = tuple(f".{ext}" for ext in tuning.ARCHIVE_EXTENSIONS)


@dataclass
class PendingFile:
    source_path: Path
    target_relative_path: str
    is_midi: bool = False
    pack_label: Optional[str] = None
    used_parent_folder_match: bool = False
    category: str = tuning.FALLBACK_CATEGORY
    parent_folder: str = ""


@dataclass(frozen=True)
class MovedRecord:
    src: Path
    dest: Path

    def to_dict(self) -> dict:
        return {"src": str(self.src), "dest": str(self.dest)}


def _format_threshold(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def length_suffix_segment(target_rel: str, threshold: float) -> Optional[str]:
    """Return the ``"<cat> - Over N seconds"`` segment, or None if already present."""
    base = PurePosixPath(target_rel).name
    suffix = f" - Over {_format_threshold(threshold)} seconds"
    if base.endswith(suffix):
        return None
    return f"{base}{suffix}"


def pack_label_from_samples(file_path: Path, samples_root: Optional[Path]) -> Optional[str]:
    """Pack (and optional collection) label from the file's place under the samples root."""
    if samples_root is None:
        return None
    try:
        rel = Path(file_path).resolve().relative_to(Path(samples_root).resolve())
    except ValueError:
        return None
    # Folders only: a file sitting directly in the root has no pack.
    segments = [s for s in rel.parent.parts if s]
    if not segments:
        return None
    pack = sanitize_folder_name(segments[0])
    collection = sanitize_folder_name(segments[1]) if len(segments) >= 2 else None
    if collection:
        return f"{pack} ({collection})"
    return pack or None


def pack_label_from_temp(file_path: Path, dest_root: Path) -> Optional[str]:
    """Pack label from a ``_temp_<archive>`` scratch folder directly under ``dest_root``."""
    try:
        rel = Path(file_path).resolve().relative_to(Path(dest_root).resolve())
    except ValueError:
        return None
    if not rel.parts:
        return None
    first = rel.parts[0]
    if not first.startswith(tuning.SCRATCH_PREFIX):
        return None
    name = first[len(tuning.SCRATCH_PREFIX):]
    if name.lower().endswith(_ARCHIVE_SUFFIXES):
        name = name[: name.rfind(".")]
    return sanitize_folder_name(name) or None


def _match(rules: CompiledRules, text: str) -> Optional[CategoryRule]:
    return rules.first_match(text) if text else None


def classify(
    file_path: Path,
    settings: OrganizerSettings,
    rules: CompiledRules,
    log: RunLog,
    duration_fn: Optional[DurationFn] = None,
) -> Optional[PendingFile]:
    """Return the destination-relative target for ``file_path`` or None to skip."""
    file_path = Path(file_path)
    name = file_path.name
    if is_hidden_name(name):
        return None

    ext = file_extension(file_path)
    if not settings.accepts(file_path):
        log.info(f"Skipped {name} (unaccepted extension: .{ext})")
        return None

    is_midi = ext in tuning.MIDI_EXTENSIONS
    parent_folder = file_path.parent.name

    matched = _match(rules, name)
    used_parent = False
    if matched is None and settings.check_parent_folder and parent_folder:
        matched = _match(rules, parent_folder)
        used_parent = matched is not None

    if matched is not None:
        category = matched.category
        target_rel = matched.relative_dir
    else:
        category = tuning.FALLBACK_CATEGORY
        target_rel = tuning.FALLBACK_CATEGORY

    pack_label: Optional[str] = None
    if settings.keep_pack_subfolder:
        pack_label = pack_label_from_samples(file_path, settings.samples_root) or pack_label_from_temp(
            file_path, settings.dest_root
        )

    if settings.sort_midi_to_folder and is_midi:
        midi_root = settings.midi_folder_name.strip() or tuning.DEFAULT_MIDI_FOLDER_NAME
        target = f"{midi_root}/{pack_label}" if pack_label else midi_root
        return PendingFile(
            source_path=file_path,
            target_relative_path=target,
            is_midi=True,
            pack_label=pack_label,
            category=midi_root,
            parent_folder=parent_folder,
        )

    threshold = float(settings.length_threshold or 0.0)
    if settings.check_length and threshold > 0 and math.isfinite(threshold):
        duration = duration_fn(file_path) if duration_fn is not None else None
        if duration is None:
            log.info(f"Could not read duration for {name}")
        elif duration > threshold:
            segment = length_suffix_segment(target_rel, threshold)
            if segment:
                target_rel = f"{target_rel}/{segment}"

    if pack_label:
        target_rel = f"{target_rel}/{pack_label}"

    return PendingFile(
        source_path=file_path,
        target_relative_path=target_rel,
        is_midi=is_midi,
        pack_label=pack_label,
        used_parent_folder_match=used_parent,
        category=category,
        parent_folder=parent_folder,
    )


def target_dir_for(pending: PendingFile, dest_root: Path) -> Path:
    return Path(dest_root).joinpath(*PurePosixPath(pending.target_relative_path).parts)


def place(
    pending: PendingFile,
    settings: OrganizerSettings,
    log: RunLog,
    reserved: Optional[Set[Path]] = None,
) -> Optional[MovedRecord]:
    """Move/copy a classified file; in dry-run only log where it would go.

    ``reserved`` holds the destinations already chosen this run; planned
    paths do not exist on disk, so a dry run relies on it for collisions.
    """
    src = pending.source_path
    name = src.name
    target_dir = target_dir_for(pending, settings.dest_root)
    action = "Moved" if settings.move_files else "Copied"
    extra = f" (parent folder: {pending.parent_folder})" if pending.used_parent_folder_match else ""

    try:
        dest = unique_dest_path(target_dir, name, reserved)
        if settings.dry_run:
            log.success(f"[DRY RUN] {action} {name} → {dest}{extra}")
            return MovedRecord(src=src, dest=dest)
        target_dir.mkdir(parents=True, exist_ok=True)
        move_or_copy(src, dest, settings.move_files)
    except OSError as e:
        log.error(f"Error processing {name}: {e}")
        return None

    log.success(f"{action} {name} → {dest}{extra}")
    return MovedRecord(src=src, dest=dest)
