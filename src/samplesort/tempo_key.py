"""Tempo (``<N> BPM``) and key (``<Note> Maj|Min``) placement.

This pass runs after an organize run, over the files that run moved, or
over any already-organized tree. Placement depends only on a file's
current path and the supplied value, so no shared index is needed.

Layout produced::

    <base>/<N> BPM/<file>
    <base>/<N> BPM/<Key>/<file>     (tempo + key)
    <base>/<Key>/<file>             (key only)

``<base>`` is the first ancestor that is not a tempo folder (a key folder
directly inside a tempo folder is skipped too), so re-placing a file
replaces its markers instead of nesting new ones.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from . import tuning
from .path_policy import (
    classify_dir_role,
    file_extension,
    first_non_tempo_ancestor,
    is_duplicates_path,
    is_inside_tempo_folder,
    move_or_copy,
    parent_tempo_value,
    sanitize_folder_name,
    tempo_dir_name,
    unique_dest_path,
    walk_files,
)
from .run_log import CancelToken, RunLog, YieldPoint
from .settings import OrganizerSettings

# ---------------------------------------------------------------------------
# Name parsing

_NAME_BPM_RES = (
    re.compile(r"\b(\d{2,3})\s*bpm\b", re.IGNORECASE),
    re.compile(r"(\d{2,3})\s*[-_ ]?\s*bpm", re.IGNORECASE),
)

# An uppercase note may stand alone or take a spelled quality or a bare
# "m" (Am, C#m). A lowercase note needs a spelled quality ("a minor"), so
# words like "am" never read as keys. A bare "M" is not a quality.
_KEY_RE = re.compile(
    r"(?:^|(?<=[\s_\-(\[{]))"
    r"(?:"
    r"(?P<note>[A-G])(?P<acc>[#b♭]?)"
    r"(?:[\s_\-]?(?P<quality>(?i:maj(?:or)?|min(?:or)?)|m))?"
    r"|"
    r"(?P<lnote>[a-g])(?P<lacc>[#b♭]?)"
    r"[\s_\-]?(?P<lquality>(?i:maj(?:or)?|min(?:or)?))"
    r")"
    r"(?=$|[\s_\-)\]}.])"
)


@dataclass(frozen=True)
class KeyInfo:
    note: str
    quality: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.note} {self.quality}" if self.quality else self.note


def bpm_from_name(name: str) -> Optional[int]:
    """Tempo written in a file name (``"Loop 120bpm"``, ``"loop_95_BPM"``)."""
    text = str(name or "")
    for regex in _NAME_BPM_RES:
        m = regex.search(text)
        if m:
            return int(m.group(1))
    return None


def detect_key_from_name(name: str) -> Optional[KeyInfo]:
    """Find the first musical-key token in a file or folder name."""
    if not name:
        return None
    m = _KEY_RE.search(str(name))
    if not m:
        return None
    note = (m.group("note") or m.group("lnote")).upper()
    accidental = m.group("acc") or m.group("lacc") or ""
    if accidental == "♭":
        accidental = "b"
    note += accidental

    raw_quality = m.group("quality") or m.group("lquality") or ""
    quality: Optional[str] = None
    if raw_quality.lower().startswith("maj"):
        quality = "Maj"
    elif raw_quality == "m" or raw_quality.lower().startswith("min"):
        quality = "Min"
    return KeyInfo(note=note, quality=quality)


def key_label_for(info: Optional[KeyInfo], note_only_fallback: bool = False) -> Optional[str]:
    if info is None:
        return None
    if info.quality:
        return info.label
    return info.note if note_only_fallback else None


# ---------------------------------------------------------------------------
# Placement primitives

def _finite_bpm(bpm: Any) -> Optional[int]:
    try:
        value = float(bpm)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    # half-up: 120.5 -> 121, 121.5 -> 122
    rounded = int(math.floor(value + 0.5))
    return rounded if rounded > 0 else None


def current_tempo_placement(file_path: Path) -> Tuple[Optional[int], Optional[str]]:
    """Return ``(tempo, key)`` markers the file currently sits under."""
    parent = Path(file_path).parent
    role = classify_dir_role(parent.name)
    if role.is_tempo:
        return role.tempo, None
    grand_role = classify_dir_role(parent.parent.name)
    if grand_role.is_tempo:
        # Any folder directly inside a tempo folder is that tempo's key level.
        return grand_role.tempo, parent.name
    return None, None


def placement_base_dir(file_path: Path) -> Path:
    """First ancestor that is neither a tempo folder nor a key level inside one."""
    tempo, key = current_tempo_placement(file_path)
    if tempo is not None and key is not None:
        return first_non_tempo_ancestor(Path(file_path).parent)
    return first_non_tempo_ancestor(file_path)


def place_tempo(
    file_path: Path,
    bpm_value: Any,
    key_value: Optional[str] = None,
    dry_run: bool = False,
    reserved: Optional[Set[Path]] = None,
) -> Optional[Path]:
    """Move ``file_path`` into ``<base>/<N> BPM[/<key>]``; return the final path."""
    target_bpm = _finite_bpm(bpm_value)
    if target_bpm is None:
        return None

    file_path = Path(file_path)
    key_folder = sanitize_folder_name(key_value) if key_value else ""
    current_bpm, current_key = current_tempo_placement(file_path)

    if current_bpm == target_bpm and (not key_folder or current_key == key_folder):
        return file_path

    bpm_dir = placement_base_dir(file_path) / tempo_dir_name(target_bpm)
    final_dir = bpm_dir / key_folder if key_folder else bpm_dir

    if dry_run:
        return unique_dest_path(final_dir, file_path.name, reserved)

    final_dir.mkdir(parents=True, exist_ok=True)
    dest = unique_dest_path(final_dir, file_path.name, reserved)
    move_or_copy(file_path, dest, move=True)
    return dest


def place_key(
    file_path: Path,
    key_label: Optional[str],
    dry_run: bool = False,
    reserved: Optional[Set[Path]] = None,
) -> Optional[Path]:
    """Move ``file_path`` into a ``<key>`` folder under its current directory."""
    key_folder = sanitize_folder_name(key_label)
    if not key_folder:
        return None

    file_path = Path(file_path)
    dir_now = file_path.parent
    if dir_now.name == key_folder:
        return file_path

    base_dir = dir_now.parent if classify_dir_role(dir_now.name).is_key else dir_now
    final_dir = base_dir / key_folder

    if dry_run:
        return unique_dest_path(final_dir, file_path.name, reserved)

    final_dir.mkdir(parents=True, exist_ok=True)
    dest = unique_dest_path(final_dir, file_path.name, reserved)
    move_or_copy(file_path, dest, move=True)
    return dest


# ---------------------------------------------------------------------------
# The pass

DurationFn = Callable[[Path], Optional[float]]
TempoFn = Callable[[Path], Optional[float]]

# Either a plain path, or ``(placement_path, content_path)`` when the file
# has only been planned to move (dry-run hand-off from an organize run).
PassInput = Union[Path, str, Tuple[Path, Path]]


@dataclass
class PassItem:
    path: Path
    content: Path

    @classmethod
    def from_input(cls, value: PassInput) -> "PassItem":
        if isinstance(value, tuple):
            place_at, content = value
            return cls(Path(place_at).resolve(), Path(content).resolve())
        p = Path(value).resolve()
        return cls(p, p)


@dataclass
class TempoCandidate:
    item: PassItem
    bpm_value: Optional[float] = None
    source: str = "detect"  # "parent" | "name" | "detect"


@dataclass
class TempoKeyReport:
    processed: int = 0
    from_name: int = 0
    detected: int = 0
    failed: int = 0
    skipped: int = 0
    key_moved: int = 0
    cancelled: bool = False
    placements: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "from_name": self.from_name,
            "detected": self.detected,
            "failed": self.failed,
            "skipped": self.skipped,
            "key_moved": self.key_moved,
            "cancelled": self.cancelled,
            "placements": list(self.placements),
        }


@dataclass
class TempoKeyPass:
    """Resolve tempo/key values for a file set and place the files.

    Tempo placement runs first (nesting the key under the tempo folder
    when ``sort_by_key`` is on); a key-only step then handles the files
    that received no tempo.
    """

    settings: OrganizerSettings
    log: RunLog
    duration_fn: DurationFn
    tempo_fn: TempoFn
    token: Optional[CancelToken] = None
    reserved: Set[Path] = field(default_factory=set)

    def _debug(self, message: str, severity: str = "info") -> None:
        if self.settings.bpm_debug:
            self.log.emit(message, severity)

    def _accept(self, item: PassItem, skip_tempo_placed: bool) -> bool:
        if is_duplicates_path(item.path):
            return False
        if file_extension(item.path) in tuning.MIDI_EXTENSIONS:
            return False
        if not self.settings.accepts(item.path):
            return False
        if skip_tempo_placed and is_inside_tempo_folder(item.path):
            self._debug(f"Skip (already in BPM folder): {item.path.name}")
            return False
        try:
            return item.content.is_file()
        except OSError:
            return False

    def collect(
        self,
        root: Optional[Path],
        limit_to: Optional[Iterable[PassInput]],
        skip_tempo_placed: bool,
    ) -> List[PassItem]:
        if limit_to is not None:
            items = [PassItem.from_input(v) for v in limit_to]
        elif root is not None and Path(root).is_dir():
            items = [PassItem.from_input(p) for p in walk_files(Path(root))]
        else:
            return []
        return [item for item in items if self._accept(item, skip_tempo_placed)]

    def prepare(self, items: List[PassItem], report: TempoKeyReport) -> List[TempoCandidate]:
        """Apply the parent-folder/file-name shortcuts and the duration threshold."""
        threshold = float(self.settings.bpm_threshold or 0.0)
        yielder = YieldPoint(every=tuning.PREPARE_YIELD_EVERY, token=self.token, total=len(items))
        out: List[TempoCandidate] = []
        for item in items:
            parent_bpm = parent_tempo_value(item.path)
            name_bpm = bpm_from_name(item.path.name)
            if parent_bpm is not None:
                out.append(TempoCandidate(item, float(parent_bpm), "parent"))
            elif name_bpm is not None:
                out.append(TempoCandidate(item, float(name_bpm), "name"))
            else:
                duration = self.duration_fn(item.content) if threshold > 0 else None
                if duration is not None and duration < threshold:
                    report.skipped += 1
                    self._debug(f"Skip (below threshold {threshold:g}s): {item.path.name} ({duration:.2f}s)")
                else:
                    out.append(TempoCandidate(item))
            if yielder.tick():
                break
        return out

    def key_for(self, path: Path) -> Optional[str]:
        info = detect_key_from_name(path.name)
        if info is None and self.settings.key_from_parent:
            info = detect_key_from_name(path.parent.name)
        return key_label_for(info, self.settings.key_note_only_fallback)

    def resolve_tempo(self, candidate: TempoCandidate, report: TempoKeyReport) -> Optional[float]:
        name = candidate.item.path.name
        if candidate.bpm_value is not None:
            self._debug(f"Using filename/parent BPM {candidate.bpm_value:g} for {name}")
            report.from_name += 1
            return candidate.bpm_value
        try:
            size = candidate.item.content.stat().st_size
        except OSError as e:
            self._debug(f"Stat failed for {name}: {e}", "warning")
            report.failed += 1
            return None
        cap = float(self.settings.max_decode_mb or 0) * 1024 * 1024
        if cap > 0 and size > cap:
            self.log.warning(
                f"Skipping {name} ({size / (1024 * 1024):.1f} MB). "
                "File too large to decode safely for BPM (consider raising the limit)."
            )
            report.failed += 1
            return None
        bpm = self.tempo_fn(candidate.item.content)
        if bpm is None or not math.isfinite(bpm):
            self._debug(f"BPM not found for {name}", "warning")
            report.failed += 1
            return None
        self._debug(f"Detected BPM: {bpm:.1f} for {name}", "success")
        report.detected += 1
        return bpm

    def run(
        self,
        root: Optional[Path] = None,
        limit_to: Optional[Iterable[PassInput]] = None,
    ) -> TempoKeyReport:
        report = TempoKeyReport()
        self.reserved = set()
        dry_run = self.settings.dry_run
        limit_list = list(limit_to) if limit_to is not None else None
        if limit_list is not None and not limit_list:
            self.log.warning("No new files to process; skipping BPM/Key.")
            return report

        # placement path before the tempo step -> placement path after it
        moved: Dict[Path, Path] = {}

        if self.settings.sort_by_bpm:
            self.log.warning("Starting BPM sort...")
            candidates = self.prepare(self.collect(root, limit_list, skip_tempo_placed=True), report)
            self._debug(f"Prepared {len(candidates)} file(s) for BPM analysis.")
            if not candidates:
                self.log.warning("No files found for BPM analysis.")
            if not self._place_tempos(candidates, report, moved):
                report.cancelled = True
                self.log.warning(f"Cancelled during BPM Sort. Partial results: {report.processed} placed.")
                return report
            prefix = "[DRY RUN] " if dry_run else ""
            self.log.info(
                f"{prefix}BPM sorting complete. Processed: {report.processed} "
                f"(from name: {report.from_name}, detected: {report.detected}, failed: {report.failed})."
            )
        else:
            self.log.info("BPM sort is not enabled.")

        if self.settings.sort_by_key:
            self.log.warning("Applying Key subfolders...")
            if limit_list is not None:
                key_input: Optional[List[PassInput]] = []
                for value in limit_list:
                    item = PassItem.from_input(value)
                    new_path = moved.get(item.path, item.path)
                    key_input.append((new_path, item.content if dry_run else new_path))
                items = self.collect(None, key_input, skip_tempo_placed=False)
            elif dry_run:
                items = [
                    PassItem(moved.get(it.path, it.path), it.content)
                    for it in self.collect(root, None, skip_tempo_placed=False)
                ]
            else:
                items = self.collect(root, None, skip_tempo_placed=False)
            self._apply_keys(items, report)
            self.log.info(f"Key sort complete. {report.key_moved} file(s) updated.")
        return report

    def _place_tempos(
        self,
        candidates: List[TempoCandidate],
        report: TempoKeyReport,
        moved: Dict[Path, Path],
    ) -> bool:
        """Place every candidate; return False when cancelled."""
        yielder = YieldPoint(every=tuning.TEMPO_YIELD_EVERY, token=self.token, total=len(candidates))
        for candidate in candidates:
            if yielder.cancelled:
                return False
            bpm = self.resolve_tempo(candidate, report)
            if bpm is not None:
                path = candidate.item.path
                key_value = self.key_for(path) if self.settings.sort_by_key else None
                try:
                    dest = place_tempo(
                        path, bpm, key_value=key_value, dry_run=self.settings.dry_run, reserved=self.reserved
                    )
                except OSError as e:
                    self.log.error(f"Could not place {path.name}: {e}")
                    dest = None
                if dest is not None:
                    report.processed += 1
                    moved[path] = dest
                    report.placements.append({"src": str(path), "dest": str(dest)})
            yielder.tick()
        return not yielder.cancelled

    def _apply_keys(self, items: List[PassItem], report: TempoKeyReport) -> None:
        dry_run = self.settings.dry_run
        yielder = YieldPoint(every=tuning.KEY_YIELD_EVERY, token=self.token, total=len(items))
        for item in items:
            if yielder.cancelled:
                report.cancelled = True
                self.log.warning("Key sorting cancelled.")
                return
            label = self.key_for(item.path)
            if label and item.path.parent.name != label:
                try:
                    dest = place_key(item.path, label, dry_run=dry_run, reserved=self.reserved)
                except OSError as e:
                    self.log.error(f"Could not place {item.path.name}: {e}")
                    dest = None
                if dest is not None and dest != item.path:
                    report.key_moved += 1
                    report.placements.append({"src": str(item.path), "dest": str(dest)})
                    self._debug(
                        f"{'[DRY RUN] ' if dry_run else ''}Key sort: {item.path.name} → "
                        f"{dest.parent.parent.name}/{label}"
                    )
            yielder.tick()
