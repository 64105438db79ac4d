"""Content-hash deduplication.

The :class:`DedupeIndex` maps a hex digest to the first path that
produced it. It lives for one run. :meth:`DedupeIndex.claim` is an atomic
insert-if-absent, so first-seen-wins also holds if files are ever hashed
from several threads.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from . import tuning
from .path_policy import move_or_copy, unique_dest_path
from .run_log import RunLog, YieldPoint


def compute_file_hash(file_path: Path, algorithm: str = "sha256") -> str:
    """Stream ``file_path`` through ``hashlib`` and return the hex digest."""
    h = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(tuning.HASH_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def is_supported_algorithm(algorithm: str) -> bool:
    try:
        hashlib.new(algorithm)
    except (ValueError, TypeError):
        return False
    return True


@dataclass
class DedupeIndex:
    _entries: Dict[str, Path] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def claim(self, digest: str, path: Path) -> Optional[Path]:
        """Record ``digest -> path`` unless present; return the earlier path if any."""
        with self._lock:
            existing = self._entries.get(digest)
            if existing is not None:
                return existing
            self._entries[digest] = Path(path)
            return None

    def get(self, digest: str) -> Optional[Path]:
        with self._lock:
            return self._entries.get(digest)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, digest: object) -> bool:
        with self._lock:
            return digest in self._entries


@dataclass
class DedupeResult:
    is_duplicate: bool
    first_seen: Optional[Path] = None
    digest: Optional[str] = None
    # "none" | "skipped" | "quarantined" | "reported" | "failed"
    action: str = "none"
    dest: Optional[Path] = None


@dataclass
class Deduplicator:
    """Classify incoming files as unique or duplicate and apply the policy."""

    dest_root: Path
    log: RunLog
    algorithm: str = "sha256"
    mode: str = "skip"
    move_files: bool = True
    dry_run: bool = False
    index: DedupeIndex = field(default_factory=DedupeIndex)
    reserved: Set[Path] = field(default_factory=set)

    @property
    def quarantine_dir(self) -> Path:
        return Path(self.dest_root) / tuning.DUPLICATES_FOLDER_NAME

    def check(self, file_path: Path) -> DedupeResult:
        file_path = Path(file_path)
        name = file_path.name
        try:
            digest = compute_file_hash(file_path, self.algorithm)
        except OSError as e:
            self.log.error(f"Hashing failed for {name}: {e}")
            return DedupeResult(is_duplicate=False, action="failed")

        first_seen = self.index.claim(digest, file_path)
        if first_seen is None:
            return DedupeResult(is_duplicate=False, digest=digest)

        msg = f"Duplicate detected: {name} (same as {first_seen.name})"
        result = DedupeResult(is_duplicate=True, first_seen=first_seen, digest=digest)
        if self.dry_run:
            self.log.warning(f"[DRY RUN] {msg}")
            result.action = "reported"
        elif self.mode == "quarantine":
            try:
                self.quarantine_dir.mkdir(parents=True, exist_ok=True)
                dest = unique_dest_path(self.quarantine_dir, name, self.reserved)
                move_or_copy(file_path, dest, self.move_files)
            except OSError as e:
                self.log.error(f"Could not quarantine {name}: {e}")
                result.action = "failed"
                return result
            result.action = "quarantined"
            result.dest = dest
            self.log.warning(f"{msg}. Sent to {tuning.DUPLICATES_FOLDER_NAME}.")
        else:
            result.action = "skipped"
            self.log.warning(f"{msg}. Skipped.")
        return result

    def seed_from(self, files: Iterable[Path], yielder: Optional[YieldPoint] = None) -> int:
        """Hash existing destination files into the index (first-seen wins).

        Returns the number of new index entries. Stops early when the
        yield point reports cancellation; the caller must then abort.
        """
        seeded = 0
        for path in files:
            if yielder is not None and yielder.cancelled:
                break
            try:
                digest = compute_file_hash(path, self.algorithm)
            except OSError:
                digest = None
            if digest is not None and self.index.claim(digest, path) is None:
                seeded += 1
            if yielder is not None and yielder.tick():
                break
        return seeded
