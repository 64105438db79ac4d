"""Naming and collision rules for destination paths.

Everything in here is a plain function over paths and names. The only
filesystem side effects live in :func:`move_or_copy`, :func:`remove_tree`
and the read-only walks/existence checks.

Directory roles
---------------
Two kinds of folder names are treated as placement markers rather than
"real" destination folders:

* tempo folders, ``"<N> BPM"`` (two or three digits)
* key folders, ``"<Note>[#|b] Maj|Min"``

:func:`classify_dir_role` is the single predicate for both.
"""

from __future__ import annotations

import errno
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Set

from . import tuning

TEMPO_DIR_RE = re.compile(r"^(\d{2,3})\s*bpm$", re.IGNORECASE)
KEY_DIR_RE = re.compile(r"^[A-G](?:#|b)?\s+(?:Maj|Min)$", re.IGNORECASE)

_ILLEGAL_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_JUNK_NAMES = {"thumbs.db", "desktop.ini"}


@dataclass(frozen=True)
class DirRole:
    """Role of a directory name: ``none``, ``tempo`` or ``key``."""

    kind: str = "none"
    tempo: Optional[int] = None
    key: Optional[str] = None

    @property
    def is_tempo(self) -> bool:
        return self.kind == "tempo"

    @property
    def is_key(self) -> bool:
        return self.kind == "key"


NO_ROLE = DirRole()


def classify_dir_role(name: str) -> DirRole:
    """Return the placement role encoded in a directory name."""
    text = str(name or "").strip()
    m = TEMPO_DIR_RE.match(text)
    if m:
        return DirRole(kind="tempo", tempo=int(m.group(1)))
    if KEY_DIR_RE.match(text):
        return DirRole(kind="key", key=text)
    return NO_ROLE


def tempo_dir_name(bpm: int) -> str:
    return f"{int(bpm)} BPM"


def sanitize_folder_name(name: object) -> str:
    """Strip characters that are illegal in folder names on common filesystems."""
    return _ILLEGAL_CHARS_RE.sub("", str(name if name is not None else "")).strip()


def is_hidden_name(name: str) -> bool:
    """Dotfiles, AppleDouble files and OS junk (``__MACOSX``, ``Thumbs.db``...)."""
    if not name:
        return False
    if name.startswith("."):
        return True
    if name == "__MACOSX":
        return True
    return name.lower() in _JUNK_NAMES


def normalize_extension(ext: object) -> str:
    return str(ext).strip().lower().lstrip(".")


def file_extension(path: Path) -> str:
    return normalize_extension(Path(path).suffix)


def unique_dest_path(directory: Path, filename: str, reserved: Optional[Set[Path]] = None) -> Path:
    """Return ``directory/filename`` or the first free ``name (N).ext`` with N >= 2.

    A name is taken when it exists on disk or is in ``reserved``. When a
    ``reserved`` set is given the chosen path is added to it, so planned
    (dry-run) destinations collide with each other the way real files do.
    """
    directory = Path(directory)

    def taken(path: Path) -> bool:
        return path.exists() or (reserved is not None and path in reserved)

    candidate = directory / filename
    stem = Path(filename).stem
    suffix = Path(filename).suffix
    i = 2
    while taken(candidate):
        candidate = directory / f"{stem} ({i}){suffix}"
        i += 1
    if reserved is not None:
        reserved.add(candidate)
    return candidate


def move_or_copy(src: Path, dest: Path, move: bool = True) -> None:
    """Move (rename) or copy ``src`` to ``dest``.

    A rename across filesystems (``EXDEV``) is retried as copy + unlink;
    every other error propagates to the caller.
    """
    if not move:
        shutil.copy2(str(src), str(dest))
        return
    try:
        os.rename(str(src), str(dest))
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        shutil.copy2(str(src), str(dest))
        os.unlink(str(src))


def walk_files(directory: Path, skip_hidden: bool = True) -> Iterator[Path]:
    """Lazily yield files under ``directory`` in a deterministic order.

    Unreadable directories are skipped. Each call starts a fresh walk.
    """
    directory = Path(directory)
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return
    for entry in entries:
        if skip_hidden and is_hidden_name(entry.name):
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                yield from walk_files(Path(entry.path), skip_hidden=skip_hidden)
            elif entry.is_file():
                yield Path(entry.path)
        except OSError:
            continue


def remove_tree(directory: Path) -> None:
    """Recursively delete ``directory`` if it exists."""
    if Path(directory).exists():
        shutil.rmtree(str(directory), ignore_errors=True)


# ---------------------------------------------------------------------------
# Tempo/key folder lookups on the existing layout
def parent_tempo_value(file_path: Path) -> Optional[int]:
    """Tempo value of the file's immediate parent folder, if it is a tempo folder."""
    return classify_dir_role(Path(file_path).parent.name).tempo


def is_inside_tempo_folder(file_path: Path) -> bool:
    """True when any ancestor directory is a tempo folder."""
    for parent in Path(file_path).parents:
        if classify_dir_role(parent.name).is_tempo:
            return True
    return False


def first_non_tempo_ancestor(file_path: Path) -> Path:
    """Walk up from the file's directory past every tempo folder."""
    directory = Path(file_path).parent
    while classify_dir_role(directory.name).is_tempo:
        if directory.parent == directory:
            break
        directory = directory.parent
    return directory


def is_duplicates_path(file_path: Path) -> bool:
    return tuning.DUPLICATES_FOLDER_NAME in Path(file_path).parent.parts
