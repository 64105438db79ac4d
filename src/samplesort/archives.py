"""Archive expansion into scratch directories.

Supports ``.zip`` (``zipfile``) and ``.rar`` (``rarfile``, which needs an
``unrar``/``bsdtar`` tool on PATH). Archives are expanded into a scratch
directory, single-folder wrappers are hoisted away, and the visible file
list is returned. Removing the scratch directory is the caller's job.
"""

from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Callable, List, Optional

import rarfile

from . import tuning
from .path_policy import file_extension, is_hidden_name, remove_tree, walk_files


class ArchiveExtractionError(Exception):
    """Raised when archive extraction fails."""

    pass


class CorruptedArchiveError(ArchiveExtractionError):
    """Raised when archive is corrupted."""

    pass


def is_archive(file_path: Path) -> bool:
    return file_extension(file_path) in tuning.ARCHIVE_EXTENSIONS


def scratch_dir_for(archive_path: Path, dest_root: Path) -> Path:
    """``<dest>/_temp_<archive stem>``; pack labels are later derived from it."""
    return Path(dest_root) / f"{tuning.SCRATCH_PREFIX}{Path(archive_path).stem}"


def _open_archive(archive_path: Path) -> Any:
    ext = file_extension(archive_path)
    try:
        if ext == "zip":
            return zipfile.ZipFile(archive_path, "r")
        if ext == "rar":
            return rarfile.RarFile(str(archive_path), "r")
    except zipfile.BadZipFile as e:
        raise CorruptedArchiveError(f"Invalid or corrupted ZIP: {e}")
    except rarfile.BadRarFile as e:
        raise CorruptedArchiveError(f"Invalid or corrupted RAR: {e}")
    except rarfile.Error as e:
        raise ArchiveExtractionError(f"RAR extraction failed: {e}")
    raise ArchiveExtractionError(f"Unsupported archive format: {ext}")


def _safe_target(scratch_dir: Path, entry_name: str) -> Optional[Path]:
    """Resolve an entry name inside ``scratch_dir`` or return None if it escapes."""
    rel = entry_name.replace("\\", "/").lstrip("/")
    if not rel or "\x00" in rel:
        return None
    parts = [p for p in PurePosixPath(rel).parts if p not in ("", ".")]
    if not parts:
        return None
    root = scratch_dir.resolve()
    target = root.joinpath(*parts).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        return None
    if target == root:
        return None
    return target


def flatten_single_folders(folder: Path) -> None:
    """Hoist the children of a lone wrapper folder, repeatedly.

    Junk such as ``__MACOSX`` does not count as a sibling. It is dropped
    before hoisting, so a wrapper carrying its own junk folder of the same
    name can still be flattened.
    """
    folder = Path(folder)
    if not folder.is_dir():
        return
    while True:
        entries = list(folder.iterdir())
        items = [p for p in entries if not is_hidden_name(p.name)]
        if len(items) != 1:
            return
        only = items[0]
        if not only.is_dir():
            return
        for junk in entries:
            if junk == only:
                continue
            if junk.is_dir() and not junk.is_symlink():
                remove_tree(junk)
            else:
                junk.unlink()
        for child in list(only.iterdir()):
            destination = folder / child.name
            if destination == only:
                # Child carries the wrapper's own name: park the wrapper first.
                parked = folder / f".{only.name}.flatten"
                os.rename(str(only), str(parked))
                only = parked
                child = parked / child.name
            os.rename(str(child), str(destination))
        shutil.rmtree(str(only), ignore_errors=True)


def expand(
    archive_path: Path,
    scratch_dir: Path,
    keep_archive: bool = True,
    on_rejected: Optional[Callable[[str], None]] = None,
) -> List[Path]:
    """Extract ``archive_path`` into ``scratch_dir`` and return the visible files."""
    archive_path = Path(archive_path)
    scratch_dir = Path(scratch_dir)
    scratch_dir.mkdir(parents=True, exist_ok=True)

    archive = _open_archive(archive_path)
    try:
        for info in archive.infolist():
            if info.is_dir():
                continue
            target = _safe_target(scratch_dir, info.filename)
            if target is None:
                if on_rejected is not None:
                    on_rejected(info.filename)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst, tuning.HASH_CHUNK_SIZE)
    except (zipfile.BadZipFile, rarfile.BadRarFile) as e:
        raise CorruptedArchiveError(f"Corrupted archive {archive_path.name}: {e}")
    except rarfile.Error as e:
        raise ArchiveExtractionError(f"RAR extraction failed: {e}")
    except RuntimeError as e:
        # zipfile raises RuntimeError for encrypted members
        raise ArchiveExtractionError(f"Cannot extract {archive_path.name}: {e}")
    finally:
        archive.close()

    flatten_single_folders(scratch_dir)
    extracted = list(walk_files(scratch_dir))

    if not keep_archive:
        try:
            archive_path.unlink()
        except OSError:
            pass

    return extracted
