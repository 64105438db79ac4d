import sys
import zipfile
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from samplesort.archives import (
    CorruptedArchiveError,
    expand,
    flatten_single_folders,
    is_archive,
    scratch_dir_for,
)


def make_zip(path: Path, members: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def test_is_archive_and_scratch_dir(tmp_path: Path):
    assert is_archive(Path("Pack.ZIP"))
    assert is_archive(Path("pack.rar"))
    assert not is_archive(Path("kick.wav"))
    assert scratch_dir_for(Path("/in/Vintage Drums.zip"), tmp_path) == tmp_path / "_temp_Vintage Drums"


def test_traversal_entries_never_leave_scratch(tmp_path: Path):
    archive = make_zip(
        tmp_path / "in" / "evil.zip",
        {
            "../escape.wav": b"bad",
            "sub/../../escape2.wav": b"bad",
            "/rooted.wav": b"ok",
            "kicks/kick.wav": b"ok",
        },
    )
    scratch = tmp_path / "dest" / "_temp_evil"
    rejected = []
    files = expand(archive, scratch, on_rejected=rejected.append)

    assert not (tmp_path / "dest" / "escape.wav").exists()
    assert not (tmp_path / "dest" / "escape2.wav").exists()
    assert sorted(rejected) == ["../escape.wav", "sub/../../escape2.wav"]
    names = sorted(p.relative_to(scratch).as_posix() for p in files)
    assert names == ["kicks/kick.wav", "rooted.wav"]
    for f in files:
        assert scratch.resolve() in f.resolve().parents


def test_flattens_multiple_single_folder_levels(tmp_path: Path):
    archive = make_zip(
        tmp_path / "pack.zip",
        {
            "Wrapper/Inner/Deep/one.wav": b"1",
            "Wrapper/Inner/Deep/two.wav": b"2",
            "__MACOSX/Wrapper/._one.wav": b"junk",
        },
    )
    scratch = tmp_path / "scratch"
    files = expand(archive, scratch)
    assert sorted(p.name for p in files) == ["one.wav", "two.wav"]
    assert all(p.parent == scratch for p in files)


def test_flatten_with_junk_at_both_levels(tmp_path: Path):
    archive = make_zip(
        tmp_path / "pack.zip",
        {
            "__MACOSX/x": b"junk",
            "Pack/__MACOSX/y": b"junk",
            "Pack/.DS_Store": b"junk",
            "Pack/a.wav": b"a",
        },
    )
    scratch = tmp_path / "scratch"
    files = expand(archive, scratch)
    assert [p.relative_to(scratch).as_posix() for p in files] == ["a.wav"]
    assert not (scratch / "Pack").exists()


def test_flatten_stops_at_multiple_entries(tmp_path: Path):
    root = tmp_path / "scratch"
    (root / "Pack" / "Kicks").mkdir(parents=True)
    (root / "Pack" / "Snares").mkdir(parents=True)
    (root / "Pack" / "Kicks" / "k.wav").write_bytes(b"k")
    (root / "Pack" / "Snares" / "s.wav").write_bytes(b"s")
    flatten_single_folders(root)
    assert sorted(p.name for p in root.iterdir()) == ["Kicks", "Snares"]


def test_flatten_handles_child_with_wrapper_name(tmp_path: Path):
    root = tmp_path / "scratch"
    (root / "Same" / "Same").mkdir(parents=True)
    (root / "Same" / "Same" / "x.wav").write_bytes(b"x")
    flatten_single_folders(root)
    assert [p.name for p in root.iterdir()] == ["x.wav"]


def test_keep_archive_false_deletes_archive(tmp_path: Path):
    archive = make_zip(tmp_path / "pack.zip", {"a.wav": b"a"})
    expand(archive, tmp_path / "scratch", keep_archive=False)
    assert not archive.exists()


def test_corrupt_zip_raises(tmp_path: Path):
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"definitely not a zip")
    with pytest.raises(CorruptedArchiveError):
        expand(bad, tmp_path / "scratch")
