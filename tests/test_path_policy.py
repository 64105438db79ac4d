import errno
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add the src directory to sys.path so that samplesort can be imported
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from samplesort.path_policy import (
    classify_dir_role,
    first_non_tempo_ancestor,
    is_duplicates_path,
    is_hidden_name,
    is_inside_tempo_folder,
    move_or_copy,
    parent_tempo_value,
    sanitize_folder_name,
    unique_dest_path,
    walk_files,
)


@pytest.mark.parametrize(
    "name,kind,tempo",
    [
        ("120 BPM", "tempo", 120),
        ("95bpm", "tempo", 95),
        ("85 bpm", "tempo", 85),
        ("1200 BPM", "none", None),
        ("Bb Min", "key", None),
        ("C# Maj", "key", None),
        ("Kicks", "none", None),
        ("", "none", None),
    ],
)
def test_classify_dir_role(name, kind, tempo):
    role = classify_dir_role(name)
    assert role.kind == kind
    assert role.tempo == tempo


def test_sanitize_folder_name_strips_illegal_characters():
    assert sanitize_folder_name('  Bad:Name?<> ') == "BadName"
    assert sanitize_folder_name(None) == ""


def test_hidden_names():
    assert is_hidden_name(".DS_Store")
    assert is_hidden_name("__MACOSX")
    assert is_hidden_name("Thumbs.db")
    assert not is_hidden_name("kick.wav")


def test_unique_dest_path_never_returns_existing(tmp_path: Path):
    (tmp_path / "kick.wav").write_text("a", encoding="utf-8")
    first = unique_dest_path(tmp_path, "kick.wav")
    assert first == tmp_path / "kick (2).wav"
    first.write_text("b", encoding="utf-8")
    assert unique_dest_path(tmp_path, "kick.wav") == tmp_path / "kick (3).wav"
    assert unique_dest_path(tmp_path, "snare.wav") == tmp_path / "snare.wav"


def test_unique_dest_path_skips_reserved_names(tmp_path: Path):
    reserved = set()
    first = unique_dest_path(tmp_path, "kick.wav", reserved)
    second = unique_dest_path(tmp_path, "kick.wav", reserved)
    assert first == tmp_path / "kick.wav"
    assert second == tmp_path / "kick (2).wav"
    assert reserved == {first, second}
    assert not first.exists() and not second.exists()


def test_walk_files_is_sorted_and_skips_hidden(tmp_path: Path):
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "z.wav").write_text("z", encoding="utf-8")
    (tmp_path / "a.wav").write_text("a", encoding="utf-8")
    (tmp_path / ".hidden.wav").write_text("h", encoding="utf-8")
    (tmp_path / "__MACOSX").mkdir()
    (tmp_path / "__MACOSX" / "._a.wav").write_text("h", encoding="utf-8")

    names = [p.relative_to(tmp_path).as_posix() for p in walk_files(tmp_path)]
    assert names == ["a.wav", "b/z.wav"]


def test_walk_files_missing_directory_yields_nothing(tmp_path: Path):
    assert list(walk_files(tmp_path / "missing")) == []


def test_move_or_copy_copy_keeps_source(tmp_path: Path):
    src = tmp_path / "a.wav"
    src.write_text("data", encoding="utf-8")
    dest = tmp_path / "b.wav"
    move_or_copy(src, dest, move=False)
    assert src.exists() and dest.read_text(encoding="utf-8") == "data"


def test_move_or_copy_falls_back_across_devices(tmp_path: Path):
    src = tmp_path / "a.wav"
    src.write_text("data", encoding="utf-8")
    dest = tmp_path / "b.wav"
    with patch("samplesort.path_policy.os.rename", side_effect=OSError(errno.EXDEV, "cross-device")):
        move_or_copy(src, dest, move=True)
    assert not src.exists()
    assert dest.read_text(encoding="utf-8") == "data"


def test_move_or_copy_propagates_other_errors(tmp_path: Path):
    src = tmp_path / "a.wav"
    src.write_text("data", encoding="utf-8")
    with patch("samplesort.path_policy.os.rename", side_effect=OSError(errno.EACCES, "denied")):
        with pytest.raises(OSError):
            move_or_copy(src, tmp_path / "b.wav", move=True)
    assert src.exists()


def test_tempo_layout_lookups(tmp_path: Path):
    f = tmp_path / "Loops" / "120 BPM" / "Bb Min" / "loop.wav"
    assert is_inside_tempo_folder(f)
    assert parent_tempo_value(f) is None
    assert parent_tempo_value(tmp_path / "Loops" / "120 BPM" / "loop.wav") == 120
    assert first_non_tempo_ancestor(tmp_path / "Loops" / "120 BPM" / "loop.wav") == tmp_path / "Loops"
    assert not is_inside_tempo_folder(tmp_path / "Loops" / "loop.wav")


def test_is_duplicates_path(tmp_path: Path):
    assert is_duplicates_path(tmp_path / "_Duplicates" / "kick.wav")
    assert not is_duplicates_path(tmp_path / "Drums" / "kick.wav")
