import json
import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from samplesort import tuning
from samplesort.cli import main
from samplesort.config_service import ConfigService, default_config


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the AppData/XDG config root at a temp dir and run from there."""
    home = tmp_path / "config-home"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    monkeypatch.chdir(tmp_path)
    return home


# ============================================================================
# CONFIG SERVICE
# ============================================================================

def test_portable_mode_default_appdata(tmp_path: Path, isolated_config_home: Path):
    service = ConfigService(app_dir=tmp_path / "app")
    assert not service.detect_mode()
    assert service.get_config_dir() == isolated_config_home / "SampleSort"


def test_portable_flag_wins(tmp_path: Path):
    app = tmp_path / "app"
    app.mkdir()
    (app / "portable.flag").touch()
    service = ConfigService(app_dir=app)
    assert service.detect_mode(cli_portable=False)
    assert service.get_config_path() == app / "config.json"


def test_cli_portable_flag(tmp_path: Path):
    service = ConfigService(app_dir=tmp_path)
    assert service.get_config_dir(cli_portable=True) == tmp_path


def test_missing_config_gives_defaults(tmp_path: Path):
    cfg = ConfigService(app_dir=tmp_path).load_config()
    assert cfg == default_config()


def test_save_and_load_round_trip(tmp_path: Path):
    service = ConfigService(app_dir=tmp_path)
    cfg = default_config()
    cfg["samples_dir"] = "/music/in"
    cfg["dedupe_mode"] = "quarantine"
    service.save_config(cfg, cli_portable=True)
    loaded = service.load_config(cli_portable=True)
    assert loaded["samples_dir"] == "/music/in"
    assert loaded["dedupe_mode"] == "quarantine"


def test_invalid_config_falls_back_to_defaults(tmp_path: Path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"dedupe_mode": "shred", "samples_dir": "/x"}), encoding="utf-8")
    cfg = ConfigService(app_dir=tmp_path).load_config(path=path)
    assert cfg["samples_dir"] == ""
    assert "Falling back to defaults" in capsys.readouterr().out


def test_save_rejects_invalid_config(tmp_path: Path):
    with pytest.raises(ValueError):
        ConfigService(app_dir=tmp_path).save_config({"move_files": "yes"}, cli_portable=True)


def test_tuning_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(tuning, "YIELD_EVERY", tuning.YIELD_EVERY)
    monkeypatch.setattr(tuning, "FALLBACK_CATEGORY", tuning.FALLBACK_CATEGORY)
    (tmp_path / "tuning.json").write_text(
        json.dumps({"YIELD_EVERY": 10, "FALLBACK_CATEGORY": "Unsorted", "NOT_A_CONSTANT": 1}),
        encoding="utf-8",
    )
    ConfigService(app_dir=tmp_path).apply_tuning(cli_portable=True)
    assert tuning.YIELD_EVERY == 10
    assert tuning.FALLBACK_CATEGORY == "Unsorted"
    assert not hasattr(tuning, "NOT_A_CONSTANT")


# ============================================================================
# CLI
# ============================================================================

@pytest.fixture
def library(tmp_path: Path) -> Path:
    samples = tmp_path / "samples"
    (samples / "Pack").mkdir(parents=True)
    (samples / "Pack" / "kick_808.wav").write_text("k", encoding="utf-8")
    (samples / "Pack" / "loop 100bpm.wav").write_text("l", encoding="utf-8")
    return samples


def run_cli(argv, capsys):
    code = main(argv)
    return code, json.loads(capsys.readouterr().out)


def test_organize_dry_run(library: Path, tmp_path: Path, capsys):
    dest = tmp_path / "dest"
    code, report = run_cli(["organize", str(library), str(dest), "--dry-run", "--quiet"], capsys)
    assert code == 0
    assert report["dry_run"] is True
    assert len(report["moved_files"]) == 2
    assert not dest.exists()


def test_organize_copy_with_report(library: Path, tmp_path: Path, capsys):
    dest = tmp_path / "dest"
    report_path = tmp_path / "out" / "report.json"
    code, report = run_cli(
        ["organize", str(library), str(dest), "--copy", "--quiet", "--report", str(report_path)], capsys
    )
    assert code == 0
    assert report["files_copied"] == 2
    assert (dest / "Drums" / "Kicks" / "kick_808.wav").exists()
    assert (library / "Pack" / "kick_808.wav").exists()
    assert json.loads(report_path.read_text(encoding="utf-8"))["run_id"] == report["run_id"]


def test_organize_with_tempo_key(library: Path, tmp_path: Path, capsys):
    dest = tmp_path / "dest"
    # Keep the kick (no tempo in its name) away from the decoder.
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"max_decode_mb": 1e-9}), encoding="utf-8")
    code, report = run_cli(
        ["organize", str(library), str(dest), "--tempo-key", "--config", str(cfg), "--quiet"], capsys
    )
    assert code == 0
    assert report["tempo_key"]["from_name"] == 1
    assert report["tempo_key"]["failed"] == 1
    assert (dest / "Melodic" / "Loops" / "100 BPM" / "loop 100bpm.wav").exists()


def test_organize_missing_samples_exits_nonzero(tmp_path: Path, capsys):
    code, report = run_cli(["organize", str(tmp_path / "nope"), str(tmp_path / "dest"), "-q"], capsys)
    assert code == 1
    assert report["error"]


def test_tempo_key_command(tmp_path: Path, capsys):
    root = tmp_path / "organized"
    (root / "Loops").mkdir(parents=True)
    (root / "Loops" / "Am_chords 85bpm.wav").write_text("x", encoding="utf-8")
    code, report = run_cli(["tempo-key", str(root), "--key", "--bpm", "-q"], capsys)
    assert code == 0
    assert report["processed"] == 1
    assert (root / "Loops" / "85 BPM" / "A Min" / "Am_chords 85bpm.wav").exists()


def test_init_config(tmp_path: Path, capsys):
    target = tmp_path / "cfg" / "config.json"
    assert main(["init-config", "--config", str(target)]) == 0
    capsys.readouterr()
    assert json.loads(target.read_text(encoding="utf-8"))["dedupe_algo"] == "sha256"
    assert main(["init-config", "--config", str(target)]) == 1
    assert main(["init-config", "--config", str(target), "--force"]) == 0
