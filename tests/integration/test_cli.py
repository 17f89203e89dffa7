from __future__ import annotations

import json
from pathlib import Path

import pytest

from hashindex import APP_VERSION
from hashindex.main import ExitCode, build_run_options, main, parse_arguments
from hashindex.services.hashing import HashAlgorithm
from hashindex.services.settings import IndexSettings


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "config"))


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_prints_one_line_per_change(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "b.txt", "b")
    _write(root / "a" / "c.txt", "c")
    state_file = tmp_path / "state.txt"

    assert main([str(state_file), str(root)]) == ExitCode.OK

    assert capsys.readouterr().out == "A: a/c.txt\nA: b.txt\n"
    assert state_file.exists()


def test_unchanged_tree_prints_nothing(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    state_file = tmp_path / "state.txt"
    main([str(state_file), str(root)])
    capsys.readouterr()

    assert main([str(state_file), str(root)]) == ExitCode.OK
    assert capsys.readouterr().out == ""


def test_no_write_does_not_create_state(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    state_file = tmp_path / "state.txt"

    assert main([str(state_file), str(root), "--no-write"]) == ExitCode.OK

    assert capsys.readouterr().out == "A: a.txt\n"
    assert not state_file.exists()


def test_exclude_option_is_repeatable(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    _write(root / "b.tmp", "b")
    _write(root / "cache" / "c.bin", "c")

    main([str(tmp_path / "state.txt"), str(root), "-x", "*.tmp", "--exclude", "cache"])

    assert capsys.readouterr().out == "A: a.txt\n"


def test_target_is_synchronized(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    target = tmp_path / "mirror"
    _write(root / "a.txt", "a")

    assert main([str(tmp_path / "state.txt"), str(root), "--target", str(target)]) == ExitCode.OK
    assert (target / "a.txt").read_text(encoding="utf-8") == "a"


def test_overlapping_target_is_fatal(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")

    code = main([str(tmp_path / "state.txt"), str(root), "--target", str(root)])

    captured = capsys.readouterr()
    assert code == ExitCode.FATAL
    assert captured.out == ""
    assert captured.err.startswith("error: ")


def test_missing_directory_is_fatal(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main([str(tmp_path / "state.txt"), str(tmp_path / "absent")])

    assert code == ExitCode.FATAL
    assert "error:" in capsys.readouterr().err


def test_corrupt_state_is_fatal(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    state_file = _write(tmp_path / "state.txt", "garbage\n")

    assert main([str(state_file), str(root)]) == ExitCode.FATAL
    assert "state.txt:1" in capsys.readouterr().err


def test_sync_failure_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    target = tmp_path / "mirror"
    _write(root / "clash", "file")
    (target / "clash").mkdir(parents=True)
    state_file = tmp_path / "state.txt"

    code = main([str(state_file), str(root), "--target", str(target)])

    assert code == ExitCode.SYNC_FAILED
    assert capsys.readouterr().out == "A: clash\n"
    assert state_file.exists()


def test_usage_error_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == ExitCode.USAGE
    assert main(["state.txt", "dir", "--algo", "md5"]) == ExitCode.USAGE


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--version"]) == ExitCode.OK
    assert APP_VERSION in capsys.readouterr().out


def test_settings_file_supplies_defaults(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    _write(root / "skip.log", "s")
    config = _write(tmp_path / "settings.json", json.dumps({
        "exclude_patterns": ["*.log"],
        "algorithm": "xxh3",
    }))
    state_file = tmp_path / "state.txt"

    assert main([str(state_file), str(root), "--config", str(config)]) == ExitCode.OK

    assert capsys.readouterr().out == "A: a.txt\n"
    record_hash = state_file.read_text(encoding="utf-8").strip().rsplit(":", 1)[1]
    assert len(record_hash) == 32


def test_command_line_overrides_settings(tmp_path: Path) -> None:
    args = parse_arguments(["s.txt", "d", "--algo", "sha256", "-x", "b", "-j", "2", "--stop-on-error"])
    settings = IndexSettings(exclude_patterns=["a"], algorithm=HashAlgorithm.XXH3, max_workers=8)

    options = build_run_options(args, settings)

    assert options.algorithm is HashAlgorithm.SHA256
    assert options.exclude_patterns == ["a", "b"]
    assert options.max_workers == 2
    assert options.sync_options.stop_on_error
    assert options.write_state
    assert not options.follow_symlinks


def test_verbose_sets_debug_level() -> None:
    assert parse_arguments(["s.txt", "d", "-v"]).log_level == "DEBUG"
    assert parse_arguments(["s.txt", "d"]).log_level is None


def test_blake3_state_round_trip(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "data"
    _write(root / "a.txt", "a")
    state_file = tmp_path / "state.txt"

    assert main([str(state_file), str(root), "--algo", "blake3"]) == ExitCode.OK
    assert main([str(state_file), str(root), "--algo", "blake3"]) == ExitCode.OK

    assert capsys.readouterr().out == "A: a.txt\n"
    assert len(state_file.read_text(encoding="utf-8").strip().rsplit(":", 1)[1]) == 64
