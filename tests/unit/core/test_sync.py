from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from hashindex.core.errors import ConfigurationError
from hashindex.core.folder.sync import FolderSync, SyncOptions, validate_roots
from hashindex.core.models import Change, ChangeKind


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _roots(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "source"
    target = tmp_path / "target"
    source.mkdir()
    target.mkdir()
    return source, target


def test_added_and_updated_files_are_copied(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "new.txt", "new")
    _write(source / "sub" / "changed.txt", "after")
    _write(target / "sub" / "changed.txt", "before")

    result = FolderSync().apply(
        [Change(ChangeKind.ADDED, "new.txt"), Change(ChangeKind.UPDATED, "sub/changed.txt")],
        source,
        target,
    )

    assert result.success
    assert result.items_copied == 2
    assert result.bytes_copied == len("new") + len("after")
    assert (target / "new.txt").read_text(encoding="utf-8") == "new"
    assert (target / "sub" / "changed.txt").read_text(encoding="utf-8") == "after"
    assert sorted(p.name for p in (target / "sub").iterdir()) == ["changed.txt"]


def test_copy_preserves_mode_and_mtime(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    script = _write(source / "run.sh", "#!/bin/sh\n")
    script.chmod(0o755)
    os.utime(script, (1_600_000_000, 1_600_000_500))

    FolderSync().apply([Change(ChangeKind.ADDED, "run.sh")], source, target)

    copied = (target / "run.sh").stat()
    assert stat.S_IMODE(copied.st_mode) == 0o755
    assert int(copied.st_mtime) == 1_600_000_500


def test_copy_without_permission_preservation_uses_default_mode(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "a.txt", "a").chmod(0o700)

    FolderSync(SyncOptions(preserve_permissions=False)).apply(
        [Change(ChangeKind.ADDED, "a.txt")], source, target
    )

    assert stat.S_IMODE((target / "a.txt").stat().st_mode) == 0o644


def test_deletion_removes_file_and_prunes_empty_parents(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(target / "a" / "b" / "gone.txt", "x")
    _write(target / "a" / "keep.txt", "k")

    result = FolderSync().apply([Change(ChangeKind.DELETED, "a/b/gone.txt")], source, target)

    assert result.success
    assert result.items_deleted == 1
    assert not (target / "a" / "b").exists()
    assert (target / "a" / "keep.txt").exists()


def test_deleting_missing_file_is_not_an_error(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)

    result = FolderSync().apply([Change(ChangeKind.DELETED, "never-there.txt")], source, target)

    assert result.success
    assert result.items_skipped == 1
    assert result.items_deleted == 0


def test_failures_are_collected_and_other_files_continue(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "b.txt", "b")

    result = FolderSync().apply(
        [Change(ChangeKind.ADDED, "a.txt"), Change(ChangeKind.ADDED, "b.txt")],
        source,
        target,
    )

    assert not result.success
    assert result.items_failed == 1
    assert result.items_copied == 1
    assert [path for path, _ in result.errors] == ["a.txt"]
    assert (target / "b.txt").exists()
    assert not list(target.glob(".*.part"))


def test_stop_on_error_halts_at_first_failure(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "b.txt", "b")

    result = FolderSync(SyncOptions(stop_on_error=True)).apply(
        [Change(ChangeKind.ADDED, "a.txt"), Change(ChangeKind.ADDED, "b.txt")],
        source,
        target,
    )

    assert not result.success
    assert result.items_processed == 1
    assert not (target / "b.txt").exists()


def test_directory_at_destination_is_a_per_file_failure(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "clash", "file now")
    (target / "clash").mkdir()

    result = FolderSync().apply([Change(ChangeKind.ADDED, "clash")], source, target)

    assert result.items_failed == 1
    assert (target / "clash").is_dir()


def test_file_replaced_by_directory_between_runs(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(source / "node" / "child.txt", "c")
    _write(target / "node", "old file")

    result = FolderSync().apply(
        [Change(ChangeKind.DELETED, "node"), Change(ChangeKind.ADDED, "node/child.txt")],
        source,
        target,
    )

    assert result.success
    assert (target / "node" / "child.txt").read_text(encoding="utf-8") == "c"


def test_path_escaping_target_is_refused(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    _write(tmp_path / "victim.txt", "keep me")

    result = FolderSync().apply([Change(ChangeKind.DELETED, "../victim.txt")], source, target)

    assert result.items_failed == 1
    assert (tmp_path / "victim.txt").exists()


def test_parallel_sync_copies_everything(tmp_path: Path) -> None:
    source, target = _roots(tmp_path)
    changes = []
    for i in range(20):
        _write(source / f"d{i % 3}" / f"{i}.txt", str(i))
        changes.append(Change(ChangeKind.ADDED, f"d{i % 3}/{i}.txt"))

    result = FolderSync(SyncOptions(max_workers=4)).apply(changes, source, target)

    assert result.success
    assert result.items_copied == 20
    assert (target / "d2" / "5.txt").read_text(encoding="utf-8") == "5"


def test_missing_target_is_created(tmp_path: Path) -> None:
    source = tmp_path / "source"
    _write(source / "a.txt", "a")
    target = tmp_path / "backup" / "mirror"

    result = FolderSync().apply([Change(ChangeKind.ADDED, "a.txt")], source, target)

    assert result.success
    assert (target / "a.txt").exists()


@pytest.mark.parametrize("target_name", ["source", "source/inner"])
def test_overlapping_roots_are_rejected(tmp_path: Path, target_name: str) -> None:
    source = tmp_path / "source"
    source.mkdir()

    with pytest.raises(ConfigurationError):
        validate_roots(source, tmp_path / target_name)


def test_source_inside_target_is_rejected(tmp_path: Path) -> None:
    target = tmp_path / "target"
    source = target / "source"
    source.mkdir(parents=True)

    with pytest.raises(ConfigurationError):
        FolderSync().apply([], source, target)


def test_target_that_is_a_file_is_rejected(tmp_path: Path) -> None:
    source = tmp_path / "source"
    source.mkdir()
    target = _write(tmp_path / "target", "file")

    with pytest.raises(ConfigurationError):
        validate_roots(source, target)
