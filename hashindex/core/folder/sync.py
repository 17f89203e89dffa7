"""
Folder synchronization engine.

Applies a classified change list onto a target directory so that it mirrors
the source:
- Added/updated files are copied with permission bits and timestamps
- Deleted files are removed (a missing target file is fine)
- Per-file failures are collected instead of aborting the run
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from hashindex.core.errors import ConfigurationError
from hashindex.core.models import Change, ChangeKind, SyncResult


@dataclass
class SyncOptions:
    """Options for synchronization."""
    # Metadata
    preserve_permissions: bool = True
    preserve_timestamps: bool = True

    # Failure policy: stop at the first failing file, or collect and continue
    stop_on_error: bool = False

    # Remove directories left empty by deletions
    prune_empty_dirs: bool = True

    # Performance
    max_workers: int = 1
    buffer_size: int = 1024 * 1024


@dataclass
class _ItemOutcome:
    """Result of one change applied to the target."""
    change: Change
    bytes_copied: int = 0
    skipped: bool = False
    error: Optional[str] = None


def validate_roots(source_root: Path | str, target_root: Path | str) -> tuple[Path, Path]:
    """
    Resolve and validate a source/target pair.

    Returns:
        The resolved (source, target) paths

    Raises:
        ConfigurationError: If the directories are the same or nested
    """
    source = Path(source_root).resolve()
    target = Path(target_root).resolve()

    if source == target:
        raise ConfigurationError(f"Target cannot be the same as source: {source}")
    if target.is_relative_to(source):
        raise ConfigurationError(f"Target {target} is inside source {source}")
    if source.is_relative_to(target):
        raise ConfigurationError(f"Source {source} is inside target {target}")

    if target.exists() and not target.is_dir():
        raise ConfigurationError(f"Target is not a directory: {target}")

    return source, target


class FolderSync:
    """
    One-way mirror of classified changes from a source to a target.

    Deletions are applied before copies so that a path can change from a
    file to a directory (or back) between runs.
    """

    def __init__(self, options: Optional[SyncOptions] = None):
        self.options = options or SyncOptions()

    def apply(
        self,
        changes: Iterable[Change],
        source_root: Path | str,
        target_root: Path | str
    ) -> SyncResult:
        """
        Apply changes to the target directory.

        Args:
            changes: Classified changes, as produced by ``compare_snapshots``
            source_root: Directory the changes were computed for
            target_root: Directory to update

        Returns:
            SyncResult with per-file errors

        Raises:
            ConfigurationError: If source and target overlap
        """
        start_time = time.time()

        source, target = validate_roots(source_root, target_root)

        changes = list(changes)
        deletions = [c for c in changes if c.kind is ChangeKind.DELETED]
        copies = [c for c in changes if c.kind.is_copy]

        if changes:
            target.mkdir(parents=True, exist_ok=True)

        outcomes: list[_ItemOutcome] = []
        for batch in (deletions, copies):
            outcomes.extend(self._run_batch(batch, source, target))
            if self.options.stop_on_error and any(o.error for o in outcomes):
                break

        result = SyncResult(
            success=True,
            items_processed=len(outcomes),
            items_copied=0,
            items_deleted=0,
            items_skipped=0,
            items_failed=0,
            bytes_copied=0,
        )

        for outcome in outcomes:
            if outcome.error is not None:
                result.items_failed += 1
                result.errors.append((outcome.change.path, outcome.error))
            elif outcome.skipped:
                result.items_skipped += 1
            elif outcome.change.kind is ChangeKind.DELETED:
                result.items_deleted += 1
            else:
                result.items_copied += 1
                result.bytes_copied += outcome.bytes_copied

        result.errors.sort()
        result.success = result.items_failed == 0 and result.items_processed == len(changes)
        result.duration = time.time() - start_time

        logging.info(
            f"FolderSync - {result.items_copied} copied, {result.items_deleted} deleted, "
            f"{result.items_skipped} skipped, {result.items_failed} failed"
        )
        return result

    def _run_batch(
        self,
        batch: list[Change],
        source: Path,
        target: Path
    ) -> list[_ItemOutcome]:
        """Apply one phase of changes, sequentially or on a thread pool."""
        if self.options.max_workers > 1 and not self.options.stop_on_error and len(batch) > 1:
            with ThreadPoolExecutor(max_workers=self.options.max_workers) as executor:
                return list(executor.map(lambda c: self._apply_one(c, source, target), batch))

        outcomes: list[_ItemOutcome] = []
        for change in batch:
            outcome = self._apply_one(change, source, target)
            outcomes.append(outcome)
            if outcome.error is not None and self.options.stop_on_error:
                logging.error(f"FolderSync - Stopping after failure on {change.path}")
                break
        return outcomes

    def _apply_one(self, change: Change, source: Path, target: Path) -> _ItemOutcome:
        """Apply one change, turning failures into an outcome."""
        dest = target / change.path
        if not (dest.parent.resolve() / dest.name).is_relative_to(target):
            message = "Path escapes the target directory"
            logging.error(f"FolderSync - {change.path}: {message}")
            return _ItemOutcome(change, error=message)

        try:
            if change.kind is ChangeKind.DELETED:
                removed = self._delete_path(dest, target)
                return _ItemOutcome(change, skipped=not removed)

            copied = self._copy_file(source / change.path, dest)
            return _ItemOutcome(change, bytes_copied=copied)

        except OSError as e:
            message = f"{e.strerror or e}"
            logging.error(f"FolderSync - Failed to sync {change.kind.value}: {change.path}: {message}")
            return _ItemOutcome(change, error=message)

    def _copy_file(self, source: Path, dest: Path) -> int:
        """
        Copy a file from source to destination.

        The content is written to a temporary file next to the destination
        and moved into place, so a read-only destination can be replaced.

        Returns bytes copied.
        """
        # Ensure parent directory exists
        dest.parent.mkdir(parents=True, exist_ok=True)

        previous_mode: Optional[int] = None
        if os.path.lexists(dest):
            dest_stat = dest.lstat()
            if stat.S_ISDIR(dest_stat.st_mode):
                raise IsADirectoryError(errno.EISDIR, "A directory exists at the destination", str(dest))
            if stat.S_ISREG(dest_stat.st_mode):
                previous_mode = stat.S_IMODE(dest_stat.st_mode)

        bytes_copied = 0
        fd, temp_path = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".part")

        try:
            with open(source, 'rb') as src, os.fdopen(fd, 'wb') as dst:
                while chunk := src.read(self.options.buffer_size):
                    dst.write(chunk)
                    bytes_copied += len(chunk)

            self._copy_metadata(source, Path(temp_path), previous_mode)
            os.replace(temp_path, dest)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        return bytes_copied

    def _copy_metadata(self, source: Path, dest: Path, previous_mode: Optional[int]) -> None:
        """Copy permission bits and timestamps; failures are only logged."""
        try:
            if self.options.preserve_permissions:
                shutil.copymode(source, dest)
            else:
                # Temporary files start as 0600
                os.chmod(dest, previous_mode if previous_mode is not None else 0o644)
        except OSError as e:
            logging.warning(f"FolderSync - Could not set permissions on {dest}: {e}")

        if self.options.preserve_timestamps:
            try:
                st = source.stat()
                os.utime(dest, ns=(st.st_atime_ns, st.st_mtime_ns))
            except OSError as e:
                logging.warning(f"FolderSync - Could not copy timestamps to {dest}: {e}")

    def _delete_path(self, path: Path, target: Path) -> bool:
        """
        Delete a file from the target.

        Returns False when there was nothing to delete.
        """
        if not os.path.lexists(path):
            logging.debug(f"FolderSync - Already absent: {path}")
            return False

        if path.is_dir() and not path.is_symlink():
            logging.warning(f"FolderSync - Not deleting directory in target: {path}")
            return False

        path.unlink()

        if self.options.prune_empty_dirs:
            self._prune_empty_parents(path.parent, target)

        return True

    @staticmethod
    def _prune_empty_parents(directory: Path, target: Path) -> None:
        """Remove empty directories from ``directory`` up to the target root."""
        while directory != target and directory.is_relative_to(target):
            try:
                directory.rmdir()
            except OSError:
                # Not empty, or already gone
                return
            logging.debug(f"FolderSync - Removed empty directory: {directory}")
            directory = directory.parent
