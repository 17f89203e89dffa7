"""
Index session: one complete run of the engine.

Global preconditions are checked before anything is read from or written to
the target:
1. The root directory exists and can be listed
2. Exclusion patterns compile
3. Source and target do not overlap
4. The previous state file parses and was hashed with the same algorithm

Then the tree is scanned, compared, optionally synchronized and the new
snapshot persisted. Paths that exist but could not be read keep their
previous records, so they are neither reported as deleted nor removed
from the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from hashindex.core.errors import ConfigurationError
from hashindex.core.folder.comparer import carry_forward, compare_snapshots, summarize_changes
from hashindex.core.folder.scanner import PatternMatcher, ScanOptions, TreeScanner
from hashindex.core.folder.sync import FolderSync, SyncOptions, validate_roots
from hashindex.core.models import Change, ChangeKind, RunResult, Snapshot
from hashindex.services.hashing import DEFAULT_CHUNK_SIZE, HashAlgorithm
from hashindex.services.state_store import load_snapshot, save_snapshot, snapshot_hex_width


@dataclass
class RunOptions:
    """Options for one indexing run."""
    state_file: Path
    root: Path
    exclude_patterns: list[str] = field(default_factory=list)
    algorithm: HashAlgorithm = HashAlgorithm.SHA256
    write_state: bool = True
    follow_symlinks: bool = False
    target: Optional[Path] = None
    max_workers: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    sync_options: SyncOptions = field(default_factory=SyncOptions)


class IndexSession:
    """
    Runs scan, compare, sync and persist for one root directory.

    Usage:
        session = IndexSession(RunOptions(state_file=Path("state.txt"), root=Path(".")))
        result = session.run()
    """

    def __init__(
        self,
        options: RunOptions,
        on_changes: Optional[Callable[[list[Change]], None]] = None
    ):
        self.options = options
        self._on_changes = on_changes

    def run(self) -> RunResult:
        """
        Execute the run.

        Raises:
            ConfigurationError: Invalid or unreadable root, patterns, overlap or algorithm
            StateFileError: Corrupt previous state
        """
        options = self.options

        root = Path(options.root)
        if not root.is_dir():
            raise ConfigurationError(f"Not a directory: {root}")
        root = root.resolve()

        matcher = PatternMatcher(options.exclude_patterns)

        target: Optional[Path] = None
        if options.target is not None:
            root, target = validate_roots(root, options.target)

        previous = load_snapshot(options.state_file)
        self._check_algorithm(previous)

        scanner = TreeScanner(
            ScanOptions(
                exclude_patterns=list(options.exclude_patterns),
                follow_symlinks=options.follow_symlinks,
                algorithm=options.algorithm,
                chunk_size=options.chunk_size,
                max_workers=options.max_workers,
            ),
            matcher=matcher,
        )
        try:
            scan = scanner.scan(root)
        except OSError as e:
            raise ConfigurationError(f"Cannot read directory {root}: {e.strerror or e}") from e

        current = carry_forward(previous, scan)
        changes = compare_snapshots(previous, current)
        counts = summarize_changes(changes)
        logging.info(
            f"IndexSession - {counts[ChangeKind.ADDED]} added, {counts[ChangeKind.UPDATED]} updated, "
            f"{counts[ChangeKind.DELETED]} deleted"
        )

        if self._on_changes is not None:
            self._on_changes(changes)

        result = RunResult(changes=changes, scan=scan)

        if target is not None:
            result.sync = FolderSync(options.sync_options).apply(changes, root, target)

        # Saved whatever the sync outcome
        if options.write_state:
            save_snapshot(options.state_file, current)
            result.state_written = True

        return result

    def _check_algorithm(self, previous: Snapshot) -> None:
        """Refuse to compare against a snapshot hashed with another algorithm."""
        width = snapshot_hex_width(previous)
        expected = self.options.algorithm.hex_width
        if width is not None and width != expected:
            raise ConfigurationError(
                f"State file {self.options.state_file} holds {width}-digit hashes but "
                f"{self.options.algorithm.value} produces {expected}; "
                f"use the algorithm the state was written with"
            )
