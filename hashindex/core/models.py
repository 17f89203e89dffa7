"""
Core data models for the indexing engine.

This module defines the data structures passed between components:
- File records and snapshots
- Classified changes
- Scan, sync and run results

Models carry no I/O. Snapshots and records are immutable once built.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Optional


# =============================================================================
# Enumerations
# =============================================================================

class ChangeKind(Enum):
    """Classification of a path between two snapshots."""
    ADDED = "A"      # Present only in the current snapshot
    UPDATED = "U"    # Present in both, content hash differs
    DELETED = "D"    # Present only in the previous snapshot

    @property
    def is_copy(self) -> bool:
        return self in (ChangeKind.ADDED, ChangeKind.UPDATED)


# =============================================================================
# Snapshot Models
# =============================================================================

@dataclass(frozen=True)
class FileRecord:
    """
    Indexed state of one regular file.

    ``path`` is relative to the indexed root and always uses ``/``.
    """
    path: str
    size: int
    modified: int   # Epoch seconds
    hash: str       # Lowercase hex digest


class Snapshot(Mapping[str, FileRecord]):
    """
    Read-only mapping of relative path to ``FileRecord``.

    A snapshot is either produced by a scan (the current state) or loaded
    from the state file (the previous state).
    """

    __slots__ = ("_records",)

    def __init__(self, records: Optional[Mapping[str, FileRecord]] = None):
        self._records = MappingProxyType(dict(records or {}))

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()

    @classmethod
    def from_records(cls, records: Iterable[FileRecord]) -> Snapshot:
        """Build a snapshot, rejecting duplicate paths."""
        collected: dict[str, FileRecord] = {}
        for record in records:
            if record.path in collected:
                raise ValueError(f"Duplicate path in snapshot: {record.path}")
            collected[record.path] = record
        return cls(collected)

    def __getitem__(self, path: str) -> FileRecord:
        return self._records[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"Snapshot({len(self._records)} records)"

    def paths(self) -> list[str]:
        """Relative paths in sorted order."""
        return sorted(self._records)

    def iter_sorted(self) -> Iterator[FileRecord]:
        """Iterate over records sorted by path."""
        for path in self.paths():
            yield self._records[path]

    @property
    def total_size(self) -> int:
        return sum(record.size for record in self._records.values())


@dataclass(frozen=True)
class Change:
    """
    A classified difference for one path.

    ``size`` and ``hash`` describe the current record and are ``None``
    for deletions.
    """
    kind: ChangeKind
    path: str
    size: Optional[int] = None
    hash: Optional[str] = None

    @classmethod
    def added(cls, record: FileRecord) -> Change:
        return cls(ChangeKind.ADDED, record.path, record.size, record.hash)

    @classmethod
    def updated(cls, record: FileRecord) -> Change:
        return cls(ChangeKind.UPDATED, record.path, record.size, record.hash)

    @classmethod
    def deleted(cls, path: str) -> Change:
        return cls(ChangeKind.DELETED, path)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.path}"


# =============================================================================
# Result Models
# =============================================================================

@dataclass
class ScanResult:
    """Result of scanning a directory tree."""
    snapshot: Snapshot
    errors: list[tuple[str, str]] = field(default_factory=list)  # (path, error)
    # Files and directories that exist but could not be read. Their previous
    # records (and everything beneath a directory) must be kept as they were.
    failed_paths: list[str] = field(default_factory=list)
    excluded_count: int = 0
    skipped_count: int = 0
    scan_time: float = 0.0

    @property
    def file_count(self) -> int:
        return len(self.snapshot)

    @property
    def total_size(self) -> int:
        return self.snapshot.total_size

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def is_unread(self, path: str) -> bool:
        """True if ``path`` is, or lies beneath, a path that failed to read."""
        return any(
            path == failed or path.startswith(failed + "/")
            for failed in self.failed_paths
        )


@dataclass
class SyncResult:
    """Result of applying changes to a target directory."""
    success: bool
    items_processed: int
    items_copied: int
    items_deleted: int
    items_skipped: int
    items_failed: int
    bytes_copied: int
    errors: list[tuple[str, str]] = field(default_factory=list)  # (path, error)
    duration: float = 0.0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


@dataclass
class RunResult:
    """Outcome of one complete indexing run."""
    changes: list[Change]
    scan: ScanResult
    sync: Optional[SyncResult] = None
    state_written: bool = False

    @property
    def success(self) -> bool:
        return self.sync is None or self.sync.success

    @property
    def has_changes(self) -> bool:
        return len(self.changes) > 0
