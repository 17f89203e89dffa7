"""
Snapshot comparison.

Classifies every path of two snapshots as added, updated, deleted or
unchanged. Only the content hash decides whether a file changed; size and
modification time are carried along but never compared. Paths the scan
could not read keep their previous records instead of being reported as
deleted.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from hashindex.core.models import Change, ChangeKind, ScanResult, Snapshot


def compare_snapshots(previous: Snapshot, current: Snapshot) -> list[Change]:
    """
    Compare the previous snapshot against the current one.

    Args:
        previous: Snapshot loaded from the state file
        current: Snapshot produced by the latest scan

    Returns:
        Changes sorted by path
    """
    changes: list[Change] = []

    for path, record in current.items():
        old = previous.get(path)
        if old is None:
            changes.append(Change.added(record))
        elif old.hash != record.hash:
            changes.append(Change.updated(record))

    for path in previous:
        if path not in current:
            changes.append(Change.deleted(path))

    changes.sort(key=lambda change: change.path)
    return changes


def summarize_changes(changes: Iterable[Change]) -> dict[ChangeKind, int]:
    """Count changes per kind; every kind is present in the result."""
    counts = Counter(change.kind for change in changes)
    return {kind: counts.get(kind, 0) for kind in ChangeKind}


def carry_forward(previous: Snapshot, scan: ScanResult) -> Snapshot:
    """
    Merge previous records for unreadable paths into the scanned snapshot.

    A file or directory that exists but could not be read has no current
    record. Keeping its previous record (and those of everything beneath an
    unreadable directory) stops it from showing up as deleted.

    Args:
        previous: Snapshot loaded from the state file
        scan: Result of the latest scan

    Returns:
        Snapshot to compare and persist
    """
    if not scan.failed_paths:
        return scan.snapshot

    carried = {
        path: record
        for path, record in previous.items()
        if path not in scan.snapshot and scan.is_unread(path)
    }
    if carried:
        logging.info(f"Comparer - Keeping {len(carried)} previous records for unreadable paths")

    return Snapshot({**scan.snapshot, **carried})
