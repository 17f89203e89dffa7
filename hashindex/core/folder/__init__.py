"""
Folder indexing components.

Provides:
- Tree scanning with exclusion patterns
- Snapshot comparison
- Change synchronization onto a target directory
"""

from hashindex.core.folder.scanner import (
    PatternMatcher,
    ScanOptions,
    TreeScanner,
)
from hashindex.core.folder.comparer import (
    carry_forward,
    compare_snapshots,
    summarize_changes,
)
from hashindex.core.folder.sync import (
    FolderSync,
    SyncOptions,
    validate_roots,
)

__all__ = [
    # Scanner
    'PatternMatcher',
    'ScanOptions',
    'TreeScanner',
    # Comparer
    'carry_forward',
    'compare_snapshots',
    'summarize_changes',
    # Sync
    'FolderSync',
    'SyncOptions',
    'validate_roots',
]
