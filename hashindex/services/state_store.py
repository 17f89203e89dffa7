"""
State file persistence.

The state file holds one record per line:

    relative/path:SIZE:MODIFIED_EPOCH:HEX_HASH

Lines are split from the right, so the three numeric/hex fields never contain
the delimiter and paths may contain ``:``. Records are written sorted by
path. A state file that fails to parse is never treated as empty.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from hashindex.core.errors import StateFileError
from hashindex.core.models import FileRecord, Snapshot


DELIMITER = ':'

_HEX_RE = re.compile(r'[0-9a-fA-F]+')
_INT_RE = re.compile(r'-?[0-9]+')
_UINT_RE = re.compile(r'[0-9]+')


def validate_relative_path(path: str) -> Optional[str]:
    """
    Check that ``path`` is a normalized relative path.

    Returns a description of the problem, or ``None`` if the path is valid.
    """
    if not path:
        return "empty path"
    if '\n' in path or '\r' in path:
        return "path contains a line break"
    if path.startswith('/'):
        return "path is absolute"
    if any(part in ('', '.', '..') for part in path.split('/')):
        return "path is not normalized"
    return None


def format_record(record: FileRecord) -> str:
    """Format one record as a state file line, without the newline."""
    problem = validate_relative_path(record.path)
    if problem:
        raise ValueError(f"Cannot store {record.path!r}: {problem}")
    return DELIMITER.join((record.path, str(record.size), str(record.modified), record.hash))


def parse_record(line: str) -> FileRecord:
    """
    Parse one state file line.

    Raises:
        ValueError: If the line is malformed
    """
    parts = line.rsplit(DELIMITER, 3)
    if len(parts) != 4:
        raise ValueError(f"expected 4 fields, found {len(parts)}")

    path, size, modified, hash_hex = parts

    problem = validate_relative_path(path)
    if problem:
        raise ValueError(problem)
    if not _UINT_RE.fullmatch(size):
        raise ValueError(f"invalid size {size!r}")
    if not _INT_RE.fullmatch(modified):
        raise ValueError(f"invalid modification time {modified!r}")
    if not _HEX_RE.fullmatch(hash_hex):
        raise ValueError(f"invalid hash {hash_hex!r}")

    return FileRecord(
        path=path,
        size=int(size),
        modified=int(modified),
        hash=hash_hex.lower(),
    )


def parse_snapshot(lines: Iterable[str], source: Path | str = "<state>") -> Snapshot:
    """
    Parse state file lines into a snapshot.

    Blank lines are ignored. Any malformed line, duplicate path or mix of
    digest widths fails the whole parse.

    Raises:
        StateFileError: On the first invalid line
    """
    records: dict[str, FileRecord] = {}
    hex_width: Optional[int] = None

    for line_number, line in enumerate(lines, start=1):
        line = line.rstrip('\n')
        if not line.strip():
            continue

        try:
            record = parse_record(line)
        except ValueError as e:
            raise StateFileError(source, str(e), line_number) from e

        if record.path in records:
            raise StateFileError(source, f"duplicate path {record.path!r}", line_number)

        if hex_width is None:
            hex_width = len(record.hash)
        elif len(record.hash) != hex_width:
            raise StateFileError(
                source,
                f"hash width {len(record.hash)} differs from {hex_width} used by earlier records",
                line_number
            )

        records[record.path] = record

    return Snapshot(records)


def load_snapshot(path: Path | str) -> Snapshot:
    """
    Load the previous snapshot.

    Returns an empty snapshot if the state file does not exist.

    Raises:
        StateFileError: If the file exists but cannot be read or parsed
    """
    path = Path(path)

    if not path.exists():
        logging.info(f"StateStore - No state file at {path}, starting from an empty snapshot")
        return Snapshot.empty()

    if not path.is_file():
        raise StateFileError(path, "not a regular file")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            snapshot = parse_snapshot(f, source=path)
    except UnicodeDecodeError as e:
        raise StateFileError(path, f"not valid UTF-8 ({e.reason})") from e
    except OSError as e:
        raise StateFileError(path, f"cannot read: {e.strerror or e}") from e

    logging.debug(f"StateStore - Loaded {len(snapshot)} records from {path}")
    return snapshot


def save_snapshot(path: Path | str, snapshot: Snapshot) -> None:
    """
    Persist a snapshot atomically.

    Parent directories are created as needed. The new content is written to
    a temporary file next to the target and moved into place.
    """
    path = Path(path)
    content = ''.join(format_record(record) + '\n' for record in snapshot.iter_sorted())

    dir_path = path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=dir_path, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
            f.write(content)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise

    logging.debug(f"StateStore - Wrote {len(snapshot)} records to {path}")


def snapshot_hex_width(snapshot: Snapshot) -> Optional[int]:
    """Digest width used by a snapshot, or ``None`` if it is empty."""
    for record in snapshot.values():
        return len(record.hash)
    return None
