"""
Directory scanner for snapshot indexing.

Provides configurable directory traversal with:
- Glob-based exclusion with directory pruning
- Symlink handling with cycle protection
- Parallel content hashing
- Error resilience (per-file problems are reported, not raised)
"""

from __future__ import annotations

import logging
import os
import re
import stat
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from hashindex.core.errors import PatternError
from hashindex.core.models import FileRecord, ScanResult, Snapshot
from hashindex.services.hashing import DEFAULT_CHUNK_SIZE, HashAlgorithm, HashingService


_WILDCARDS = frozenset('*?[')


@dataclass
class ScanOptions:
    """Options for directory scanning."""
    exclude_patterns: list[str] = field(default_factory=list)
    follow_symlinks: bool = False
    algorithm: HashAlgorithm = HashAlgorithm.SHA256
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_workers: Optional[int] = None  # None: one per CPU

    @property
    def worker_count(self) -> int:
        if self.max_workers is not None and self.max_workers > 0:
            return self.max_workers
        return os.cpu_count() or 1


class PatternMatcher:
    """
    Glob-style exclusion matcher.

    Patterns are anchored at the scan root and matched case-sensitively
    against ``/``-separated relative paths.

    Supports:
    - * (matches any characters except /)
    - ** (matches any number of path segments)
    - ? (matches a single character except /)
    - [abc], [!abc] (character classes)
    - dir/** (the path itself and everything under it)
    - dir/ (like dir/**, but only when "dir" is a directory)
    - literal patterns without wildcards, which match wherever their
      segments appear in the path, along with everything beneath
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self._patterns: list[str] = []
        # (regex, dir_only)
        self._compiled: list[tuple[re.Pattern, bool]] = []

        for pattern in patterns:
            self._compiled.append(self._compile_pattern(pattern))
            self._patterns.append(pattern)

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def _compile_pattern(self, pattern: str) -> tuple[re.Pattern, bool]:
        """Compile one exclusion pattern to a regex and a directory-only flag."""
        if not pattern:
            raise PatternError(pattern, "empty pattern")

        body = pattern
        while body.startswith('./'):
            body = body[2:]

        # "dir/" names only directories called "dir", anchored at the root
        dir_only = body.endswith('/')
        body = body.strip('/')
        if not body:
            raise PatternError(pattern, "pattern does not name a path")

        if dir_only:
            regex = self._pattern_to_regex(body, pattern)
        elif _WILDCARDS.isdisjoint(body):
            regex = '(?:.*/)?' + re.escape(body) + '(?:/.*)?'
        else:
            regex = self._pattern_to_regex(body, pattern)

        try:
            return re.compile(regex, re.DOTALL), dir_only
        except re.error as e:
            raise PatternError(pattern, str(e)) from e

    def _pattern_to_regex(self, pattern: str, original: str) -> str:
        """Convert a glob pattern to a regex body."""
        result: list[str] = []
        length = len(pattern)
        i = 0

        while i < length:
            c = pattern[i]

            if c == '*':
                if pattern.startswith('**', i):
                    at_segment_start = i == 0 or pattern[i - 1] == '/'
                    after = i + 2
                    if at_segment_start and pattern.startswith('/', after):
                        # "**/" matches zero or more leading segments
                        result.append('(?:.*/)?')
                        i = after + 1
                        continue
                    if at_segment_start and after == length and result:
                        # Trailing "/**" also matches the directory itself
                        result.pop()
                        result.append('(?:/.*)?')
                        i = after
                        continue
                    result.append('.*')
                    i = after
                    continue
                result.append('[^/]*')
            elif c == '?':
                result.append('[^/]')
            elif c == '[':
                j = i + 1
                negate = j < length and pattern[j] in '!^'
                if negate:
                    j += 1
                if j < length and pattern[j] == ']':
                    j += 1  # leading "]" is literal
                while j < length and pattern[j] != ']':
                    j += 1
                if j >= length:
                    raise PatternError(original, "unterminated character class")
                members = pattern[i + 1 + (1 if negate else 0):j]
                members = members.replace('\\', '\\\\').replace('[', '\\[').replace(']', '\\]')
                if negate:
                    result.append('[^/' + members + ']')
                else:
                    result.append('[' + members + ']')
                i = j
            else:
                result.append(re.escape(c))

            i += 1

        return ''.join(result)

    def matches(self, path: str, is_dir: bool = False) -> bool:
        """
        Check if a relative path is excluded.

        ``is_dir`` tells directory-only patterns (``dir/``) whether the path
        itself is a directory. Anything beneath a path they match is a
        directory entry and is excluded either way.

        Returns True if any pattern matches.
        """
        if os.sep != '/':
            path = path.replace(os.sep, '/')
        path = path.lstrip('/')

        for regex, dir_only in self._compiled:
            if not dir_only:
                if regex.fullmatch(path):
                    return True
                continue

            if is_dir and regex.fullmatch(path):
                return True
            parts = path.split('/')
            if any(regex.fullmatch('/'.join(parts[:i])) for i in range(1, len(parts))):
                return True

        return False


@dataclass
class _WalkState:
    """Mutable counters for a single scan."""
    errors: list[tuple[str, str]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    excluded: int = 0
    skipped: int = 0

    def report(self, rel_path: str, message: str) -> None:
        self.errors.append((rel_path, message))
        logging.warning(f"TreeScanner - {rel_path}: {message}")

    def fail(self, rel_path: str, message: str) -> None:
        """Report a path that exists but could not be read."""
        self.report(rel_path, message)
        self.failed.append(rel_path)


class TreeScanner:
    """
    Scans a directory tree into a ``Snapshot``.

    Traversal runs on the calling thread; hashing is spread over a bounded
    thread pool. Only the calling thread builds the resulting snapshot.
    """

    def __init__(
        self,
        options: Optional[ScanOptions] = None,
        matcher: Optional[PatternMatcher] = None
    ):
        self.options = options or ScanOptions()
        self.matcher = matcher if matcher is not None else PatternMatcher(self.options.exclude_patterns)
        self.hashing = HashingService(self.options.algorithm, self.options.chunk_size)

    def scan(self, root_path: Path | str) -> ScanResult:
        """
        Scan a directory tree.

        Args:
            root_path: Root directory to scan

        Returns:
            ScanResult with the snapshot and any per-file errors

        Raises:
            FileNotFoundError: If the root does not exist
            NotADirectoryError: If the root is not a directory
            OSError: If the root cannot be listed
        """
        start_time = time.time()

        root_path = Path(root_path)

        if not root_path.exists():
            logging.error(f"TreeScanner - Root path not found: {root_path}")
            raise FileNotFoundError(f"Directory not found: {root_path}")

        if not root_path.is_dir():
            logging.error(f"TreeScanner - Root path is not a directory: {root_path}")
            raise NotADirectoryError(f"Not a directory: {root_path}")

        root_path = root_path.resolve()
        state = _WalkState()

        candidates = self._collect_files(root_path, state)
        records = self._hash_files(candidates, state)

        state.errors.sort()
        state.failed.sort()
        logging.debug(
            f"TreeScanner - Indexed {len(records)} files under {root_path} "
            f"({state.excluded} excluded, {state.skipped} skipped, {len(state.errors)} errors)"
        )

        return ScanResult(
            snapshot=Snapshot.from_records(records),
            errors=state.errors,
            failed_paths=state.failed,
            excluded_count=state.excluded,
            skipped_count=state.skipped,
            scan_time=time.time() - start_time,
        )

    def _collect_files(self, root_path: Path, state: _WalkState) -> list[tuple[str, Path]]:
        """Walk the tree depth-first and return (relative path, path) pairs."""
        files: list[tuple[str, Path]] = []

        root_stat = root_path.stat()
        stack: list[tuple[Path, str, frozenset]] = [
            (root_path, "", frozenset({(root_stat.st_dev, root_stat.st_ino)}))
        ]

        while stack:
            directory, rel_dir, ancestors = stack.pop()

            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as e:
                if not rel_dir:
                    logging.error(f"TreeScanner - Cannot read root directory {directory}: {e}")
                    raise
                state.fail(rel_dir, f"Cannot read directory: {e.strerror or e}")
                continue

            subdirs: list[tuple[Path, str, frozenset]] = []

            for entry in entries:
                rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name

                try:
                    entry_is_dir = entry.is_dir(follow_symlinks=self.options.follow_symlinks)
                except OSError:
                    # Reported by the stat below if the entry is not excluded
                    entry_is_dir = False

                if self.matcher.matches(rel_path, is_dir=entry_is_dir):
                    state.excluded += 1
                    continue

                try:
                    is_link = entry.is_symlink()
                    if is_link and not self.options.follow_symlinks:
                        state.skipped += 1
                        logging.debug(f"TreeScanner - Skipping symlink: {rel_path}")
                        continue
                    entry_stat = entry.stat(follow_symlinks=True)
                except FileNotFoundError:
                    if entry.is_symlink():
                        state.report(rel_path, "Broken symlink")
                    else:
                        state.report(rel_path, "Vanished during scan")
                    continue
                except OSError as e:
                    state.fail(rel_path, f"Cannot stat: {e.strerror or e}")
                    continue

                if not self._is_representable(rel_path, state):
                    continue

                if stat.S_ISDIR(entry_stat.st_mode):
                    identity = (entry_stat.st_dev, entry_stat.st_ino)
                    if identity in ancestors:
                        state.skipped += 1
                        logging.warning(f"TreeScanner - Symlink cycle, not descending: {rel_path}")
                        continue
                    subdirs.append((Path(entry.path), rel_path, ancestors | {identity}))
                elif stat.S_ISREG(entry_stat.st_mode):
                    files.append((rel_path, Path(entry.path)))
                else:
                    state.skipped += 1
                    logging.debug(f"TreeScanner - Skipping special file: {rel_path}")

            # Reverse so the stack pops subdirectories in sorted order
            stack.extend(reversed(subdirs))

        return files

    @staticmethod
    def _is_representable(rel_path: str, state: _WalkState) -> bool:
        """Check that a path can be stored in the line-based state file."""
        if '\n' in rel_path or '\r' in rel_path:
            state.report(rel_path, "Path contains a line break and cannot be indexed")
            return False
        try:
            rel_path.encode('utf-8')
        except UnicodeEncodeError:
            state.report(rel_path, "Path is not valid UTF-8 and cannot be indexed")
            return False
        return True

    def _hash_files(
        self,
        candidates: list[tuple[str, Path]],
        state: _WalkState
    ) -> list[FileRecord]:
        """Hash files in parallel, keeping a bounded number in flight."""
        records: list[FileRecord] = []
        if not candidates:
            return records

        max_workers = self.options.worker_count
        max_in_flight = max_workers * 4

        def collect(done: Iterable[Future]) -> None:
            for future in done:
                rel_path = in_flight.pop(future)
                try:
                    records.append(future.result())
                except FileNotFoundError:
                    state.report(rel_path, "Vanished during scan")
                except OSError as e:
                    state.fail(rel_path, f"Cannot read file: {e.strerror or e}")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            in_flight: dict[Future, str] = {}

            for rel_path, path in candidates:
                # Apply backpressure
                while len(in_flight) >= max_in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    collect(done)

                in_flight[executor.submit(self._index_file, rel_path, path)] = rel_path

            # Drain remaining futures
            done, _ = wait(in_flight)
            collect(done)

        return records

    def _index_file(self, rel_path: str, path: Path) -> FileRecord:
        """Stat and hash one file. Runs on a worker thread."""
        file_stat = path.stat()
        if not stat.S_ISREG(file_stat.st_mode):
            raise OSError(f"Not a regular file anymore: {path}")

        result = self.hashing.hash_file(path)

        return FileRecord(
            path=rel_path,
            size=result.file_size,
            modified=file_stat.st_mtime_ns // 1_000_000_000,
            hash=result.hash_hex,
        )
