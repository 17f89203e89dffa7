"""
Command line entry point.

This module handles:
- Command line argument parsing
- Logging configuration
- Merging settings file defaults with command line options
- Printing the change list
- Exit codes
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, TextIO

from hashindex import APP_NAME, APP_VERSION
from hashindex.core.errors import HashIndexError
from hashindex.core.folder.sync import SyncOptions
from hashindex.core.models import Change, RunResult
from hashindex.core.session import IndexSession, RunOptions
from hashindex.services.hashing import HashAlgorithm
from hashindex.services.settings import LOG_LEVELS, IndexSettings, SettingsManager


# =============================================================================
# Constants
# =============================================================================

class ExitCode(IntEnum):
    """Process exit codes."""
    OK = 0
    FATAL = 1
    USAGE = 2
    SYNC_FAILED = 3
    INTERRUPTED = 130


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class CommandLineArgs:
    """Parsed command line arguments."""
    state_file: Path
    directory: Path
    excludes: list[str] = field(default_factory=list)
    algorithm: Optional[HashAlgorithm] = None
    no_write: bool = False
    follow_symlinks: Optional[bool] = None
    target: Optional[Path] = None
    workers: Optional[int] = None
    sync_workers: Optional[int] = None
    stop_on_error: Optional[bool] = None
    config_file: Optional[Path] = None
    log_level: Optional[str] = None
    log_file: Optional[Path] = None


# =============================================================================
# Logging Setup
# =============================================================================

class LogFormatter(logging.Formatter):
    """Log formatter with colors for terminals."""

    COLORS = {
        logging.INFO: '\033[32m',      # Green
        logging.WARNING: '\033[33m',   # Yellow
        logging.ERROR: '\033[31m',     # Red
        logging.CRITICAL: '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelno, '')
            return f"{color}{formatted}{self.RESET}"

        return formatted


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure logging.

    Logs go to stderr; stdout is reserved for the change list.

    Args:
        level: Log level string
        log_file: Optional file path for logging

    Returns:
        Root logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(LogFormatter(use_colors=True, stream=sys.stderr))
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_file,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(LogFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    return root_logger


# =============================================================================
# Command Line Parsing
# =============================================================================

def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Index a directory by content hash and print changes against the previous state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Output:
  One line per change, sorted by path: "A: path" (added),
  "U: path" (updated) or "D: path" (deleted).

Examples:
  %(prog)s state.txt ./data                       Print changes, update state
  %(prog)s state.txt ./data --no-write            Print changes only
  %(prog)s state.txt ./data -x .git -x '*.tmp'    Exclude paths
  %(prog)s state.txt ./data --target /backup      Mirror changes to /backup
        """
    )

    # Positional arguments
    parser.add_argument(
        'state_file',
        type=Path,
        help='State file holding the previous snapshot'
    )
    parser.add_argument(
        'directory',
        type=Path,
        help='Directory to index'
    )

    # Scanning
    parser.add_argument(
        '-x', '--exclude',
        action='append',
        default=[],
        metavar='PATTERN',
        help='Glob pattern to exclude (repeatable)'
    )
    parser.add_argument(
        '--algo',
        choices=[algorithm.value for algorithm in HashAlgorithm],
        default=None,
        help='Hash algorithm: sha256 (cryptographic, default), blake3 (cryptographic) '
             'or xxh3 (fast); use the one the state file was written with'
    )
    parser.add_argument(
        '--follow-symlinks',
        action='store_true',
        default=None,
        help='Follow symbolic links'
    )
    parser.add_argument(
        '-j', '--workers',
        type=_positive_int,
        default=None,
        help='Hashing threads (default: CPU count)'
    )
    parser.add_argument(
        '--no-write',
        action='store_true',
        help='Do not update the state file'
    )

    # Synchronization
    parser.add_argument(
        '--target',
        type=Path,
        default=None,
        help='Apply changes to this directory'
    )
    parser.add_argument(
        '--sync-workers',
        type=_positive_int,
        default=None,
        help='Threads used to apply changes to the target'
    )
    parser.add_argument(
        '--stop-on-error',
        action='store_true',
        default=None,
        help='Stop syncing at the first failing file'
    )

    # Configuration
    parser.add_argument(
        '-c', '--config',
        type=Path,
        default=None,
        help='Settings file path'
    )

    # Logging
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    verbosity.add_argument(
        '--log-level',
        choices=list(LOG_LEVELS),
        default=None,
        help='Log level'
    )
    parser.add_argument(
        '--log-file',
        type=Path,
        default=None,
        help='Also write logs to this file'
    )

    # Version
    parser.add_argument(
        '--version',
        action='version',
        version=f'{APP_NAME} {APP_VERSION}'
    )

    return parser


def parse_arguments(args: Optional[List[str]] = None) -> CommandLineArgs:
    """
    Parse command line arguments.

    Args:
        args: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    parsed = build_parser().parse_args(args)

    result = CommandLineArgs(
        state_file=parsed.state_file,
        directory=parsed.directory,
    )
    result.excludes = list(parsed.exclude)
    result.algorithm = HashAlgorithm.from_string(parsed.algo) if parsed.algo else None
    result.no_write = parsed.no_write
    result.follow_symlinks = parsed.follow_symlinks
    result.target = parsed.target
    result.workers = parsed.workers
    result.sync_workers = parsed.sync_workers
    result.stop_on_error = parsed.stop_on_error
    result.config_file = parsed.config
    result.log_file = parsed.log_file

    # Log level
    if parsed.verbose:
        result.log_level = 'DEBUG'
    else:
        result.log_level = parsed.log_level

    return result


def build_run_options(args: CommandLineArgs, settings: IndexSettings) -> RunOptions:
    """Merge settings file defaults with command line overrides."""

    def pick(override, default):
        return default if override is None else override

    sync_options = SyncOptions(
        preserve_permissions=settings.sync.preserve_permissions,
        preserve_timestamps=settings.sync.preserve_timestamps,
        stop_on_error=pick(args.stop_on_error, settings.sync.stop_on_error),
        prune_empty_dirs=settings.sync.prune_empty_dirs,
        max_workers=pick(args.sync_workers, settings.sync.max_workers),
    )

    return RunOptions(
        state_file=args.state_file,
        root=args.directory,
        exclude_patterns=settings.exclude_patterns + args.excludes,
        algorithm=pick(args.algorithm, settings.algorithm),
        write_state=not args.no_write,
        follow_symlinks=pick(args.follow_symlinks, settings.follow_symlinks),
        target=args.target,
        max_workers=pick(args.workers, settings.max_workers),
        chunk_size=settings.chunk_size,
        sync_options=sync_options,
    )


# =============================================================================
# Output
# =============================================================================

def print_changes(changes: List[Change], stream: Optional[TextIO] = None) -> None:
    """Print one line per change."""
    stream = stream or sys.stdout
    for change in changes:
        stream.write(f"{change}\n")
    stream.flush()


def report_problems(result: RunResult) -> None:
    """Summarize per-file problems; the individual files were logged as they happened."""
    if result.scan.has_errors:
        logging.warning(f"{len(result.scan.errors)} paths could not be indexed")

    if result.sync is not None and not result.sync.success:
        logging.error(
            f"Sync incomplete: {result.sync.items_failed} failed, "
            f"{result.sync.items_processed} of {len(result.changes)} changes processed"
        )


# =============================================================================
# Main
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line tool.

    Returns:
        Process exit code
    """
    try:
        args = parse_arguments(argv)
    except SystemExit as e:
        # argparse exits for --help, --version and usage errors
        return int(e.code) if isinstance(e.code, int) else ExitCode.USAGE

    setup_logging(args.log_level or 'WARNING', args.log_file)

    try:
        settings = SettingsManager(args.config_file).load()
        if args.log_level is None:
            logging.getLogger().setLevel(settings.log_level)
            for handler in logging.getLogger().handlers:
                handler.setLevel(settings.log_level)

        session = IndexSession(build_run_options(args, settings), on_changes=print_changes)
        result = session.run()

    except HashIndexError as e:
        logging.debug("Fatal error", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return ExitCode.FATAL
    except OSError as e:
        logging.debug("Fatal I/O error", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return ExitCode.FATAL
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return ExitCode.INTERRUPTED

    report_problems(result)

    if not result.success:
        return ExitCode.SYNC_FAILED
    return ExitCode.OK


if __name__ == "__main__":
    sys.exit(main())
