"""
Exception types raised by the indexing engine.

Only global preconditions raise. Problems local to a single file during a
scan or a sync are collected in the corresponding result object instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class HashIndexError(Exception):
    """Base class for all fatal indexing errors."""


class ConfigurationError(HashIndexError):
    """Invalid run configuration, detected before any work begins."""


class PatternError(ConfigurationError):
    """Raised when an exclusion pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid exclude pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class StateFileError(HashIndexError):
    """Raised when the persisted state file cannot be read or parsed."""

    def __init__(
        self,
        path: Path | str,
        message: str,
        line_number: Optional[int] = None
    ) -> None:
        location = f"{path}:{line_number}" if line_number is not None else str(path)
        super().__init__(f"Corrupt state file {location}: {message}")
        self.path = Path(path)
        self.line_number = line_number
