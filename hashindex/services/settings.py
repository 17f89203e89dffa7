"""
Settings management.

Run defaults are read from a JSON file; command line options override them.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from hashindex.core.errors import ConfigurationError
from hashindex.services.hashing import DEFAULT_CHUNK_SIZE, HashAlgorithm


LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class SyncSettings:
    """Settings for target synchronization."""
    preserve_permissions: bool = True
    preserve_timestamps: bool = True
    stop_on_error: bool = False
    prune_empty_dirs: bool = True
    max_workers: int = 1


@dataclass
class IndexSettings:
    """Main settings container."""
    exclude_patterns: list[str] = field(default_factory=list)
    algorithm: HashAlgorithm = HashAlgorithm.SHA256
    follow_symlinks: bool = False
    max_workers: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = 'WARNING'
    sync: SyncSettings = field(default_factory=SyncSettings)


class SettingsManager:
    """Manager for loading settings from disk."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.explicit = settings_path is not None
        self.settings_path = Path(settings_path) if settings_path else self._get_default_path()

    @staticmethod
    def _get_default_path() -> Path:
        """Get the default settings file path."""
        if os.name == 'nt':
            # Windows
            app_data = os.environ.get('APPDATA', os.path.expanduser('~'))
            return Path(app_data) / 'hashindex' / 'settings.json'
        else:
            # Linux/Mac
            config_home = os.environ.get('XDG_CONFIG_HOME',
                                         os.path.expanduser('~/.config'))
            return Path(config_home) / 'hashindex' / 'settings.json'

    def load(self) -> IndexSettings:
        """
        Load settings from disk.

        A missing default settings file yields defaults. A missing file that
        was asked for explicitly, invalid JSON or a wrongly typed value is a
        configuration error.
        """
        if not self.settings_path.exists():
            if self.explicit:
                raise ConfigurationError(f"Settings file not found: {self.settings_path}")
            return IndexSettings()

        try:
            with open(self.settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read settings file {self.settings_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {self.settings_path} must contain a JSON object")

        settings = self._from_dict(data)
        logging.debug(f"SettingsManager - Loaded settings from {self.settings_path}")
        return settings

    def _from_dict(self, data: dict) -> IndexSettings:
        """Convert a dictionary to settings objects."""
        defaults = IndexSettings()
        sync_defaults = SyncSettings()

        sync_data = data.get('sync', {})
        if not isinstance(sync_data, dict):
            raise ConfigurationError("'sync' must be a JSON object")

        sync = SyncSettings(
            preserve_permissions=self._get(sync_data, 'preserve_permissions', bool, sync_defaults.preserve_permissions),
            preserve_timestamps=self._get(sync_data, 'preserve_timestamps', bool, sync_defaults.preserve_timestamps),
            stop_on_error=self._get(sync_data, 'stop_on_error', bool, sync_defaults.stop_on_error),
            prune_empty_dirs=self._get(sync_data, 'prune_empty_dirs', bool, sync_defaults.prune_empty_dirs),
            max_workers=self._get(sync_data, 'max_workers', int, sync_defaults.max_workers),
        )

        patterns = self._get(data, 'exclude_patterns', list, defaults.exclude_patterns)
        if not all(isinstance(p, str) for p in patterns):
            raise ConfigurationError("'exclude_patterns' must be a list of strings")

        algorithm_name = self._get(data, 'algorithm', str, defaults.algorithm.value)
        try:
            algorithm = HashAlgorithm.from_string(algorithm_name)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        log_level = self._get(data, 'log_level', str, defaults.log_level).upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {log_level}")

        max_workers = data.get('max_workers', defaults.max_workers)
        if max_workers is not None and (not isinstance(max_workers, int) or isinstance(max_workers, bool)):
            raise ConfigurationError("'max_workers' must be an integer or null")

        chunk_size = self._get(data, 'chunk_size', int, defaults.chunk_size)
        if chunk_size <= 0 or sync.max_workers <= 0 or (max_workers is not None and max_workers <= 0):
            raise ConfigurationError("'chunk_size' and worker counts must be positive")

        return IndexSettings(
            exclude_patterns=list(patterns),
            algorithm=algorithm,
            follow_symlinks=self._get(data, 'follow_symlinks', bool, defaults.follow_symlinks),
            max_workers=max_workers,
            chunk_size=chunk_size,
            log_level=log_level,
            sync=sync,
        )

    @staticmethod
    def _get(data: dict, key: str, expected: type, default: Any) -> Any:
        """Fetch a typed value, falling back to the default when absent."""
        value = data.get(key, default)
        # bool is a subclass of int
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ConfigurationError(
                f"Setting '{key}' must be of type {expected.__name__}, got {type(value).__name__}"
            )
        return value
