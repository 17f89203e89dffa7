"""
Hashing service for content change detection.

One algorithm is chosen per run:
- SHA-256: cryptographic, collision resistant (default)
- BLAKE3: cryptographic, reads state files written by blake3-based indexers
- XXH3-128: fast, non-cryptographic, change detection only

SHA-256 and BLAKE3 digests have the same width, so a state file does not
reveal which of the two wrote it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import blake3
import xxhash


DEFAULT_CHUNK_SIZE = 1024 * 1024


class HashAlgorithm(Enum):
    """Supported hash algorithms."""
    SHA256 = "sha256"
    BLAKE3 = "blake3"
    XXH3 = "xxh3"  # Fast non-cryptographic hash

    @property
    def cryptographic(self) -> bool:
        return self is not HashAlgorithm.XXH3

    @property
    def hex_width(self) -> int:
        """Number of hex characters in a digest."""
        return len(self.create().hexdigest())

    def create(self):
        """Create a fresh hasher object for this algorithm."""
        if self is HashAlgorithm.SHA256:
            return hashlib.sha256()
        if self is HashAlgorithm.BLAKE3:
            return blake3.blake3()
        return xxhash.xxh3_128()

    @classmethod
    def from_string(cls, value: str) -> HashAlgorithm:
        """Create from a name or the ``cryptographic``/``fast`` aliases."""
        normalized = value.strip().lower()
        aliases = {
            "cryptographic": cls.SHA256,
            "crypto": cls.SHA256,
            "fast": cls.XXH3,
            "xxh3_128": cls.XXH3,
        }
        if normalized in aliases:
            return aliases[normalized]
        for algorithm in cls:
            if algorithm.value == normalized:
                return algorithm
        raise ValueError(f"Unknown hash algorithm: {value}")


@dataclass(frozen=True)
class HashResult:
    """Result of a hash operation."""
    algorithm: HashAlgorithm
    hash_hex: str
    file_size: int

    def matches(self, other: HashResult) -> bool:
        """Check if this hash matches another."""
        return (self.algorithm == other.algorithm and
                self.hash_hex == other.hash_hex)


class HashingService:
    """Service for computing file digests with a fixed algorithm."""

    def __init__(
        self,
        algorithm: HashAlgorithm = HashAlgorithm.SHA256,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    def hash_file(self, path: Path | str) -> HashResult:
        """
        Compute the digest of a file's whole content.

        Args:
            path: Path to the file

        Returns:
            HashResult with the hex digest and the number of bytes read

        Raises:
            OSError: If the file cannot be opened or read
        """
        hasher = self.algorithm.create()
        bytes_processed = 0

        with open(path, 'rb') as f:
            while chunk := f.read(self.chunk_size):
                hasher.update(chunk)
                bytes_processed += len(chunk)

        return HashResult(
            algorithm=self.algorithm,
            hash_hex=hasher.hexdigest(),
            file_size=bytes_processed
        )

    def hash_bytes(self, data: bytes) -> HashResult:
        """Compute hash of bytes."""
        hasher = self.algorithm.create()
        hasher.update(data)

        return HashResult(
            algorithm=self.algorithm,
            hash_hex=hasher.hexdigest(),
            file_size=len(data)
        )


def digest(data: bytes, algorithm: Optional[HashAlgorithm] = None) -> str:
    """Hex digest of ``data``; SHA-256 unless another algorithm is given."""
    return HashingService(algorithm or HashAlgorithm.SHA256).hash_bytes(data).hash_hex
