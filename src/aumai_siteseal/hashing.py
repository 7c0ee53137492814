"""SHA-256 content digests and constant-time digest comparison."""

from __future__ import annotations

import hashlib
import hmac
from pathlib import Path
from typing import BinaryIO

_CHUNK_SIZE = 65536


def digest(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def digest_stream(fh: BinaryIO) -> tuple[str, int]:
    """Hash a binary stream to exhaustion.

    Returns:
        ``(hex_digest, bytes_read)``.  Read errors propagate unchanged.
    """
    hasher = hashlib.sha256()
    size = 0
    for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
        hasher.update(chunk)
        size += len(chunk)
    return hasher.hexdigest(), size


def digest_file(file_path: str | Path) -> tuple[str, int]:
    """Return ``(hex_digest, size)`` of the file at *file_path*."""
    with Path(file_path).open("rb") as fh:
        return digest_stream(fh)


def digests_equal(expected: str, actual: str) -> bool:
    """Compare two hex digests in constant time."""
    return hmac.compare_digest(expected.encode("ascii"), actual.encode("ascii"))


__all__ = ["digest", "digest_file", "digest_stream", "digests_equal"]
