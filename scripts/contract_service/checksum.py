"""Streaming sha256 over byte streams (constant memory)."""
from __future__ import annotations

import hashlib
from typing import BinaryIO

CHUNK_SIZE = 1024 * 1024


def digest_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> tuple[str, int]:
    """Return (sha256 hex, byte count) of everything left in stream."""
    h = hashlib.sha256()
    size = 0
    for b in iter(lambda: stream.read(chunk_size), b""):
        h.update(b)
        size += len(b)
    return h.hexdigest(), size


def digest_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
