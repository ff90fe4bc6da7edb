#!/usr/bin/env python3
"""Tests for streaming sha256 digests."""
from __future__ import annotations

import hashlib
import io
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from contract_service.checksum import digest_bytes, digest_stream  # noqa: E402


def test_digest_stream_matches_hashlib_across_chunks():
    data = bytes(range(256)) * 1000
    hexdigest, size = digest_stream(io.BytesIO(data), chunk_size=4096)
    assert hexdigest == hashlib.sha256(data).hexdigest()
    assert size == len(data)


def test_digest_empty_stream():
    hexdigest, size = digest_stream(io.BytesIO(b""))
    assert size == 0
    assert hexdigest == hashlib.sha256(b"").hexdigest()


def test_digest_bytes_is_lowercase_hex():
    d = digest_bytes(b"contract")
    assert len(d) == 64
    assert d == d.lower()
    assert d == digest_stream(io.BytesIO(b"contract"))[0]
