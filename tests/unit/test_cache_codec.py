"""Tests for the persisted cache entry format."""

from __future__ import annotations

import pytest

from cache.codec import decode_entry, decode_persisted, encode_entry, encode_result
from cache.entries import CacheEntry, EntryMetadata
from cache.errors import CacheDecodeError

CREATED_AT = 1_700_000_000.0
RESULT = {"errors": [], "warnings": ["missing icon"], "score": 0.5}


def _entry() -> CacheEntry:
    return CacheEntry(
        key="validation:pkg",
        content_hash="abc",
        result=RESULT,
        created_at=CREATED_AT,
        validator_version="3",
        metadata=EntryMetadata(files=("pkg/a.txt",), dependencies=("core",), size_bytes=42),
        size_bytes=42,
        sequence=7,
    )


@pytest.mark.parametrize("compress", [True, False])
def test_entry_payload_preserves_fields(compress: bool) -> None:
    """Ensure decoding restores every persisted field."""
    entry = _entry()
    result_bytes = encode_result(entry.result)
    assert result_bytes is not None

    decoded = decode_entry(
        encode_entry(entry, result_bytes=result_bytes, compress=compress),
        sequence=1,
    )

    assert decoded.key == entry.key
    assert decoded.result == RESULT
    assert decoded.created_at == CREATED_AT
    assert decoded.validator_version == "3"
    assert decoded.metadata == entry.metadata
    assert decoded.sequence == 1


def test_compressed_payload_is_smaller_for_repetitive_results() -> None:
    """Ensure zlib compression applies to the payload body."""
    entry = CacheEntry(
        key="k",
        content_hash="h",
        result={"log": "x" * 4096},
        created_at=CREATED_AT,
        validator_version="1",
    )
    result_bytes = encode_result(entry.result)
    assert result_bytes is not None
    plain = encode_entry(entry, result_bytes=result_bytes, compress=False)
    packed = encode_entry(entry, result_bytes=result_bytes, compress=True)
    assert len(packed) < len(plain)


def test_encode_result_rejects_unsupported_values() -> None:
    """Ensure values msgpack cannot represent return None."""
    assert encode_result({"handle": object()}) is None


@pytest.mark.parametrize("payload", [b"", b"\x07abc", b"\x01not-zlib", b"\x00\xc1"])
def test_corrupt_payloads_raise_decode_error(payload: bytes) -> None:
    """Ensure malformed payloads raise CacheDecodeError."""
    with pytest.raises(CacheDecodeError):
        decode_persisted(payload)


def test_decode_error_is_value_error() -> None:
    """Ensure decode errors stay catchable as ValueError."""
    with pytest.raises(ValueError, match="Empty"):
        decode_persisted(b"")
