"""Persisted cache entry format.

A persisted entry is a one-byte header followed by a msgpack
``PersistedEntry`` payload, zlib-compressed when the header says so. The
validation result is stored as pre-encoded msgpack (``msgspec.Raw``) so it can
be decoded lazily into a caller-provided type.
"""

from __future__ import annotations

import zlib
from typing import Final

import msgspec

from cache.entries import CacheEntry, EntryMetadata
from cache.errors import CacheDecodeError
from serde_msgspec import StructBaseCompat, dumps_msgpack, ensure_raw, loads_msgpack

PERSISTED_ENTRY_VERSION: Final[int] = 1
ENTRY_FILE_SUFFIX: Final[str] = ".entry"

_HEADER_PLAIN: Final[bytes] = b"\x00"
_HEADER_ZLIB: Final[bytes] = b"\x01"
_ZLIB_LEVEL: Final[int] = 6


class PersistedEntry(StructBaseCompat, frozen=True):
    """On-disk representation of a ``CacheEntry``."""

    format_version: int
    key: str
    content_hash: str
    created_at: float
    validator_version: str
    size_bytes: int
    result: msgspec.Raw
    files: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    metadata_size_bytes: int | None = None


def encode_result(result: object) -> bytes | None:
    """Return the msgpack encoding of a validation result.

    Returns
    -------
    bytes | None
        Encoded result, or None when the value cannot be encoded.
    """
    try:
        return dumps_msgpack(result)
    except (TypeError, ValueError, OverflowError):
        return None


def result_round_trips(result: object, result_bytes: bytes, *, result_type: type = object) -> bool:
    """Return True when ``result_bytes`` decodes back into a value equal to ``result``.

    Tuples, dataclasses, and structs decoded as ``object`` come back as lists
    and dicts; such results fail this check unless ``result_type`` names them.

    Returns
    -------
    bool
        Whether a persisted copy would read back unchanged.
    """
    try:
        decoded = loads_msgpack(result_bytes, target_type=result_type)
    except (msgspec.DecodeError, NotImplementedError, TypeError, ValueError):
        return False
    return bool(type(decoded) is type(result) and decoded == result)


def encode_entry(entry: CacheEntry, *, result_bytes: bytes, compress: bool) -> bytes:
    """Encode a cache entry for persistence.

    Parameters
    ----------
    entry
        Entry to encode.
    result_bytes
        Pre-encoded msgpack bytes for ``entry.result``.
    compress
        Whether to zlib-compress the payload.

    Returns
    -------
    bytes
        Header-prefixed payload.
    """
    persisted = PersistedEntry(
        format_version=PERSISTED_ENTRY_VERSION,
        key=entry.key,
        content_hash=entry.content_hash,
        created_at=entry.created_at,
        validator_version=entry.validator_version,
        size_bytes=entry.size_bytes,
        result=ensure_raw(result_bytes),
        files=entry.metadata.files,
        dependencies=entry.metadata.dependencies,
        metadata_size_bytes=entry.metadata.size_bytes,
    )
    body = dumps_msgpack(persisted)
    if compress:
        return _HEADER_ZLIB + zlib.compress(body, _ZLIB_LEVEL)
    return _HEADER_PLAIN + body


def decode_persisted(payload: bytes) -> PersistedEntry:
    """Decode the header and body of a persisted entry.

    Returns
    -------
    PersistedEntry
        Decoded on-disk record with the result still encoded.

    Raises
    ------
    CacheDecodeError
        Raised when the payload is truncated, corrupt, or from another format.
    """
    if not payload:
        msg = "Empty cache entry payload."
        raise CacheDecodeError(msg)
    header, body = payload[:1], payload[1:]
    try:
        if header == _HEADER_ZLIB:
            body = zlib.decompress(body)
        elif header != _HEADER_PLAIN:
            msg = f"Unknown cache entry header {header!r}."
            raise CacheDecodeError(msg)
        persisted = loads_msgpack(body, target_type=PersistedEntry)
    except (zlib.error, msgspec.DecodeError) as exc:
        msg = f"Corrupt cache entry payload: {exc}"
        raise CacheDecodeError(msg) from exc
    if persisted.format_version != PERSISTED_ENTRY_VERSION:
        msg = f"Unsupported cache entry format version {persisted.format_version}."
        raise CacheDecodeError(msg)
    return persisted


def decode_entry(
    payload: bytes,
    *,
    result_type: type = object,
    sequence: int = 0,
) -> CacheEntry:
    """Decode a persisted payload into a ``CacheEntry``.

    Parameters
    ----------
    payload
        Header-prefixed payload produced by ``encode_entry``.
    result_type
        Type used to decode the stored validation result.
    sequence
        Insert sequence assigned to the rebuilt entry.

    Returns
    -------
    CacheEntry
        Rebuilt cache entry.

    Raises
    ------
    CacheDecodeError
        Raised when the payload or its result cannot be decoded.
    """
    persisted = decode_persisted(payload)
    try:
        result = loads_msgpack(bytes(persisted.result), target_type=result_type)
    except msgspec.DecodeError as exc:
        msg = f"Corrupt cached validation result for {persisted.key!r}: {exc}"
        raise CacheDecodeError(msg) from exc
    return CacheEntry(
        key=persisted.key,
        content_hash=persisted.content_hash,
        result=result,
        created_at=persisted.created_at,
        validator_version=persisted.validator_version,
        metadata=EntryMetadata(
            files=persisted.files,
            dependencies=persisted.dependencies,
            size_bytes=persisted.metadata_size_bytes,
        ),
        size_bytes=persisted.size_bytes,
        sequence=sequence,
    )


__all__ = [
    "ENTRY_FILE_SUFFIX",
    "PERSISTED_ENTRY_VERSION",
    "PersistedEntry",
    "decode_entry",
    "decode_persisted",
    "encode_entry",
    "encode_result",
    "result_round_trips",
]
