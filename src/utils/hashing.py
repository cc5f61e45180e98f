"""SHA-256 digests over canonical encodings and file contents."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from serde_msgspec import JSON_ENCODER_SORTED, MSGPACK_ENCODER, to_builtins

_SEP = b"\x00"
_MISSING = b"\x00<missing>\x00"
_CHUNK_BYTES = 1 << 20


def hash_sha256_hex(payload: bytes, *, length: int | None = None) -> str:
    """Return the SHA-256 hexdigest of ``payload``, truncated to ``length`` chars."""
    return hashlib.sha256(payload).hexdigest()[:length]


def hash_text_sha256(value: str) -> str:
    """Return the SHA-256 hexdigest of ``value`` encoded as UTF-8."""
    return hash_sha256_hex(value.encode("utf-8"))


def hash_msgpack_canonical(payload: object) -> str:
    """Hash the deterministic MessagePack encoding of ``payload``.

    Returns
    -------
    str
        SHA-256 hexdigest; mapping insertion order does not matter.
    """
    return hash_sha256_hex(MSGPACK_ENCODER.encode(payload))


def hash_json_canonical(payload: object, *, str_keys: bool = False) -> str:
    """Hash the key-sorted JSON encoding of ``payload``.

    Structs, paths, and bytes are lowered to builtins first.

    Returns
    -------
    str
        SHA-256 hexdigest.
    """
    return hash_sha256_hex(JSON_ENCODER_SORTED.encode(to_builtins(payload, str_keys=str_keys)))


@dataclass
class CacheKeyBuilder:
    """Accumulate named components into a ``prefix:digest`` cache key."""

    prefix: str = ""
    components: dict[str, object] = field(default_factory=dict)

    def add(self, name: str, value: object) -> CacheKeyBuilder:
        """Set component ``name`` and return the builder for chaining.

        Returns
        -------
        CacheKeyBuilder
            This builder.
        """
        self.components[name] = value
        return self

    def build(self) -> str:
        """Return the key; only the component values, not their order, matter."""
        digest = hash_msgpack_canonical(self.components)
        return f"{self.prefix}:{digest}" if self.prefix else digest


def hash_files_ordered(paths: Iterable[Path]) -> str:
    """Fold the paths and contents of ``paths`` into one digest.

    Files are visited in sorted POSIX order, so the input order is
    irrelevant. Each path is hashed next to its bytes: renames change the
    digest as well as edits. A missing file hashes as a fixed marker.

    Returns
    -------
    str
        SHA-256 hexdigest.
    """
    digest = hashlib.sha256()
    for path in sorted(set(paths), key=Path.as_posix):
        digest.update(path.as_posix().encode("utf-8") + _SEP)
        try:
            with path.open("rb") as handle:
                for chunk in iter(lambda: handle.read(_CHUNK_BYTES), b""):
                    digest.update(chunk)
        except FileNotFoundError:
            digest.update(_MISSING)
        digest.update(_SEP)
    return digest.hexdigest()


__all__ = [
    "CacheKeyBuilder",
    "hash_files_ordered",
    "hash_json_canonical",
    "hash_msgpack_canonical",
    "hash_sha256_hex",
    "hash_text_sha256",
]
