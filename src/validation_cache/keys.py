"""Cache keys and content hashes for validation requests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Final

from cache.entries import CacheKey, ContentHash, PackageId
from core.fingerprinting import CompositeFingerprint
from utils.hashing import hash_files_ordered

VALIDATION_KEY_VERSION: Final[int] = 1
VALIDATION_KEY_PREFIX: Final[str] = "validation"


def validation_cache_key(
    package_id: PackageId,
    options: Mapping[str, object] | None = None,
) -> CacheKey:
    """Return the deterministic cache key for a package and its options.

    Option order does not affect the key.

    Returns
    -------
    str
        Cache key.
    """
    fingerprint = CompositeFingerprint.from_options(
        VALIDATION_KEY_VERSION,
        identity=package_id,
        options=options,
    )
    return fingerprint.as_cache_key(prefix=VALIDATION_KEY_PREFIX)


def content_hash_for_files(paths: Iterable[Path]) -> ContentHash:
    """Return the content hash over every file a validation reads.

    Returns
    -------
    str
        SHA-256 hexdigest of paths and contents in sorted order.
    """
    return hash_files_ordered(paths)


__all__ = [
    "VALIDATION_KEY_PREFIX",
    "VALIDATION_KEY_VERSION",
    "content_hash_for_files",
    "validation_cache_key",
]
