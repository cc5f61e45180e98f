"""Validation cache data model."""

from __future__ import annotations

from dataclasses import dataclass

import msgspec

from serde_msgspec import StructBaseStrict

type CacheKey = str
type ContentHash = str
type PackageId = str
type ValidationResult = object


class EntryMetadata(StructBaseStrict, frozen=True):
    """Inputs a cache entry was computed from.

    ``files`` and ``dependencies`` drive invalidation matching. ``size_bytes``
    overrides the serialized-size estimate used for budget accounting.
    """

    files: tuple[str, ...] = ()
    dependencies: tuple[PackageId, ...] = ()
    size_bytes: int | None = None


class CacheEntry(StructBaseStrict, frozen=True):
    """Immutable cached validation result.

    A changed entry is always a new ``CacheEntry``; entries are never edited
    in place.
    """

    key: CacheKey
    content_hash: ContentHash
    result: ValidationResult
    created_at: float
    validator_version: str
    metadata: EntryMetadata = msgspec.field(default_factory=EntryMetadata)
    size_bytes: int = 0
    sequence: int = 0

    def age_s(self, now: float) -> float:
        """Return the entry age in seconds at ``now``.

        Returns
        -------
        float
            Seconds elapsed since creation.
        """
        return now - self.created_at


class CacheStats(StructBaseStrict, frozen=True):
    """Point-in-time counters for a validation cache store."""

    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    writes: int = 0
    evictions: int = 0
    expirations: int = 0
    persist_errors: int = 0
    entry_count: int = 0
    memory_bytes: int = 0
    max_size_bytes: int = 0

    @property
    def lookups(self) -> int:
        """Return the number of ``get`` calls counted."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Return hits divided by lookups, or 0.0 before any lookup."""
        lookups = self.lookups
        return self.hits / lookups if lookups else 0.0


@dataclass(frozen=True)
class CacheMaintenance:
    """Maintenance result for a cache store."""

    expired: int
    evicted: int
    disk_expired: int = 0
    errors: int = 0


__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheMaintenance",
    "CacheStats",
    "ContentHash",
    "EntryMetadata",
    "PackageId",
    "ValidationResult",
]
