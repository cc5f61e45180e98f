"""Validation result cache: entries, persistence, invalidation, and the store."""

from cache.diskcache_factory import DiskCacheMaintenance, DiskCacheSettings
from cache.entries import (
    CacheEntry,
    CacheKey,
    CacheMaintenance,
    CacheStats,
    ContentHash,
    EntryMetadata,
    PackageId,
    ValidationResult,
)
from cache.errors import (
    CacheConfigurationError,
    CacheDecodeError,
    CacheError,
    CachePersistenceError,
)
from cache.invalidation import ChangeSet, InvalidationIndex
from cache.persistence import (
    DiskCacheEntryBackend,
    EntryBackend,
    FileEntryBackend,
    build_entry_backend,
)
from cache.store import ValidationCacheStore

__all__ = [
    "CacheConfigurationError",
    "CacheDecodeError",
    "CacheEntry",
    "CacheError",
    "CacheKey",
    "CacheMaintenance",
    "CachePersistenceError",
    "CacheStats",
    "ChangeSet",
    "ContentHash",
    "DiskCacheEntryBackend",
    "DiskCacheMaintenance",
    "DiskCacheSettings",
    "EntryBackend",
    "EntryMetadata",
    "FileEntryBackend",
    "InvalidationIndex",
    "PackageId",
    "ValidationCacheStore",
    "ValidationResult",
    "build_entry_backend",
]
