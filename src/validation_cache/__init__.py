"""Incremental validation cache service and its collaborators."""

from __future__ import annotations

from validation_cache.config import ValidationCacheConfig, load_cache_config
from validation_cache.keys import content_hash_for_files, validation_cache_key
from validation_cache.protocols import DependencyGraph, PackageCatalog, Validator
from validation_cache.service import ValidationCacheService, build_cache_store

__all__ = [
    "DependencyGraph",
    "PackageCatalog",
    "ValidationCacheConfig",
    "ValidationCacheService",
    "Validator",
    "build_cache_store",
    "content_hash_for_files",
    "load_cache_config",
    "validation_cache_key",
]
