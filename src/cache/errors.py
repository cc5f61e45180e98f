"""Validation cache error types."""

from __future__ import annotations


class CacheError(Exception):
    """Base class for validation cache errors."""


class CacheConfigurationError(CacheError, ValueError):
    """Raised when cache settings or the cache directory are unusable."""


class CachePersistenceError(CacheError, OSError):
    """Raised by persistent backends when a read, write, or delete fails."""


class CacheDecodeError(CacheError, ValueError):
    """Raised when a persisted entry payload cannot be decoded."""


__all__ = [
    "CacheConfigurationError",
    "CacheDecodeError",
    "CacheError",
    "CachePersistenceError",
]
