"""Persistent backends for validation cache entries.

Backends store opaque encoded payloads (see ``cache.codec``) addressed by the
SHA-256 hex digest of the cache key. They raise ``CachePersistenceError`` on
I/O failures; the store decides whether a failure is worth surfacing.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import Literal, Protocol

from diskcache import Cache, Timeout

from cache.codec import ENTRY_FILE_SUFFIX
from cache.diskcache_factory import (
    DiskCacheSettings,
    build_entry_cache,
    diskcache_stats_snapshot,
    run_cache_maintenance,
)
from cache.entries import CacheKey
from cache.errors import CacheConfigurationError, CachePersistenceError
from utils.file_io import read_bytes_bounded, write_bytes_atomic
from utils.hashing import hash_text_sha256

type BackendKind = Literal["files", "diskcache"]

logger = logging.getLogger(__name__)

_PROBE_NAME = ".modcache-probe"


def entry_digest(key: CacheKey) -> str:
    """Return the filesystem-safe digest used to address a cache key.

    Returns
    -------
    str
        SHA-256 hex digest of the key.
    """
    return hash_text_sha256(key)


class EntryBackend(Protocol):
    """Storage contract for persisted cache entries."""

    @property
    def location(self) -> str:
        """Return a human-readable location for diagnostics."""
        ...

    def open(self) -> None:
        """Prepare the backend, raising ``CacheConfigurationError`` when unusable."""
        ...

    def read(self, key: CacheKey) -> bytes | None:
        """Return the stored payload for a key, or None when absent."""
        ...

    def write(self, key: CacheKey, payload: bytes) -> None:
        """Store a payload for a key, replacing any previous payload."""
        ...

    def delete(self, key: CacheKey) -> bool:
        """Delete a key's payload and report whether one existed."""
        ...

    def scan(self) -> Iterator[bytes]:
        """Yield every readable stored payload."""
        ...

    def clear(self) -> int:
        """Delete every stored payload and return how many were removed."""
        ...

    def maintain(self) -> int:
        """Run backend housekeeping and return how many items it removed."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


class FileEntryBackend:
    """One file per entry under a cache directory."""

    def __init__(self, root: Path, *, max_entry_bytes: int) -> None:
        self._root = root
        self._max_entry_bytes = max_entry_bytes

    @property
    def location(self) -> str:
        """Return the cache directory path."""
        return str(self._root)

    @property
    def root(self) -> Path:
        """Return the cache directory."""
        return self._root

    def path_for(self, key: CacheKey) -> Path:
        """Return the file path that stores ``key``.

        Returns
        -------
        pathlib.Path
            Entry file path.
        """
        return self._root / f"{entry_digest(key)}{ENTRY_FILE_SUFFIX}"

    def open(self) -> None:
        """Create the cache directory and verify it is writable.

        Raises
        ------
        CacheConfigurationError
            Raised when the directory cannot be created or written.
        """
        probe = self._root / _PROBE_NAME
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            probe.write_bytes(b"")
            probe.unlink()
        except OSError as exc:
            msg = f"Cache directory {self._root} is not usable: {exc}"
            raise CacheConfigurationError(msg) from exc

    def read(self, key: CacheKey) -> bytes | None:
        """Return the stored payload for a key.

        Returns
        -------
        bytes | None
            Payload, or None when missing or larger than the read bound.

        Raises
        ------
        CachePersistenceError
            Raised when the file exists but cannot be read.
        """
        path = self.path_for(key)
        try:
            payload = read_bytes_bounded(path, max_bytes=self._max_entry_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Failed to read cache entry {path}: {exc}"
            raise CachePersistenceError(msg) from exc
        if payload is None:
            logger.debug("Skipping oversized cache entry %s", path)
        return payload

    def write(self, key: CacheKey, payload: bytes) -> None:
        """Atomically write the payload for a key.

        Raises
        ------
        CachePersistenceError
            Raised when the file cannot be written.
        """
        path = self.path_for(key)
        try:
            write_bytes_atomic(path, payload)
        except OSError as exc:
            msg = f"Failed to write cache entry {path}: {exc}"
            raise CachePersistenceError(msg) from exc

    def delete(self, key: CacheKey) -> bool:
        """Delete the file for a key.

        Returns
        -------
        bool
            ``True`` when a file was removed.

        Raises
        ------
        CachePersistenceError
            Raised when an existing file cannot be removed.
        """
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            msg = f"Failed to delete cache entry {path}: {exc}"
            raise CachePersistenceError(msg) from exc
        return True

    def scan(self) -> Iterator[bytes]:
        """Yield payloads of every readable entry file.

        Yields
        ------
        bytes
            Stored payload.
        """
        if not self._root.is_dir():
            return
        for path in sorted(self._root.glob(f"*{ENTRY_FILE_SUFFIX}")):
            try:
                payload = read_bytes_bounded(path, max_bytes=self._max_entry_bytes)
            except OSError as exc:
                logger.debug("Skipping unreadable cache entry %s: %s", path, exc)
                continue
            if payload is not None:
                yield payload

    def clear(self) -> int:
        """Remove every entry file and stray temp file.

        Returns
        -------
        int
            Count of removed entry files.

        Raises
        ------
        CachePersistenceError
            Raised when a file cannot be removed.
        """
        if not self._root.is_dir():
            return 0
        removed = 0
        try:
            for path in self._root.glob(f"*{ENTRY_FILE_SUFFIX}"):
                path.unlink(missing_ok=True)
                removed += 1
            for path in self._root.glob(".*.tmp"):
                path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to clear cache directory {self._root}: {exc}"
            raise CachePersistenceError(msg) from exc
        return removed

    def maintain(self) -> int:
        """Remove temp files left behind by interrupted writes.

        Returns
        -------
        int
            Count of removed temp files.
        """
        if not self._root.is_dir():
            return 0
        removed = 0
        for path in self._root.glob(".*.tmp"):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("Could not remove stale temp file %s: %s", path, exc)
                continue
            removed += 1
        return removed

    def close(self) -> None:
        """Release resources (no-op for plain files)."""


class DiskCacheEntryBackend:
    """Entries stored in a ``diskcache.Cache`` keyed by key digest."""

    def __init__(
        self,
        root: Path,
        *,
        settings: DiskCacheSettings | None = None,
        max_entry_bytes: int,
    ) -> None:
        self._root = root
        self._settings = settings or DiskCacheSettings()
        self._max_entry_bytes = max_entry_bytes
        self._cache: Cache | None = None

    @property
    def location(self) -> str:
        """Return the DiskCache directory path."""
        return str(self._root)

    def open(self) -> None:
        """Open the underlying DiskCache.

        Raises
        ------
        CacheConfigurationError
            Raised when the DiskCache directory or database cannot be opened.
        """
        if self._cache is not None:
            return
        try:
            self._cache = build_entry_cache(self._root, self._settings)
        except (OSError, sqlite3.Error) as exc:
            msg = f"DiskCache at {self._root} is not usable: {exc}"
            raise CacheConfigurationError(msg) from exc

    def _require_cache(self) -> Cache:
        if self._cache is None:
            msg = f"DiskCache at {self._root} has not been opened."
            raise CachePersistenceError(msg)
        return self._cache

    def read(self, key: CacheKey) -> bytes | None:
        """Return the stored payload for a key.

        Returns
        -------
        bytes | None
            Payload, or None when missing or oversized.

        Raises
        ------
        CachePersistenceError
            Raised when DiskCache fails to read.
        """
        cache = self._require_cache()
        try:
            payload = cache.get(entry_digest(key), default=None, retry=True)
        except (OSError, sqlite3.Error, Timeout) as exc:
            msg = f"DiskCache read failed for {key!r}: {exc}"
            raise CachePersistenceError(msg) from exc
        if not isinstance(payload, bytes):
            return None
        if len(payload) > self._max_entry_bytes:
            logger.debug("Skipping oversized DiskCache entry for %r", key)
            return None
        return payload

    def write(self, key: CacheKey, payload: bytes) -> None:
        """Store the payload for a key.

        Raises
        ------
        CachePersistenceError
            Raised when DiskCache fails to write.
        """
        cache = self._require_cache()
        try:
            cache.set(entry_digest(key), payload, retry=True)
        except (OSError, sqlite3.Error, Timeout) as exc:
            msg = f"DiskCache write failed for {key!r}: {exc}"
            raise CachePersistenceError(msg) from exc

    def delete(self, key: CacheKey) -> bool:
        """Delete the payload for a key.

        Returns
        -------
        bool
            ``True`` when an item was removed.

        Raises
        ------
        CachePersistenceError
            Raised when DiskCache fails to delete.
        """
        cache = self._require_cache()
        try:
            return bool(cache.delete(entry_digest(key), retry=True))
        except (OSError, sqlite3.Error, Timeout) as exc:
            msg = f"DiskCache delete failed for {key!r}: {exc}"
            raise CachePersistenceError(msg) from exc

    def scan(self) -> Iterator[bytes]:
        """Yield every stored payload.

        Yields
        ------
        bytes
            Stored payload.
        """
        cache = self._require_cache()
        for digest in list(cache.iterkeys()):
            try:
                payload = cache.get(digest, default=None, retry=True)
            except (OSError, sqlite3.Error, Timeout) as exc:
                logger.debug("Skipping unreadable DiskCache item %s: %s", digest, exc)
                continue
            if isinstance(payload, bytes) and len(payload) <= self._max_entry_bytes:
                yield payload

    def clear(self) -> int:
        """Remove every stored payload.

        Returns
        -------
        int
            Count of removed items.

        Raises
        ------
        CachePersistenceError
            Raised when DiskCache fails to clear.
        """
        cache = self._require_cache()
        try:
            return int(cache.clear(retry=True))
        except (OSError, sqlite3.Error, Timeout) as exc:
            msg = f"DiskCache clear failed at {self._root}: {exc}"
            raise CachePersistenceError(msg) from exc

    def maintain(self) -> int:
        """Expire and cull the DiskCache.

        Returns
        -------
        int
            Count of expired plus culled items.

        Raises
        ------
        CachePersistenceError
            Raised when DiskCache maintenance fails.
        """
        cache = self._require_cache()
        try:
            maintenance = run_cache_maintenance(cache)
        except (OSError, sqlite3.Error, Timeout) as exc:
            msg = f"DiskCache maintenance failed at {self._root}: {exc}"
            raise CachePersistenceError(msg) from exc
        logger.debug(
            "DiskCache maintenance at %s: %s",
            self._root,
            diskcache_stats_snapshot(cache),
        )
        return maintenance.removed

    def close(self) -> None:
        """Close the underlying DiskCache."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None


def build_entry_backend(
    kind: BackendKind,
    root: Path,
    *,
    max_entry_bytes: int,
    diskcache_settings: DiskCacheSettings | None = None,
) -> EntryBackend:
    """Create and open a persistent entry backend.

    Returns
    -------
    EntryBackend
        Opened backend.

    Raises
    ------
    CacheConfigurationError
        Raised when the backend kind is unknown or its location is unusable.
    """
    backend: EntryBackend
    if kind == "files":
        backend = FileEntryBackend(root, max_entry_bytes=max_entry_bytes)
    elif kind == "diskcache":
        backend = DiskCacheEntryBackend(
            root,
            settings=diskcache_settings,
            max_entry_bytes=max_entry_bytes,
        )
    else:
        msg = f"Unknown cache backend {kind!r}."
        raise CacheConfigurationError(msg)
    backend.open()
    return backend


__all__ = [
    "BackendKind",
    "DiskCacheEntryBackend",
    "EntryBackend",
    "FileEntryBackend",
    "build_entry_backend",
    "entry_digest",
]
