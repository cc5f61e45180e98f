"""Validation result store with content-hash validity and best-effort persistence.

The in-memory map is authoritative for the current process. Persistent writes
run on a single background writer thread and never happen while the memory
lock is held. Disk mutations are serialized by a separate disk lock so a
queued write cannot resurrect an entry that was invalidated after it was
queued. Invalidations and clears bump an epoch twice (on entry and exit); a
cold read only installs its entry when no invalidation overlapped it.
"""

from __future__ import annotations

import copy
import heapq
import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING, Literal, Self

import msgspec

from cache.codec import (
    decode_entry,
    decode_persisted,
    encode_entry,
    encode_result,
    result_round_trips,
)
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
from cache.errors import CacheConfigurationError, CacheDecodeError, CachePersistenceError
from cache.invalidation import ChangeSet, InvalidationIndex
from obs.otel.metrics import record_cache_event

if TYPE_CHECKING:
    from cache.persistence import EntryBackend
    from obs.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

type StaleReason = Literal["hash", "expired", "version"]

DEFAULT_MAX_AGE_S = 24 * 60 * 60.0
DEFAULT_MAX_SIZE_BYTES = 64 * 1024 * 1024
DEFAULT_MAX_ENTRY_BYTES = 16 * 1024 * 1024
FALLBACK_ENTRY_SIZE_BYTES = 1024

_HEAP_SLACK = 64


@dataclass
class _Counters:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    writes: int = 0
    evictions: int = 0
    expirations: int = 0
    persist_errors: int = 0


class ValidationCacheStore:
    """Concurrency-safe cache of validation results.

    Parameters
    ----------
    backend
        Opened persistent backend, or None for memory-only mode.
    max_age_s
        Entries older than this are stale regardless of their hash.
    max_size_bytes
        Budget for the sum of in-memory entry sizes.
    validator_version
        Current validator version; entries from other versions are stale.
    compress
        Whether persisted payloads are zlib-compressed.
    max_entry_bytes
        Entries whose encoded result is larger are kept memory-only.
    result_type
        Type used to decode results read back from the backend. Results that
        would not decode back equal under it are kept memory-only.
    maintenance_interval_s
        Run ``run_maintenance`` periodically when set.
    clock
        Wall-clock source for ``created_at`` and age checks.
    monitor
        Optional monitor notified of every lookup outcome.
    """

    def __init__(
        self,
        *,
        backend: EntryBackend | None = None,
        max_age_s: float = DEFAULT_MAX_AGE_S,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        validator_version: str = "1",
        compress: bool = True,
        max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES,
        result_type: type = object,
        maintenance_interval_s: float | None = None,
        clock: Callable[[], float] = time.time,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        if max_age_s <= 0:
            msg = f"max_age_s must be positive, got {max_age_s!r}."
            raise CacheConfigurationError(msg)
        if max_size_bytes <= 0:
            msg = f"max_size_bytes must be positive, got {max_size_bytes!r}."
            raise CacheConfigurationError(msg)
        if max_entry_bytes <= 0:
            msg = f"max_entry_bytes must be positive, got {max_entry_bytes!r}."
            raise CacheConfigurationError(msg)
        if maintenance_interval_s is not None and maintenance_interval_s <= 0:
            msg = f"maintenance_interval_s must be positive, got {maintenance_interval_s!r}."
            raise CacheConfigurationError(msg)
        self._backend = backend
        self._max_age_s = max_age_s
        self._max_size_bytes = max_size_bytes
        self._validator_version = validator_version
        self._compress = compress
        self._max_entry_bytes = max_entry_bytes
        self._result_type = result_type
        self._maintenance_interval_s = maintenance_interval_s
        self._clock = clock
        self._monitor = monitor
        self._lock = threading.Lock()
        self._disk_lock = threading.Lock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._index = InvalidationIndex()
        self._age_heap: list[tuple[float, int, CacheKey]] = []
        self._pending: dict[CacheKey, CacheEntry] = {}
        self._futures: set[Future[None]] = set()
        self._memory_bytes = 0
        self._sequence = 0
        self._epoch = 0
        self._counters = _Counters()
        self._closed = False
        self._writer: ThreadPoolExecutor | None = None
        if backend is not None:
            self._writer = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="modcache-writer",
            )
        self._maintenance_timer: threading.Timer | None = None
        self._schedule_maintenance()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def persistent(self) -> bool:
        """Return True when entries are also written to a backend."""
        return self._backend is not None

    @property
    def backend(self) -> EntryBackend | None:
        """Return the persistent backend, if any."""
        return self._backend

    @property
    def validator_version(self) -> str:
        """Return the current validator version."""
        return self._validator_version

    @property
    def max_size_bytes(self) -> int:
        """Return the in-memory size budget."""
        return self._max_size_bytes

    def get(
        self,
        key: CacheKey,
        content_hash: ContentHash,
    ) -> tuple[ValidationResult | None, bool]:
        """Return a deep copy of the cached result when the entry is valid.

        A memory miss falls back to a bounded read from the backend. Missing,
        unreadable, corrupt, or stale entries are a miss; stale entries are
        removed.

        Returns
        -------
        tuple[object | None, bool]
            ``(result, True)`` on a hit, ``(None, False)`` on a miss.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            epoch = self._epoch
        from_backend = False
        if entry is None and self._backend is not None and epoch % 2 == 0:
            entry = self._cold_read(key)
            from_backend = entry is not None
        if entry is None:
            self._count_lookup(key, hit=False)
            return None, False
        reason = self._stale_reason(entry, content_hash, now)
        if reason is not None:
            self._drop_stale(entry, reason)
            self._count_lookup(key, hit=False)
            return None, False
        if from_backend and not self._install(entry, epoch):
            self._count_lookup(key, hit=False)
            return None, False
        self._count_lookup(key, hit=True)
        return copy.deepcopy(entry.result), True

    def set(
        self,
        key: CacheKey,
        content_hash: ContentHash,
        result: ValidationResult,
        metadata: EntryMetadata | None = None,
    ) -> None:
        """Store a deep copy of ``result`` and schedule its persistent write.

        The entry is visible to ``get`` on return. Persistence failures are
        logged and counted, never raised.

        Raises
        ------
        ValueError
            Raised when ``key`` or ``content_hash`` is empty.
        """
        if not key:
            msg = "Cache key must be a non-empty string."
            raise ValueError(msg)
        if not content_hash:
            msg = "Content hash must be a non-empty string."
            raise ValueError(msg)
        metadata = _frozen_metadata(metadata)
        stored = copy.deepcopy(result)
        result_bytes = encode_result(stored)
        size_bytes = _estimate_size(metadata, result_bytes)
        persistable = (
            self._backend is not None
            and result_bytes is not None
            and len(result_bytes) <= self._max_entry_bytes
            and result_round_trips(stored, result_bytes, result_type=self._result_type)
        )
        created_at = self._clock()
        with self._lock:
            self._sequence += 1
            entry = CacheEntry(
                key=key,
                content_hash=content_hash,
                result=stored,
                created_at=created_at,
                validator_version=self._validator_version,
                metadata=metadata,
                size_bytes=size_bytes,
                sequence=self._sequence,
            )
            self._insert_locked(entry)
            self._counters.writes += 1
            evicted = self._evict_locked()
            persist = persistable and self._writer is not None and not self._closed
            if persist:
                self._pending[key] = entry
        record_cache_event("write")
        record_cache_event("eviction", count=evicted)
        if persist and result_bytes is not None:
            self._submit(self._persist, entry, result_bytes)
        elif self._backend is not None:
            logger.debug("Keeping cache entry %s memory-only", key)

    def get_or_validate(
        self,
        key: CacheKey,
        content_hash: ContentHash,
        loader: Callable[[], ValidationResult],
        metadata: EntryMetadata | None = None,
    ) -> ValidationResult:
        """Return the cached result or compute, cache, and return a fresh one.

        Returns
        -------
        object
            Cached or freshly computed validation result.

        Raises
        ------
        Exception
            Re-raises whatever ``loader`` raised; nothing is cached then.
        """
        result, found = self.get(key, content_hash)
        if found:
            return result
        try:
            value = loader()
        except Exception as exc:
            logger.warning("Validation failed for %s: %s", key, exc)
            raise
        self.set(key, content_hash, value, metadata)
        return value

    def invalidate(
        self,
        changed_files: Iterable[str | PurePath] = (),
        changed_deps: Iterable[PackageId] = (),
    ) -> int:
        """Remove every entry whose files or dependencies changed.

        Returns
        -------
        int
            Number of distinct keys removed from memory or the backend.
        """
        changes = ChangeSet.build(changed_files, changed_deps)
        if changes.empty:
            return 0
        removed: set[CacheKey] = set()
        with self._disk_lock:
            with self._lock:
                self._epoch += 1
                keys = self._index.affected_keys(changes)
                for key in keys:
                    self._remove_locked(key)
                for key, pending in list(self._pending.items()):
                    if key in keys or changes.matches(pending.metadata):
                        del self._pending[key]
                        keys.add(key)
            try:
                removed = keys | self._invalidate_persisted(changes, keys)
            finally:
                with self._lock:
                    self._epoch += 1
                    self._counters.invalidations += len(removed)
        record_cache_event("invalidation", count=len(removed))
        logger.debug(
            "Invalidated %d cache entries for %d files and %d dependencies",
            len(removed),
            len(changes.file_parts),
            len(changes.dependencies),
        )
        return len(removed)

    def clear(self) -> None:
        """Remove every entry from memory and the backend and reset stats."""
        with self._disk_lock:
            with self._lock:
                self._epoch += 1
                self._entries.clear()
                self._index.clear()
                self._age_heap.clear()
                self._pending.clear()
                self._memory_bytes = 0
            try:
                if self._backend is not None:
                    self._backend.clear()
            except CachePersistenceError as exc:
                logger.warning("Failed to clear persisted cache entries: %s", exc)
            finally:
                with self._lock:
                    self._epoch += 1
                    self._counters = _Counters()

    def stats(self) -> CacheStats:
        """Return a snapshot of cache counters.

        Returns
        -------
        CacheStats
            Counter snapshot.
        """
        with self._lock:
            counters = self._counters
            return CacheStats(
                hits=counters.hits,
                misses=counters.misses,
                invalidations=counters.invalidations,
                writes=counters.writes,
                evictions=counters.evictions,
                expirations=counters.expirations,
                persist_errors=counters.persist_errors,
                entry_count=len(self._entries),
                memory_bytes=self._memory_bytes,
                max_size_bytes=self._max_size_bytes,
            )

    def memory_info(self) -> dict[str, object]:
        """Return in-memory usage against the budget.

        Returns
        -------
        dict[str, object]
            Entry count, bytes used, budget, and utilization ratio.
        """
        with self._lock:
            used = self._memory_bytes
            count = len(self._entries)
        return {
            "entry_count": count,
            "memory_bytes": used,
            "max_size_bytes": self._max_size_bytes,
            "utilization": used / self._max_size_bytes,
        }

    def run_maintenance(self) -> CacheMaintenance:
        """Expire aged and version-mismatched entries and re-enforce the budget.

        Backend failures are logged and counted in the result; the next run
        retries them.

        Returns
        -------
        CacheMaintenance
            Counts of expired, evicted, and persisted entries removed.
        """
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in stale:
                self._remove_locked(key)
            self._counters.expirations += len(stale)
            evicted = self._evict_locked()
        disk_expired, errors = self._expire_persisted(now)
        record_cache_event("expiration", count=len(stale) + disk_expired)
        record_cache_event("eviction", count=evicted)
        result = CacheMaintenance(
            expired=len(stale),
            evicted=evicted,
            disk_expired=disk_expired,
            errors=errors,
        )
        logger.debug("Cache maintenance: %s", result)
        return result

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued persistent writes.

        Returns
        -------
        bool
            ``True`` when every queued write finished within ``timeout``.
        """
        with self._lock:
            futures = set(self._futures)
        if not futures:
            return True
        _done, not_done = wait(futures, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Stop maintenance, drain the writer, and close the backend."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timer = self._maintenance_timer
            self._maintenance_timer = None
        if timer is not None:
            timer.cancel()
        if self._writer is not None:
            self._writer.shutdown(wait=True)
        if self._backend is not None:
            self._backend.close()

    def _stale_reason(
        self,
        entry: CacheEntry,
        content_hash: ContentHash,
        now: float,
    ) -> StaleReason | None:
        if entry.content_hash != content_hash:
            return "hash"
        if entry.age_s(now) > self._max_age_s:
            return "expired"
        if entry.validator_version != self._validator_version:
            return "version"
        return None

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return (
            entry.age_s(now) > self._max_age_s
            or entry.validator_version != self._validator_version
        )

    def _count_lookup(self, key: CacheKey, *, hit: bool) -> None:
        with self._lock:
            if hit:
                self._counters.hits += 1
            else:
                self._counters.misses += 1
        logger.debug("Cache %s for %s", "hit" if hit else "miss", key)
        if self._monitor is not None:
            self._monitor.record_cache_lookup(hit=hit)
        else:
            record_cache_event("hit" if hit else "miss")

    def _cold_read(self, key: CacheKey) -> CacheEntry | None:
        backend = self._backend
        if backend is None:
            return None
        try:
            payload = backend.read(key)
        except CachePersistenceError as exc:
            logger.debug("Cold read failed for %s: %s", key, exc)
            return None
        if payload is None:
            return None
        try:
            entry = decode_entry(payload, result_type=self._result_type)
        except CacheDecodeError as exc:
            logger.debug("Discarding unreadable cache entry for %s: %s", key, exc)
            self._submit(self._delete_persisted, key)
            return None
        if entry.key != key:
            return None
        return entry

    def _install(self, entry: CacheEntry, epoch: int) -> bool:
        with self._lock:
            if self._epoch != epoch:
                return False
            if entry.key in self._entries:
                return True
            self._sequence += 1
            self._insert_locked(msgspec.structs.replace(entry, sequence=self._sequence))
            evicted = self._evict_locked()
        record_cache_event("eviction", count=evicted)
        return True

    def _drop_stale(self, entry: CacheEntry, reason: StaleReason) -> None:
        with self._lock:
            current = self._entries.get(entry.key)
            if current is not None and current.sequence == entry.sequence:
                self._remove_locked(entry.key)
            if reason != "hash":
                self._counters.expirations += 1
        logger.debug("Dropping stale cache entry %s (%s)", entry.key, reason)
        if reason != "hash":
            record_cache_event("expiration")
        self._submit(self._delete_persisted, entry.key)

    def _insert_locked(self, entry: CacheEntry) -> None:
        self._remove_locked(entry.key)
        self._entries[entry.key] = entry
        self._index.add(entry.key, entry.metadata)
        self._memory_bytes += entry.size_bytes
        heapq.heappush(self._age_heap, (entry.created_at, entry.sequence, entry.key))

    def _remove_locked(self, key: CacheKey) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        self._index.remove(key)
        self._memory_bytes -= entry.size_bytes
        if len(self._age_heap) > 2 * len(self._entries) + _HEAP_SLACK:
            self._age_heap = [
                (item.created_at, item.sequence, item.key) for item in self._entries.values()
            ]
            heapq.heapify(self._age_heap)
        return entry

    def _evict_locked(self) -> int:
        evicted = 0
        while self._memory_bytes > self._max_size_bytes and self._age_heap:
            _created_at, sequence, key = heapq.heappop(self._age_heap)
            entry = self._entries.get(key)
            if entry is None or entry.sequence != sequence:
                continue
            self._remove_locked(key)
            evicted += 1
        self._counters.evictions += evicted
        return evicted

    def _submit(self, fn: Callable[..., None], *args: object) -> None:
        with self._lock:
            writer = self._writer
            if writer is None or self._closed:
                return
            future = writer.submit(fn, *args)
            self._futures.add(future)
        future.add_done_callback(self._writer_done)

    def _writer_done(self, future: Future[None]) -> None:
        with self._lock:
            self._futures.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Cache writer task failed: %s", exc)

    def _persist(self, entry: CacheEntry, result_bytes: bytes) -> None:
        backend = self._backend
        if backend is None:
            return
        with self._disk_lock:
            with self._lock:
                if self._pending.get(entry.key) is not entry:
                    return
            try:
                payload = encode_entry(entry, result_bytes=result_bytes, compress=self._compress)
                backend.write(entry.key, payload)
            except CachePersistenceError as exc:
                with self._lock:
                    self._counters.persist_errors += 1
                logger.warning("Failed to persist cache entry %s: %s", entry.key, exc)
                record_cache_event("persist_error")
            finally:
                with self._lock:
                    if self._pending.get(entry.key) is entry:
                        del self._pending[entry.key]

    def _delete_persisted(self, key: CacheKey) -> None:
        backend = self._backend
        if backend is None:
            return
        with self._disk_lock:
            with self._lock:
                if key in self._entries or key in self._pending:
                    return
            try:
                backend.delete(key)
            except CachePersistenceError as exc:
                with self._lock:
                    self._counters.persist_errors += 1
                logger.warning("Failed to delete cache entry %s: %s", key, exc)

    def _invalidate_persisted(
        self,
        changes: ChangeSet,
        keys: set[CacheKey],
    ) -> set[CacheKey]:
        backend = self._backend
        if backend is None:
            return set()
        removed: set[CacheKey] = set()
        try:
            for key in keys:
                backend.delete(key)
            matched: list[CacheKey] = []
            for payload in backend.scan():
                try:
                    persisted = decode_persisted(payload)
                except CacheDecodeError:
                    continue
                if persisted.key in keys:
                    continue
                metadata = EntryMetadata(
                    files=persisted.files,
                    dependencies=persisted.dependencies,
                )
                if changes.matches(metadata):
                    matched.append(persisted.key)
            for key in matched:
                if backend.delete(key):
                    removed.add(key)
        except CachePersistenceError as exc:
            with self._lock:
                self._counters.persist_errors += 1
            logger.warning("Failed to invalidate persisted cache entries: %s", exc)
        return removed

    def _expire_persisted(self, now: float) -> tuple[int, int]:
        backend = self._backend
        if backend is None:
            return 0, 0
        expired = 0
        with self._disk_lock:
            try:
                stale: list[CacheKey] = []
                for payload in backend.scan():
                    try:
                        persisted = decode_persisted(payload)
                    except CacheDecodeError:
                        continue
                    too_old = now - persisted.created_at > self._max_age_s
                    if too_old or persisted.validator_version != self._validator_version:
                        stale.append(persisted.key)
                for key in stale:
                    if backend.delete(key):
                        expired += 1
                expired += backend.maintain()
            except CachePersistenceError as exc:
                logger.warning("Persistent cache maintenance failed: %s", exc)
                return expired, 1
        return expired, 0

    def _schedule_maintenance(self) -> None:
        interval = self._maintenance_interval_s
        if interval is None:
            return
        timer = threading.Timer(interval, self._maintenance_tick)
        timer.daemon = True
        with self._lock:
            if self._closed:
                return
            self._maintenance_timer = timer
        timer.start()

    def _maintenance_tick(self) -> None:
        try:
            self.run_maintenance()
        except Exception:
            logger.exception("Scheduled cache maintenance failed")
        finally:
            self._schedule_maintenance()


def _frozen_metadata(metadata: EntryMetadata | None) -> EntryMetadata:
    if metadata is None:
        return EntryMetadata()
    return msgspec.structs.replace(
        metadata,
        files=tuple(str(path) for path in metadata.files),
        dependencies=tuple(metadata.dependencies),
    )


def _estimate_size(metadata: EntryMetadata, result_bytes: bytes | None) -> int:
    if metadata.size_bytes is not None:
        return max(0, metadata.size_bytes)
    if result_bytes is None:
        return FALLBACK_ENTRY_SIZE_BYTES
    return len(result_bytes)


__all__ = [
    "DEFAULT_MAX_AGE_S",
    "DEFAULT_MAX_ENTRY_BYTES",
    "DEFAULT_MAX_SIZE_BYTES",
    "FALLBACK_ENTRY_SIZE_BYTES",
    "ValidationCacheStore",
]
