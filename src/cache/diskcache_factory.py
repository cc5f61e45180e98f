"""DiskCache construction, maintenance, and stats for the entry backend."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import msgspec
from diskcache import Cache

from core.config_base import config_fingerprint
from serde_msgspec import StructBaseStrict


class DiskCacheSettings(StructBaseStrict, frozen=True):
    """Tuning knobs passed straight to ``diskcache.Cache``."""

    size_limit_bytes: int = 1024 * 1024 * 1024
    cull_limit: int = 10
    eviction_policy: str = "least-recently-stored"
    statistics: bool = True
    timeout_seconds: float = 60.0
    sqlite_journal_mode: str | None = "wal"

    def fingerprint(self) -> str:
        """Return a stable fingerprint for these settings.

        Returns
        -------
        str
            SHA-256 hexdigest of every field.
        """
        return config_fingerprint(msgspec.structs.asdict(self))

    def cache_kwargs(self) -> dict[str, object]:
        """Return keyword arguments for ``diskcache.Cache``.

        Returns
        -------
        dict[str, object]
            Settings in DiskCache's own parameter names.
        """
        kwargs: dict[str, object] = {
            "size_limit": self.size_limit_bytes,
            "cull_limit": self.cull_limit,
            "eviction_policy": self.eviction_policy,
            "statistics": self.statistics,
        }
        if self.sqlite_journal_mode is not None:
            kwargs["sqlite_journal_mode"] = self.sqlite_journal_mode
        return kwargs


@dataclass(frozen=True)
class DiskCacheMaintenance:
    """Items removed by one maintenance pass."""

    expired: int
    culled: int

    @property
    def removed(self) -> int:
        """Return expired plus culled items."""
        return self.expired + self.culled


def build_entry_cache(root: Path, settings: DiskCacheSettings) -> Cache:
    """Open (creating if needed) the DiskCache under ``root``.

    Returns
    -------
    diskcache.Cache
        Cache configured from ``settings``.
    """
    return Cache(str(root), timeout=settings.timeout_seconds, **settings.cache_kwargs())


def run_cache_maintenance(cache: Cache) -> DiskCacheMaintenance:
    """Drop expired items, then cull down to the size limit.

    Returns
    -------
    DiskCacheMaintenance
        Counts of removed items.
    """
    expired = cache.expire(retry=True)
    culled = cache.cull(retry=True)
    return DiskCacheMaintenance(expired=int(expired), culled=int(culled))


def diskcache_stats_snapshot(cache: Cache) -> dict[str, int]:
    """Return volume, item count, and hit statistics for ``cache``.

    Returns
    -------
    dict[str, int]
        Snapshot suitable for logging.
    """
    hits, misses = cache.stats()
    return {"volume": cache.volume(), "count": len(cache), "hits": hits, "misses": misses}


__all__ = [
    "DiskCacheMaintenance",
    "DiskCacheSettings",
    "build_entry_cache",
    "diskcache_stats_snapshot",
    "run_cache_maintenance",
]
