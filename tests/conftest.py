"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from cache.persistence import FileEntryBackend, build_entry_backend
from cache.store import ValidationCacheStore
from tests.test_helpers.packages import ManualClock

MAX_ENTRY_BYTES = 1024 * 1024


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "MODCACHE_DIR",
        "MODCACHE_MAX_AGE_S",
        "MODCACHE_MAX_SIZE_BYTES",
        "MODCACHE_PERSISTENT",
        "MODCACHE_BACKEND",
        "MODCACHE_CONCURRENCY",
        "MODCACHE_BATCH_SIZE",
        "MODCACHE_DEBOUNCE_S",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def clock() -> ManualClock:
    """Return a manually advanced clock."""
    return ManualClock()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Return a per-test cache directory."""
    return tmp_path / "cache"


@pytest.fixture
def file_backend(cache_dir: Path) -> FileEntryBackend:
    """Return an opened file backend."""
    backend = build_entry_backend("files", cache_dir, max_entry_bytes=MAX_ENTRY_BYTES)
    assert isinstance(backend, FileEntryBackend)
    return backend


@pytest.fixture
def memory_store(clock: ManualClock) -> Iterator[ValidationCacheStore]:
    """Return a memory-only store driven by the manual clock."""
    store = ValidationCacheStore(clock=clock)
    yield store
    store.close()


@pytest.fixture
def file_store(
    file_backend: FileEntryBackend,
    clock: ManualClock,
) -> Iterator[ValidationCacheStore]:
    """Return a store persisting to a temp directory."""
    store = ValidationCacheStore(backend=file_backend, clock=clock)
    yield store
    store.close()
