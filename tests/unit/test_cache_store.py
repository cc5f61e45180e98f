"""Tests for the validation cache store."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

import pytest

from cache.entries import EntryMetadata
from cache.errors import CacheConfigurationError
from cache.persistence import FileEntryBackend, build_entry_backend
from cache.store import FALLBACK_ENTRY_SIZE_BYTES, ValidationCacheStore
from tests.test_helpers.packages import ManualClock

KEY = "validation:pkg-a"
HASH = "hash-1"
OTHER_HASH = "hash-2"
RESULT = {"package": "pkg-a", "diagnostics": ["unused texture"], "ok": True}
ENTRY_SIZE = 100
BUDGET = 3 * ENTRY_SIZE
THREADS = 8
OPS_PER_THREAD = 1000
MAX_ENTRY_BYTES = 1024 * 1024


def _reopen(cache_dir: Path, clock: ManualClock, **kwargs: object) -> ValidationCacheStore:
    backend = build_entry_backend("files", cache_dir, max_entry_bytes=MAX_ENTRY_BYTES)
    return ValidationCacheStore(backend=backend, clock=clock, **kwargs)  # type: ignore[arg-type]


def test_set_then_get_returns_deep_copy(memory_store: ValidationCacheStore) -> None:
    """Ensure stored and returned results are isolated from caller mutation."""
    value = {"items": [1, 2]}
    memory_store.set(KEY, HASH, value)
    value["items"].append(3)

    first, found = memory_store.get(KEY, HASH)
    assert found
    assert first == {"items": [1, 2]}
    assert isinstance(first, dict)
    first["items"].append(4)

    second, _ = memory_store.get(KEY, HASH)
    assert second == {"items": [1, 2]}


def test_get_unknown_key_is_miss(memory_store: ValidationCacheStore) -> None:
    """Ensure a missing key returns (None, False) and counts a miss."""
    assert memory_store.get("missing", HASH) == (None, False)
    stats = memory_store.stats()
    assert stats.misses == 1
    assert stats.hits == 0


def test_content_hash_change_invalidates(memory_store: ValidationCacheStore) -> None:
    """Ensure a changed content hash is a miss and drops the entry."""
    memory_store.set(KEY, HASH, RESULT)

    assert memory_store.get(KEY, OTHER_HASH) == (None, False)
    assert memory_store.stats().entry_count == 0
    assert memory_store.get(KEY, HASH) == (None, False)


def test_age_expiry(clock: ManualClock) -> None:
    """Ensure entries older than max_age_s are never served."""
    store = ValidationCacheStore(max_age_s=60.0, clock=clock)
    store.set(KEY, HASH, RESULT)
    clock.advance(59.0)
    assert store.get(KEY, HASH)[1]

    clock.advance(2.0)
    assert store.get(KEY, HASH) == (None, False)
    assert store.stats().expirations == 1


def test_invalidate_by_changed_file(memory_store: ValidationCacheStore) -> None:
    """Ensure entries recording a changed file are removed."""
    memory_store.set(
        KEY,
        HASH,
        RESULT,
        EntryMetadata(files=("/mods/pkg-a/textures/wall.png",)),
    )
    memory_store.set("validation:pkg-b", HASH, RESULT, EntryMetadata(files=("/mods/pkg-b/a.txt",)))

    assert memory_store.invalidate(changed_files=["pkg-a/textures/wall.png"]) == 1
    assert memory_store.get(KEY, HASH) == (None, False)
    assert memory_store.get("validation:pkg-b", HASH)[1]
    assert memory_store.stats().invalidations == 1


def test_invalidate_by_changed_dependency(memory_store: ValidationCacheStore) -> None:
    """Ensure entries declaring a changed dependency are removed."""
    memory_store.set(KEY, HASH, RESULT, EntryMetadata(dependencies=("core",)))
    memory_store.set("validation:core", HASH, RESULT)

    assert memory_store.invalidate(changed_deps=["core"]) == 1
    assert memory_store.get(KEY, HASH) == (None, False)


def test_invalidate_without_changes_is_noop(memory_store: ValidationCacheStore) -> None:
    """Ensure an empty change set removes nothing."""
    memory_store.set(KEY, HASH, RESULT, EntryMetadata(files=("a.txt",)))
    assert memory_store.invalidate() == 0
    assert memory_store.stats().entry_count == 1


def test_clear_is_idempotent(memory_store: ValidationCacheStore) -> None:
    """Ensure clear removes everything, resets counters, and can repeat."""
    memory_store.set(KEY, HASH, RESULT)
    memory_store.get(KEY, HASH)

    memory_store.clear()
    memory_store.clear()

    stats = memory_store.stats()
    assert stats.entry_count == 0
    assert stats.hits == 0
    assert stats.writes == 0
    assert stats.memory_bytes == 0


def test_budget_evicts_oldest_entries(clock: ManualClock) -> None:
    """Ensure exceeding the size budget evicts the oldest entry first."""
    store = ValidationCacheStore(max_size_bytes=BUDGET, clock=clock)
    metadata = EntryMetadata(size_bytes=ENTRY_SIZE)
    for name in ("a", "b", "c", "d"):
        store.set(name, HASH, RESULT, metadata)
        clock.advance(1.0)

    stats = store.stats()
    assert stats.evictions == 1
    assert stats.entry_count == 3
    assert stats.memory_bytes <= BUDGET
    assert store.get("a", HASH) == (None, False)
    assert all(store.get(name, HASH)[1] for name in ("b", "c", "d"))


def test_unencodable_result_uses_fallback_size(
    file_store: ValidationCacheStore,
    file_backend: FileEntryBackend,
) -> None:
    """Ensure results msgpack cannot encode stay memory-only."""
    marker = object()
    file_store.set(KEY, HASH, {"marker": marker})
    assert file_store.flush(timeout=5.0)

    assert file_store.stats().memory_bytes == FALLBACK_ENTRY_SIZE_BYTES
    assert file_store.get(KEY, HASH)[1]
    assert not file_backend.path_for(KEY).exists()


def test_set_rejects_empty_key_or_hash(memory_store: ValidationCacheStore) -> None:
    """Ensure programmer errors raise ValueError."""
    with pytest.raises(ValueError, match="key"):
        memory_store.set("", HASH, RESULT)
    with pytest.raises(ValueError, match="hash"):
        memory_store.set(KEY, "", RESULT)


def test_invalid_settings_raise() -> None:
    """Ensure non-positive limits are rejected at construction."""
    with pytest.raises(CacheConfigurationError):
        ValidationCacheStore(max_size_bytes=0)
    with pytest.raises(CacheConfigurationError):
        ValidationCacheStore(max_age_s=-1.0)


def test_get_or_validate_caches_success(memory_store: ValidationCacheStore) -> None:
    """Ensure the loader runs once and later calls hit the cache."""
    calls: list[int] = []

    def loader() -> dict[str, object]:
        calls.append(1)
        return dict(RESULT)

    assert memory_store.get_or_validate(KEY, HASH, loader) == RESULT
    assert memory_store.get_or_validate(KEY, HASH, loader) == RESULT
    assert len(calls) == 1


def test_get_or_validate_does_not_cache_failures(memory_store: ValidationCacheStore) -> None:
    """Ensure loader exceptions propagate and nothing is cached."""

    def loader() -> object:
        msg = "broken manifest"
        raise RuntimeError(msg)

    with pytest.raises(RuntimeError, match="broken manifest"):
        memory_store.get_or_validate(KEY, HASH, loader)
    assert memory_store.stats().entry_count == 0
    assert memory_store.stats().writes == 0


def test_concurrent_set_and_get(memory_store: ValidationCacheStore) -> None:
    """Ensure every thread reads back each of its own writes immediately."""
    errors: list[BaseException] = []

    def worker(index: int) -> None:
        try:
            for op in range(OPS_PER_THREAD):
                key = f"key-{index}-{op}"
                memory_store.set(key, HASH, {"op": op})
                value, found = memory_store.get(key, HASH)
                if found is not True or value != {"op": op}:
                    errors.append(AssertionError(f"{key}: got {value!r}, found={found}"))
        except BaseException as exc:  # noqa: BLE001 - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(THREADS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    stats = memory_store.stats()
    assert stats.writes == THREADS * OPS_PER_THREAD
    assert stats.hits == THREADS * OPS_PER_THREAD
    assert stats.misses == 0
    assert stats.entry_count == THREADS * OPS_PER_THREAD


def test_persisted_entry_survives_restart(cache_dir: Path, clock: ManualClock) -> None:
    """Ensure a new store instance serves entries written by an earlier one."""
    with _reopen(cache_dir, clock) as first:
        first.set(KEY, HASH, RESULT, EntryMetadata(files=("pkg-a/a.txt",)))
        assert first.flush(timeout=5.0)

    with _reopen(cache_dir, clock) as second:
        assert second.get(KEY, HASH) == (RESULT, True)
        assert second.stats().entry_count == 1


@dataclass(frozen=True)
class LintReport:
    package: str
    ok: bool
    errors: tuple[str, ...] = ()


def test_typed_result_survives_restart(cache_dir: Path, clock: ManualClock) -> None:
    """Ensure a dataclass result reads back equal when its type is configured."""
    report = LintReport(package="pkg-a", ok=False, errors=("missing icon", "bad scale"))
    with _reopen(cache_dir, clock, result_type=LintReport) as first:
        first.set(KEY, HASH, report)
        assert first.flush(timeout=5.0)
        assert first.stats().persist_errors == 0

    with _reopen(cache_dir, clock, result_type=LintReport) as second:
        value, found = second.get(KEY, HASH)
        assert found
        assert value == report
        assert isinstance(value, LintReport)


@pytest.mark.parametrize(
    "result",
    [
        LintReport(package="pkg-a", ok=True),
        ("pkg-a", 1),
        {"errors": ("missing icon",)},
    ],
)
def test_untyped_lossy_result_stays_in_memory(
    cache_dir: Path,
    clock: ManualClock,
    result: object,
) -> None:
    """Ensure results that would read back changed are never persisted."""
    with _reopen(cache_dir, clock) as first:
        first.set(KEY, HASH, result)
        assert first.flush(timeout=5.0)
        assert first.get(KEY, HASH) == (result, True)

    with _reopen(cache_dir, clock) as second:
        assert second.get(KEY, HASH) == (None, False)


def test_metadata_is_frozen_at_set(memory_store: ValidationCacheStore) -> None:
    """Ensure later edits to caller-owned lists do not reach the stored entry."""
    files = ["pkg-a/a.txt"]
    dependencies = ["core"]
    metadata = EntryMetadata(files=files, dependencies=dependencies)  # type: ignore[arg-type]
    memory_store.set(KEY, HASH, RESULT, metadata)
    files[0] = "pkg-b/b.txt"
    dependencies.append("ui")

    assert memory_store.invalidate(changed_files=["pkg-b/b.txt"], changed_deps=["ui"]) == 0
    assert memory_store.get(KEY, HASH) == (RESULT, True)
    assert memory_store.invalidate(changed_files=["pkg-a/a.txt"]) == 1


def test_validator_version_change_is_miss(cache_dir: Path, clock: ManualClock) -> None:
    """Ensure entries from another validator version are never served."""
    with _reopen(cache_dir, clock, validator_version="1") as first:
        first.set(KEY, HASH, RESULT)
        assert first.flush(timeout=5.0)

    with _reopen(cache_dir, clock, validator_version="2") as second:
        assert second.get(KEY, HASH) == (None, False)


def test_corrupt_entry_file_is_miss(
    file_store: ValidationCacheStore,
    file_backend: FileEntryBackend,
) -> None:
    """Ensure unreadable payloads are treated as misses and removed."""
    path = file_backend.path_for(KEY)
    path.write_bytes(b"\x01not-zlib-data")

    assert file_store.get(KEY, HASH) == (None, False)
    assert file_store.flush(timeout=5.0)
    assert not path.exists()


def test_invalidate_reaches_persisted_entries(cache_dir: Path, clock: ManualClock) -> None:
    """Ensure invalidation removes persisted entries not loaded in memory."""
    with _reopen(cache_dir, clock) as first:
        first.set(KEY, HASH, RESULT, EntryMetadata(dependencies=("core",)))
        first.set("validation:other", HASH, RESULT)
        assert first.flush(timeout=5.0)

    with _reopen(cache_dir, clock) as second:
        assert second.invalidate(changed_deps=["core"]) == 1
        assert second.get(KEY, HASH) == (None, False)
        assert second.get("validation:other", HASH)[1]


def test_invalidate_cancels_queued_write(
    file_store: ValidationCacheStore,
    file_backend: FileEntryBackend,
) -> None:
    """Ensure an invalidated entry is never resurrected on disk."""
    file_store.set(KEY, HASH, RESULT, EntryMetadata(files=("pkg-a/a.txt",)))
    file_store.invalidate(changed_files=["a.txt"])
    assert file_store.flush(timeout=5.0)

    assert not file_backend.path_for(KEY).exists()


def test_clear_removes_persisted_entries(
    file_store: ValidationCacheStore,
    file_backend: FileEntryBackend,
) -> None:
    """Ensure clear empties the backend as well as memory."""
    file_store.set(KEY, HASH, RESULT)
    assert file_store.flush(timeout=5.0)
    assert file_backend.path_for(KEY).exists()

    file_store.clear()

    assert not file_backend.path_for(KEY).exists()
    assert file_store.get(KEY, HASH) == (None, False)


def test_run_maintenance_expires_memory_and_disk(
    file_store: ValidationCacheStore,
    file_backend: FileEntryBackend,
    clock: ManualClock,
) -> None:
    """Ensure maintenance removes aged entries from memory and disk."""
    file_store.set(KEY, HASH, RESULT)
    assert file_store.flush(timeout=5.0)
    clock.advance(2 * 24 * 60 * 60.0)

    result = file_store.run_maintenance()

    assert result.expired == 1
    assert result.disk_expired == 1
    assert result.errors == 0
    assert not file_backend.path_for(KEY).exists()


def test_memory_info_reports_utilization(clock: ManualClock) -> None:
    """Ensure memory_info reflects bytes used against the budget."""
    store = ValidationCacheStore(max_size_bytes=BUDGET, clock=clock)
    store.set(KEY, HASH, RESULT, EntryMetadata(size_bytes=ENTRY_SIZE))

    info = store.memory_info()
    assert info["entry_count"] == 1
    assert info["memory_bytes"] == ENTRY_SIZE
    assert info["utilization"] == pytest.approx(ENTRY_SIZE / BUDGET)
