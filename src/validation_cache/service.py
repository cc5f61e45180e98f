"""Facade wiring config, cache store, orchestrator, and coordinator together."""

from __future__ import annotations

import functools
import itertools
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Self

from batch.orchestrator import BatchOrchestrator, BatchTask, CancellationToken, TaskFn, TaskResult
from cache.entries import CacheStats, EntryMetadata, PackageId, ValidationResult
from cache.errors import CacheConfigurationError
from cache.persistence import build_entry_backend
from cache.store import ValidationCacheStore
from incremental.coordinator import IncrementalCoordinator
from obs.performance import Insight, PerformanceMonitor, PerformanceStats
from validation_cache.config import ValidationCacheConfig
from validation_cache.keys import content_hash_for_files, validation_cache_key
from validation_cache.protocols import DependencyGraph, PackageCatalog, Validator

if TYPE_CHECKING:
    from concurrent.futures import Future

    from incremental.types import CycleReport

logger = logging.getLogger(__name__)

_VALIDATION_IDS = itertools.count(1)


def build_cache_store(
    config: ValidationCacheConfig,
    *,
    result_type: type = object,
    monitor: PerformanceMonitor | None = None,
) -> ValidationCacheStore:
    """Build a cache store from config.

    ``result_type`` is what persisted results are decoded into; pass the
    validator's result class so structs and dataclasses survive a restart.

    Returns
    -------
    ValidationCacheStore
        Store backed by the configured backend, or memory-only when
        ``config.persistent`` is false.

    Raises
    ------
    CacheConfigurationError
        Raised when the cache directory is unusable.
    """
    backend = None
    if config.persistent:
        backend = build_entry_backend(
            config.backend,
            config.cache_dir.expanduser(),
            max_entry_bytes=config.max_entry_bytes,
            diskcache_settings=config.diskcache,
        )
    return ValidationCacheStore(
        backend=backend,
        max_age_s=config.max_age_s,
        max_size_bytes=config.max_size_bytes,
        validator_version=config.validator_version,
        compress=config.compress,
        max_entry_bytes=config.max_entry_bytes,
        result_type=result_type,
        maintenance_interval_s=config.maintenance_interval_s,
        monitor=monitor,
    )


class ValidationCacheService:
    """Cached, parallel, incrementally invalidated package validation."""

    def __init__(
        self,
        *,
        catalog: PackageCatalog,
        validator: Validator,
        graph: DependencyGraph,
        config: ValidationCacheConfig | None = None,
        options: Mapping[str, object] | None = None,
        result_type: type = object,
        fallback_to_memory: bool = True,
    ) -> None:
        self._catalog = catalog
        self._validator = validator
        self._graph = graph
        self._config = config or ValidationCacheConfig()
        self._options = dict(options or {})
        self._monitor = PerformanceMonitor(history_limit=self._config.history_limit)
        try:
            self._store = build_cache_store(
                self._config, result_type=result_type, monitor=self._monitor
            )
        except CacheConfigurationError as exc:
            if not fallback_to_memory:
                raise
            logger.warning("Persistent cache unavailable, using memory only: %s", exc)
            self._config = self._config.with_overrides(persistent=False)
            self._store = build_cache_store(
                self._config, result_type=result_type, monitor=self._monitor
            )
        self._orchestrator = BatchOrchestrator(
            batch_size=self._config.batch_size,
            monitor=self._monitor,
        )
        self._coordinator: IncrementalCoordinator | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def config(self) -> ValidationCacheConfig:
        """Return the effective config."""
        return self._config

    @property
    def store(self) -> ValidationCacheStore:
        """Return the cache store."""
        return self._store

    @property
    def monitor(self) -> PerformanceMonitor:
        """Return the performance monitor."""
        return self._monitor

    @property
    def orchestrator(self) -> BatchOrchestrator:
        """Return the batch orchestrator."""
        return self._orchestrator

    def validate_package(self, package_id: PackageId) -> ValidationResult:
        """Return the validation result for a package, from cache when valid.

        Returns
        -------
        object
            Validation result.

        Raises
        ------
        Exception
            Whatever the validator raised; failures are never cached.
        """
        files = tuple(self._catalog.package_files(package_id))
        key = validation_cache_key(package_id, self._options)
        content_hash = content_hash_for_files(files)
        metadata = EntryMetadata(
            files=tuple(str(path) for path in files),
            dependencies=tuple(self._catalog.dependencies_of(package_id)),
        )
        return self._store.get_or_validate(
            key,
            content_hash,
            functools.partial(self._run_validator, package_id),
            metadata,
        )

    def task_for(self, package_id: PackageId) -> TaskFn:
        """Return a zero-argument task validating ``package_id``.

        Returns
        -------
        Callable[[], object]
            Task suitable for ``BatchOrchestrator.run``.
        """
        return functools.partial(self.validate_package, package_id)

    def validate_packages(
        self,
        package_ids: Iterable[PackageId] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> dict[PackageId, TaskResult]:
        """Validate packages in parallel batches.

        Parameters
        ----------
        package_ids
            Packages to validate; every catalog package when omitted.
        cancel
            Optional token stopping dispatch of further tasks.

        Returns
        -------
        dict[str, TaskResult]
            One result per package, in input order.
        """
        ids = list(self._catalog.package_ids() if package_ids is None else package_ids)
        tasks = [
            BatchTask(task_id=package_id, fn=self.task_for(package_id), kind="validation")
            for package_id in dict.fromkeys(ids)
        ]
        return self._orchestrator.run(tasks, self._config.concurrency, cancel=cancel)

    def coordinator(self) -> IncrementalCoordinator:
        """Return the change coordinator, creating it on first use.

        Returns
        -------
        IncrementalCoordinator
            Coordinator bound to this service's store and orchestrator.
        """
        if self._coordinator is None:
            self._coordinator = IncrementalCoordinator(
                store=self._store,
                orchestrator=self._orchestrator,
                catalog=self._catalog,
                graph=self._graph,
                task_factory=self.task_for,
                debounce_s=self._config.debounce_s,
                concurrency=self._config.concurrency,
            )
        return self._coordinator

    def on_files_changed(self, paths: Iterable[str]) -> Future[CycleReport]:
        """Forward a change event to the coordinator.

        Returns
        -------
        concurrent.futures.Future[CycleReport]
            Resolves when the cycle handling ``paths`` finishes.
        """
        return self.coordinator().on_files_changed(paths)

    def clear_cache(self) -> None:
        """Drop every cached result and reset cache counters."""
        self._store.clear()

    def cache_stats(self) -> CacheStats:
        """Return cache counters.

        Returns
        -------
        CacheStats
            Cache statistics snapshot.
        """
        return self._store.stats()

    def stats(self) -> PerformanceStats:
        """Return performance statistics.

        Returns
        -------
        PerformanceStats
            Monitor statistics snapshot.
        """
        return self._monitor.stats()

    def insights(self) -> tuple[Insight, ...]:
        """Return performance insights, most severe first.

        Returns
        -------
        tuple[Insight, ...]
            Current insights.
        """
        return self._monitor.insights()

    def close(self) -> None:
        """Stop the coordinator and flush the store."""
        if self._coordinator is not None:
            self._coordinator.close()
        self._store.close()

    def _run_validator(self, package_id: PackageId) -> ValidationResult:
        op_id = f"validate-{next(_VALIDATION_IDS)}:{package_id}"
        with self._monitor.op(op_id, kind="validator", metadata={"package_id": package_id}):
            return self._validator.validate(package_id)


__all__ = ["ValidationCacheService", "build_cache_store"]
