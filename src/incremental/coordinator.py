"""Debounced change handling: affected-set computation, invalidation, re-dispatch.

State machine::

    IDLE -> DEBOUNCING -> COMPUTING -> INVALIDATING -> DISPATCHING -> IDLE

Change events while IDLE or DEBOUNCING join the pending set and reset the
single debounce timer. Events arriving during a cycle are queued and start a
new debounce once the cycle finishes. Invalidation always completes before
dispatch within a cycle.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from pathlib import PurePath
from typing import TYPE_CHECKING

from batch.orchestrator import BatchTask, CancellationToken, TaskFn
from incremental.impact import affected_packages
from incremental.types import AffectedPackages, CoordinatorState, CycleReport
from obs.otel.metrics import record_cycle_duration
from obs.otel.scopes import SCOPE_INCREMENTAL
from obs.otel.tracing import operation_span, set_span_attributes

if TYPE_CHECKING:
    from batch.orchestrator import BatchOrchestrator, TaskResult
    from cache.entries import PackageId
    from cache.store import ValidationCacheStore
    from validation_cache.protocols import DependencyGraph, PackageCatalog

logger = logging.getLogger(__name__)

type CycleListener = Callable[[CycleReport], None]
type TaskFactory = Callable[[PackageId], TaskFn]

DEFAULT_DEBOUNCE_S = 0.3


class IncrementalCoordinator:
    """Coalesce change events into invalidate-then-revalidate cycles."""

    def __init__(
        self,
        *,
        store: ValidationCacheStore,
        orchestrator: BatchOrchestrator,
        catalog: PackageCatalog,
        graph: DependencyGraph,
        task_factory: TaskFactory,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        concurrency: int = 1,
        batch_size: int | None = None,
    ) -> None:
        if debounce_s < 0:
            msg = f"debounce_s must be >= 0, got {debounce_s}."
            raise ValueError(msg)
        if concurrency <= 0:
            msg = f"concurrency must be positive, got {concurrency}."
            raise ValueError(msg)
        self._store = store
        self._orchestrator = orchestrator
        self._catalog = catalog
        self._graph = graph
        self._task_factory = task_factory
        self._debounce_s = debounce_s
        self._concurrency = concurrency
        self._batch_size = batch_size
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._state = CoordinatorState.IDLE
        self._pending: list[str] = []
        self._pending_futures: list[Future[CycleReport]] = []
        self._queued: list[str] = []
        self._queued_futures: list[Future[CycleReport]] = []
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._cycle_count = 0
        self._listeners: list[CycleListener] = []
        self._cancel = CancellationToken()
        self._closed = False

    @property
    def state(self) -> CoordinatorState:
        """Return the current state."""
        with self._lock:
            return self._state

    def on_cycle_complete(self, listener: CycleListener) -> None:
        """Register a callback invoked with every successful cycle report."""
        with self._lock:
            self._listeners.append(listener)

    def on_files_changed(self, paths: Iterable[str | PurePath]) -> Future[CycleReport]:
        """Record changed paths and return a future for the cycle handling them.

        Returns immediately; the cycle runs on the debounce timer thread.

        Returns
        -------
        concurrent.futures.Future[CycleReport]
            Resolves with the report of the cycle that processed ``paths``.

        Raises
        ------
        RuntimeError
            Raised after ``close``.
        """
        changed = [str(path) for path in paths]
        future: Future[CycleReport] = Future()
        with self._lock:
            if self._closed:
                msg = "IncrementalCoordinator is closed."
                raise RuntimeError(msg)
            if self._state in {CoordinatorState.IDLE, CoordinatorState.DEBOUNCING}:
                self._pending.extend(changed)
                self._pending_futures.append(future)
                self._set_state_locked(CoordinatorState.DEBOUNCING)
                self._reset_timer_locked()
            else:
                self._queued.extend(changed)
                self._queued_futures.append(future)
        logger.debug("Received %d changed paths", len(changed))
        return future

    def flush(self) -> bool:
        """Run a pending debounced cycle now, in the calling thread.

        Returns
        -------
        bool
            ``True`` when a pending cycle was run.
        """
        with self._lock:
            if self._state is not CoordinatorState.DEBOUNCING:
                return False
            generation = self._generation
        self._fire(generation)
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no cycle is pending, queued, or running.

        Returns
        -------
        bool
            ``True`` when the coordinator became idle within ``timeout``.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: self._state is CoordinatorState.IDLE and not self._queued,
                timeout=timeout,
            )

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting events, cancel pending work, and wait for a running cycle."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            cancelled = self._pending_futures + self._queued_futures
            self._pending.clear()
            self._pending_futures.clear()
            self._queued.clear()
            self._queued_futures.clear()
            if self._state is CoordinatorState.DEBOUNCING:
                self._set_state_locked(CoordinatorState.IDLE)
        self._cancel.cancel()
        for future in cancelled:
            future.cancel()
        self.wait_idle(timeout)

    def _set_state_locked(self, state: CoordinatorState) -> None:
        self._state = state
        self._changed.notify_all()

    def _set_state(self, state: CoordinatorState) -> None:
        with self._lock:
            self._set_state_locked(state)

    def _reset_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        timer = threading.Timer(self._debounce_s, self._fire, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not CoordinatorState.DEBOUNCING:
                return
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            paths = list(dict.fromkeys(self._pending))
            futures = list(self._pending_futures)
            self._pending.clear()
            self._pending_futures.clear()
            self._cycle_count += 1
            cycle_id = self._cycle_count
            self._set_state_locked(CoordinatorState.COMPUTING)
        report: CycleReport | None = None
        error: Exception | None = None
        try:
            report = self._run_cycle(cycle_id, paths)
        except Exception as exc:
            logger.exception("Incremental cycle %d failed", cycle_id)
            error = exc
        with self._lock:
            if self._queued and not self._closed:
                self._pending.extend(self._queued)
                self._pending_futures.extend(self._queued_futures)
                self._queued.clear()
                self._queued_futures.clear()
                self._set_state_locked(CoordinatorState.DEBOUNCING)
                self._reset_timer_locked()
            else:
                self._set_state_locked(CoordinatorState.IDLE)
            listeners = list(self._listeners)
        for future in futures:
            if error is not None:
                future.set_exception(error)
            elif report is not None:
                future.set_result(report)
        if report is None:
            return
        for listener in listeners:
            try:
                listener(report)
            except Exception:
                logger.exception("Cycle listener failed for cycle %d", cycle_id)

    def _run_cycle(self, cycle_id: int, paths: list[str]) -> CycleReport:
        start = time.monotonic()
        status = "ok"
        try:
            with operation_span(
                "incremental.cycle",
                scope_name=SCOPE_INCREMENTAL,
                attributes={"incremental.cycle_id": cycle_id, "incremental.path_count": len(paths)},
            ) as span:
                affected = affected_packages(paths, catalog=self._catalog, graph=self._graph)
                if affected.unowned_paths:
                    logger.debug(
                        "No owning package for %d changed paths",
                        len(affected.unowned_paths),
                    )
                self._set_state(CoordinatorState.INVALIDATING)
                invalidated = self._store.invalidate(
                    changed_files=paths,
                    changed_deps=affected.closure,
                )
                self._set_state(CoordinatorState.DISPATCHING)
                results = self._dispatch(affected)
                set_span_attributes(
                    span,
                    {
                        "incremental.affected_count": len(affected.closure),
                        "incremental.invalidated": invalidated,
                    },
                )
        except Exception:
            status = "error"
            raise
        finally:
            record_cycle_duration(time.monotonic() - start, status=status)
        report = CycleReport(
            cycle_id=cycle_id,
            affected=affected,
            invalidated=invalidated,
            results=results,
            duration_s=time.monotonic() - start,
        )
        logger.info(
            "Cycle %d: %d paths, %d packages affected, %d entries invalidated, %d failed",
            cycle_id,
            len(paths),
            len(affected.closure),
            invalidated,
            len(report.failed),
        )
        return report

    def _dispatch(self, affected: AffectedPackages) -> dict[PackageId, TaskResult]:
        if affected.empty:
            return {}
        tasks = [
            BatchTask(task_id=package_id, fn=self._task_factory(package_id), kind="validation")
            for package_id in affected.closure
        ]
        return dict(
            self._orchestrator.run(
                tasks,
                self._concurrency,
                batch_size=self._batch_size,
                cancel=self._cancel,
            )
        )


__all__ = [
    "DEFAULT_DEBOUNCE_S",
    "CycleListener",
    "IncrementalCoordinator",
    "TaskFactory",
]
