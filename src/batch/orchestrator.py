"""Bounded-concurrency batch execution with per-task failure capture.

Tasks are split into fixed-size batches that run one after another; inside a
batch at most ``concurrency`` tasks run at once. A failing task produces a
``FAILED`` result and never aborts the batch.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from batch.parallel import batch_count, chunked, with_current_context
from obs.otel.metrics import record_task_outcome
from obs.otel.scopes import SCOPE_BATCH
from obs.otel.tracing import operation_span, set_span_attributes

if TYPE_CHECKING:
    from obs.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

type TaskId = str
type TaskFn = Callable[[], object]

DEFAULT_BATCH_SIZE = 10

_RUN_IDS = itertools.count(1)


class TaskStatus(StrEnum):
    """Outcome of a single batch task."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BatchTask:
    """Independent unit of work closed over its inputs."""

    task_id: TaskId
    fn: TaskFn
    kind: str = "task"


@dataclass(frozen=True)
class TaskResult:
    """Captured outcome of a task."""

    task_id: TaskId
    status: TaskStatus
    value: object = None
    error_type: str | None = None
    error: str | None = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        """Return True when the task succeeded."""
        return self.status is TaskStatus.SUCCEEDED


@dataclass(frozen=True)
class BatchProgress:
    """Progress snapshot reported after each batch."""

    batch_index: int
    batch_count: int
    completed: int
    total: int
    succeeded: int
    failed: int
    cancelled: int


class CancellationToken:
    """Cooperative cancellation signal checked between task dispatches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return True once cancellation was requested."""
        return self._event.is_set()


class BatchOrchestrator:
    """Run independent tasks in sequential batches with bounded concurrency."""

    def __init__(
        self,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}."
            raise ValueError(msg)
        self._batch_size = batch_size
        self._monitor = monitor

    @property
    def batch_size(self) -> int:
        """Return the default batch size."""
        return self._batch_size

    def run(
        self,
        tasks: Iterable[BatchTask] | Mapping[TaskId, TaskFn],
        concurrency: int,
        *,
        batch_size: int | None = None,
        cancel: CancellationToken | None = None,
        on_batch: Callable[[BatchProgress], None] | None = None,
    ) -> dict[TaskId, TaskResult]:
        """Run every task and return one result per task id.

        Blocks until every batch finished or cancellation was observed.

        Parameters
        ----------
        tasks
            Tasks, or a mapping of task id to zero-argument callable.
        concurrency
            Maximum number of tasks running at once.
        batch_size
            Tasks per batch; defaults to the orchestrator's batch size.
        cancel
            Token checked before each dispatch; undispatched tasks are
            reported as ``CANCELLED``.
        on_batch
            Called with a progress snapshot after each batch.

        Returns
        -------
        dict[str, TaskResult]
            Results keyed by task id, in task order.

        Raises
        ------
        ValueError
            Raised when ``concurrency`` or ``batch_size`` is not positive or
            task ids are duplicated.
        """
        if concurrency <= 0:
            msg = f"concurrency must be positive, got {concurrency}."
            raise ValueError(msg)
        size = self._batch_size if batch_size is None else batch_size
        if size <= 0:
            msg = f"batch_size must be positive, got {size}."
            raise ValueError(msg)
        ordered = _normalize_tasks(tasks)
        run_id = next(_RUN_IDS)
        total_batches = batch_count(len(ordered), size)
        results: dict[TaskId, TaskResult] = {}
        attributes = {"batch.task_count": len(ordered), "batch.concurrency": concurrency}
        with operation_span("batch.run", scope_name=SCOPE_BATCH, attributes=attributes) as span:
            if ordered:
                with ThreadPoolExecutor(
                    max_workers=min(concurrency, len(ordered)),
                    thread_name_prefix="modcache-batch",
                ) as executor:
                    for index, batch in enumerate(chunked(ordered, size), start=1):
                        batch_results = self._run_batch(
                            executor,
                            batch,
                            run_id=run_id,
                            cancel=cancel,
                        )
                        results.update(batch_results)
                        progress = _progress(results, index, total_batches, len(ordered))
                        logger.info(
                            "Batch %d/%d done: %d/%d tasks, %d failed, %d cancelled",
                            progress.batch_index,
                            progress.batch_count,
                            progress.completed,
                            progress.total,
                            progress.failed,
                            progress.cancelled,
                        )
                        if on_batch is not None:
                            on_batch(progress)
            summary = _progress(results, total_batches, total_batches, len(ordered))
            set_span_attributes(
                span,
                {
                    "batch.succeeded": summary.succeeded,
                    "batch.failed": summary.failed,
                    "batch.cancelled": summary.cancelled,
                },
            )
        return {task.task_id: results[task.task_id] for task in ordered}

    def _run_batch(
        self,
        executor: ThreadPoolExecutor,
        batch: Sequence[BatchTask],
        *,
        run_id: int,
        cancel: CancellationToken | None,
    ) -> dict[TaskId, TaskResult]:
        results: dict[TaskId, TaskResult] = {}
        futures = {}
        execute = with_current_context(self._execute)
        for task in batch:
            if cancel is not None and cancel.cancelled:
                results[task.task_id] = _cancelled(task)
                continue
            futures[task.task_id] = executor.submit(execute, task, run_id, cancel)
        wait(futures.values())
        for task_id, future in futures.items():
            results[task_id] = future.result()
        return results

    def _execute(
        self,
        task: BatchTask,
        run_id: int,
        cancel: CancellationToken | None,
    ) -> TaskResult:
        if cancel is not None and cancel.cancelled:
            return _cancelled(task)
        op_id = f"batch-{run_id}:{task.task_id}"
        monitor = self._monitor
        if monitor is not None:
            monitor.start_op(op_id, kind=task.kind, metadata={"task_id": task.task_id})
        start = time.monotonic()
        try:
            value = task.fn()
        except Exception as exc:  # noqa: BLE001 - task failures become results
            duration_s = time.monotonic() - start
            error_type = type(exc).__name__
            if monitor is not None:
                monitor.end_op(op_id, status="error", error=f"{error_type}: {exc}")
            record_task_outcome(TaskStatus.FAILED, error_type=error_type)
            logger.warning("Task %s failed: %s", task.task_id, exc)
            return TaskResult(
                task_id=task.task_id,
                status=TaskStatus.FAILED,
                error_type=error_type,
                error=str(exc),
                duration_s=duration_s,
            )
        duration_s = time.monotonic() - start
        if monitor is not None:
            monitor.end_op(op_id)
        record_task_outcome(TaskStatus.SUCCEEDED)
        return TaskResult(
            task_id=task.task_id,
            status=TaskStatus.SUCCEEDED,
            value=value,
            duration_s=duration_s,
        )


def _normalize_tasks(
    tasks: Iterable[BatchTask] | Mapping[TaskId, TaskFn],
) -> list[BatchTask]:
    if isinstance(tasks, Mapping):
        return [BatchTask(task_id=task_id, fn=fn) for task_id, fn in tasks.items()]
    ordered = list(tasks)
    seen: set[TaskId] = set()
    duplicates: set[TaskId] = set()
    for task in ordered:
        if task.task_id in seen:
            duplicates.add(task.task_id)
        seen.add(task.task_id)
    if duplicates:
        msg = f"Duplicate task ids: {sorted(duplicates)}."
        raise ValueError(msg)
    return ordered


def _cancelled(task: BatchTask) -> TaskResult:
    record_task_outcome(TaskStatus.CANCELLED)
    return TaskResult(task_id=task.task_id, status=TaskStatus.CANCELLED)


def _progress(
    results: Mapping[TaskId, TaskResult],
    batch_index: int,
    total_batches: int,
    total: int,
) -> BatchProgress:
    statuses = [result.status for result in results.values()]
    return BatchProgress(
        batch_index=batch_index,
        batch_count=total_batches,
        completed=len(statuses),
        total=total,
        succeeded=statuses.count(TaskStatus.SUCCEEDED),
        failed=statuses.count(TaskStatus.FAILED),
        cancelled=statuses.count(TaskStatus.CANCELLED),
    )


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchTask",
    "CancellationToken",
    "TaskFn",
    "TaskId",
    "TaskResult",
    "TaskStatus",
]
