"""Parallel batch execution of independent validation tasks."""

from batch.orchestrator import (
    DEFAULT_BATCH_SIZE,
    BatchOrchestrator,
    BatchProgress,
    BatchTask,
    CancellationToken,
    TaskFn,
    TaskId,
    TaskResult,
    TaskStatus,
)
from batch.parallel import resolve_max_workers

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
    "resolve_max_workers",
]
