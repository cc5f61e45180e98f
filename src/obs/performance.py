"""Operation timing, cache hit accounting, and heuristic insights.

``PerformanceMonitor`` brackets operations with ``start_op``/``end_op`` and
keeps the most recent finished operations in a bounded ring buffer. Every
finished operation is also exported as an OpenTelemetry histogram point and
every cache lookup as a counter point.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from obs.otel.metrics import record_cache_event, record_operation_duration

logger = logging.getLogger(__name__)

type OperationStatus = Literal["ok", "error"]

DEFAULT_HISTORY_LIMIT = 1000


class InsightSeverity(StrEnum):
    """Severity of a performance insight."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class PerformanceThresholds:
    """Thresholds used by ``PerformanceMonitor.insights``."""

    low_hit_rate: float = 0.3
    min_lookups: int = 20
    slow_operation_s: float = 0.1
    critical_operation_s: float = 0.5
    max_error_rate: float = 0.05
    max_concurrency: int = 10

    def __post_init__(self) -> None:
        """Validate threshold ranges.

        Raises
        ------
        ValueError
            Raised when a threshold is out of range.
        """
        if not 0.0 <= self.low_hit_rate <= 1.0:
            msg = "low_hit_rate must be between 0 and 1."
            raise ValueError(msg)
        if not 0.0 <= self.max_error_rate <= 1.0:
            msg = "max_error_rate must be between 0 and 1."
            raise ValueError(msg)
        if self.slow_operation_s <= 0 or self.critical_operation_s < self.slow_operation_s:
            msg = "critical_operation_s must be >= slow_operation_s > 0."
            raise ValueError(msg)
        if self.min_lookups < 0 or self.max_concurrency <= 0:
            msg = "min_lookups must be >= 0 and max_concurrency must be positive."
            raise ValueError(msg)


@dataclass(frozen=True)
class OperationRecord:
    """Finished operation kept in the monitor history."""

    op_id: str
    kind: str
    started_at: float
    duration_s: float
    status: OperationStatus
    error: str | None = None
    metadata: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class Insight:
    """Heuristic observation derived from recent history."""

    code: str
    severity: InsightSeverity
    message: str


@dataclass(frozen=True)
class PerformanceStats:
    """Aggregate monitor statistics."""

    total_operations: int
    completed_operations: int
    failed_operations: int
    active_operations: int
    cache_hits: int
    cache_misses: int
    hit_rate: float
    average_duration_s: float
    max_duration_s: float
    operations_by_kind: Mapping[str, int]
    insights: tuple[Insight, ...] = ()


@dataclass(frozen=True)
class _ActiveOp:
    kind: str
    started_at: float
    started_mono: float
    metadata: Mapping[str, object]


class PerformanceMonitor:
    """Thread-safe recorder for operation latencies and cache lookups."""

    def __init__(
        self,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        thresholds: PerformanceThresholds | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if history_limit <= 0:
            msg = "history_limit must be positive."
            raise ValueError(msg)
        self._thresholds = thresholds or PerformanceThresholds()
        self._clock = clock
        self._lock = threading.Lock()
        self._history: deque[OperationRecord] = deque(maxlen=history_limit)
        self._active: dict[str, _ActiveOp] = {}
        self._total = 0
        self._completed = 0
        self._failed = 0
        self._hits = 0
        self._misses = 0

    @property
    def thresholds(self) -> PerformanceThresholds:
        """Return the thresholds used for insights."""
        return self._thresholds

    @property
    def history_limit(self) -> int:
        """Return the ring buffer capacity."""
        maxlen = self._history.maxlen
        return maxlen if maxlen is not None else 0

    def start_op(
        self,
        op_id: str,
        *,
        kind: str = "operation",
        metadata: Mapping[str, object] | None = None,
    ) -> None:
        """Begin timing an operation.

        Raises
        ------
        ValueError
            Raised when ``op_id`` is already active.
        """
        now = self._clock()
        with self._lock:
            if op_id in self._active:
                msg = f"Operation {op_id!r} is already active."
                raise ValueError(msg)
            self._active[op_id] = _ActiveOp(
                kind=kind,
                started_at=time.time(),
                started_mono=now,
                metadata=dict(metadata or {}),
            )
            self._total += 1

    def end_op(
        self,
        op_id: str,
        *,
        status: OperationStatus = "ok",
        error: str | None = None,
    ) -> OperationRecord | None:
        """Finish timing an operation.

        Returns
        -------
        OperationRecord | None
            Finished record, or None when ``op_id`` was not active.
        """
        now = self._clock()
        with self._lock:
            active = self._active.pop(op_id, None)
            if active is None:
                logger.debug("end_op for unknown operation %s", op_id)
                return None
            record = OperationRecord(
                op_id=op_id,
                kind=active.kind,
                started_at=active.started_at,
                duration_s=max(0.0, now - active.started_mono),
                status=status,
                error=error,
                metadata=active.metadata,
            )
            self._history.append(record)
            if status == "ok":
                self._completed += 1
            else:
                self._failed += 1
        record_operation_duration(record.kind, record.duration_s, status=record.status)
        if record.duration_s >= self._thresholds.critical_operation_s:
            logger.warning(
                "Operation %s (%s) took %.3fs",
                record.op_id,
                record.kind,
                record.duration_s,
            )
        return record

    @contextmanager
    def op(
        self,
        op_id: str,
        *,
        kind: str = "operation",
        metadata: Mapping[str, object] | None = None,
    ) -> Iterator[None]:
        """Bracket a block with ``start_op``/``end_op``.

        Yields
        ------
        None
            Control to the timed block.
        """
        self.start_op(op_id, kind=kind, metadata=metadata)
        try:
            yield
        except Exception as exc:
            self.end_op(op_id, status="error", error=f"{type(exc).__name__}: {exc}")
            raise
        self.end_op(op_id)

    def record_cache_lookup(self, *, hit: bool) -> None:
        """Count a cache hit or miss."""
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
        record_cache_event("hit" if hit else "miss")

    def history(self) -> tuple[OperationRecord, ...]:
        """Return finished operations, oldest first.

        Returns
        -------
        tuple[OperationRecord, ...]
            Snapshot of the ring buffer.
        """
        with self._lock:
            return tuple(self._history)

    def stats(self) -> PerformanceStats:
        """Return aggregate statistics with current insights.

        Returns
        -------
        PerformanceStats
            Snapshot of monitor counters.
        """
        with self._lock:
            history = tuple(self._history)
            total = self._total
            completed = self._completed
            failed = self._failed
            active = len(self._active)
            hits = self._hits
            misses = self._misses
        durations = [record.duration_s for record in history]
        lookups = hits + misses
        return PerformanceStats(
            total_operations=total,
            completed_operations=completed,
            failed_operations=failed,
            active_operations=active,
            cache_hits=hits,
            cache_misses=misses,
            hit_rate=hits / lookups if lookups else 0.0,
            average_duration_s=sum(durations) / len(durations) if durations else 0.0,
            max_duration_s=max(durations, default=0.0),
            operations_by_kind=dict(Counter(record.kind for record in history)),
            insights=self._insights(history, hits=hits, misses=misses, active=active),
        )

    def insights(self) -> tuple[Insight, ...]:
        """Return heuristic insights over recent history.

        Returns
        -------
        tuple[Insight, ...]
            Insights ordered by severity, most severe first.
        """
        return self.stats().insights

    def reset(self) -> None:
        """Drop history and counters; active operations are kept."""
        with self._lock:
            self._history.clear()
            self._total = len(self._active)
            self._completed = 0
            self._failed = 0
            self._hits = 0
            self._misses = 0

    def _insights(
        self,
        history: tuple[OperationRecord, ...],
        *,
        hits: int,
        misses: int,
        active: int,
    ) -> tuple[Insight, ...]:
        thresholds = self._thresholds
        found: list[Insight] = []
        lookups = hits + misses
        if lookups >= max(1, thresholds.min_lookups):
            hit_rate = hits / lookups
            if hit_rate < thresholds.low_hit_rate:
                found.append(
                    Insight(
                        code="low_hit_rate",
                        severity=InsightSeverity.WARNING,
                        message=(
                            f"cache hit rate {hit_rate:.0%} is below "
                            f"{thresholds.low_hit_rate:.0%}: consider raising max_age_s"
                        ),
                    )
                )
        critical = [r for r in history if r.duration_s >= thresholds.critical_operation_s]
        slow = [
            r
            for r in history
            if thresholds.slow_operation_s <= r.duration_s < thresholds.critical_operation_s
        ]
        if critical:
            found.append(
                Insight(
                    code="critical_operations",
                    severity=InsightSeverity.CRITICAL,
                    message=(
                        f"{len(critical)} operation(s) exceeded "
                        f"{thresholds.critical_operation_s:.3f}s"
                    ),
                )
            )
        if slow:
            found.append(
                Insight(
                    code="slow_operations",
                    severity=InsightSeverity.INFO,
                    message=(
                        f"{len(slow)} operation(s) exceeded {thresholds.slow_operation_s:.3f}s"
                    ),
                )
            )
        if history:
            errors = sum(1 for record in history if record.status == "error")
            error_rate = errors / len(history)
            if error_rate > thresholds.max_error_rate:
                found.append(
                    Insight(
                        code="high_error_rate",
                        severity=InsightSeverity.WARNING,
                        message=(
                            f"error rate {error_rate:.0%} exceeds "
                            f"{thresholds.max_error_rate:.0%}"
                        ),
                    )
                )
        if active > thresholds.max_concurrency:
            found.append(
                Insight(
                    code="high_concurrency",
                    severity=InsightSeverity.WARNING,
                    message=(
                        f"{active} active operations exceed the limit of "
                        f"{thresholds.max_concurrency}"
                    ),
                )
            )
        order = {InsightSeverity.CRITICAL: 0, InsightSeverity.WARNING: 1, InsightSeverity.INFO: 2}
        return tuple(sorted(found, key=lambda insight: order[insight.severity]))


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "Insight",
    "InsightSeverity",
    "OperationRecord",
    "OperationStatus",
    "PerformanceMonitor",
    "PerformanceStats",
    "PerformanceThresholds",
]
