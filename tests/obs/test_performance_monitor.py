"""Tests for the performance monitor."""

from __future__ import annotations

import pytest

from obs.performance import InsightSeverity, PerformanceMonitor, PerformanceThresholds
from tests.test_helpers.packages import ManualClock

HISTORY_LIMIT = 5
SLOW_S = 0.2
CRITICAL_S = 0.8


def _monitor(clock: ManualClock, **thresholds: float) -> PerformanceMonitor:
    return PerformanceMonitor(
        history_limit=HISTORY_LIMIT,
        thresholds=PerformanceThresholds(**thresholds),  # type: ignore[arg-type]
        clock=clock,
    )


def test_start_end_records_duration(clock: ManualClock) -> None:
    """Ensure end_op measures elapsed time on the monitor clock."""
    monitor = _monitor(clock)
    monitor.start_op("op-1", kind="validation", metadata={"package_id": "core"})
    clock.advance(0.05)
    record = monitor.end_op("op-1")

    assert record is not None
    assert record.duration_s == pytest.approx(0.05)
    assert record.kind == "validation"
    assert record.metadata == {"package_id": "core"}
    assert monitor.end_op("op-1") is None


def test_duplicate_active_op_rejected(clock: ManualClock) -> None:
    """Ensure an op id cannot be started twice while active."""
    monitor = _monitor(clock)
    monitor.start_op("op")
    with pytest.raises(ValueError, match="already active"):
        monitor.start_op("op")


def test_history_is_bounded(clock: ManualClock) -> None:
    """Ensure the ring buffer keeps only the most recent operations."""
    monitor = _monitor(clock)
    for index in range(HISTORY_LIMIT + 3):
        with monitor.op(f"op-{index}"):
            clock.advance(0.001)

    history = monitor.history()
    assert len(history) == HISTORY_LIMIT
    assert history[0].op_id == "op-3"
    assert monitor.stats().total_operations == HISTORY_LIMIT + 3


def test_op_context_records_errors(clock: ManualClock) -> None:
    """Ensure exceptions inside op() are recorded and re-raised."""
    monitor = _monitor(clock)
    with pytest.raises(KeyError), monitor.op("bad"):
        raise KeyError("missing")

    record = monitor.history()[-1]
    assert record.status == "error"
    assert record.error is not None
    assert record.error.startswith("KeyError")
    assert monitor.stats().failed_operations == 1


def test_hit_rate_and_low_hit_rate_insight(clock: ManualClock) -> None:
    """Ensure a low hit rate over enough lookups produces a warning."""
    monitor = _monitor(clock, min_lookups=4)
    for hit in (True, False, False, False, False):
        monitor.record_cache_lookup(hit=hit)

    stats = monitor.stats()
    assert stats.cache_hits == 1
    assert stats.hit_rate == pytest.approx(0.2)
    codes = {insight.code for insight in stats.insights}
    assert "low_hit_rate" in codes


def test_slow_and_critical_insights_are_ordered(clock: ManualClock) -> None:
    """Ensure insights are sorted most severe first."""
    monitor = _monitor(clock, slow_operation_s=SLOW_S, critical_operation_s=CRITICAL_S)
    for op_id, duration in (("slow", 0.3), ("critical", 1.0)):
        monitor.start_op(op_id)
        clock.advance(duration)
        monitor.end_op(op_id)

    insights = monitor.insights()
    assert [insight.code for insight in insights] == ["critical_operations", "slow_operations"]
    assert insights[0].severity is InsightSeverity.CRITICAL


def test_error_rate_and_concurrency_insights(clock: ManualClock) -> None:
    """Ensure error rate and active operation count produce warnings."""
    monitor = _monitor(clock, max_error_rate=0.1, max_concurrency=1)
    monitor.start_op("failed")
    monitor.end_op("failed", status="error", error="boom")
    monitor.start_op("a")
    monitor.start_op("b")

    codes = [insight.code for insight in monitor.insights()]
    assert "high_error_rate" in codes
    assert "high_concurrency" in codes


def test_no_insights_when_healthy(clock: ManualClock) -> None:
    """Ensure a healthy monitor reports nothing."""
    monitor = _monitor(clock)
    with monitor.op("fast"):
        clock.advance(0.001)
    assert monitor.insights() == ()


def test_reset_keeps_active_operations(clock: ManualClock) -> None:
    """Ensure reset drops history and counters but not in-flight ops."""
    monitor = _monitor(clock)
    with monitor.op("done"):
        pass
    monitor.start_op("running")
    monitor.record_cache_lookup(hit=True)

    monitor.reset()

    stats = monitor.stats()
    assert stats.completed_operations == 0
    assert stats.cache_hits == 0
    assert stats.active_operations == 1
    assert monitor.end_op("running") is not None


def test_invalid_thresholds() -> None:
    """Ensure inconsistent thresholds are rejected."""
    with pytest.raises(ValueError, match="low_hit_rate"):
        PerformanceThresholds(low_hit_rate=1.5)
    with pytest.raises(ValueError, match="critical_operation_s"):
        PerformanceThresholds(slow_operation_s=1.0, critical_operation_s=0.5)
    with pytest.raises(ValueError, match="history_limit"):
        PerformanceMonitor(history_limit=0)
