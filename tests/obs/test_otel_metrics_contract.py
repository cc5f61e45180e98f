"""Contract tests for OpenTelemetry metrics and spans."""

from __future__ import annotations

import pytest

from batch.orchestrator import BatchOrchestrator
from cache.store import ValidationCacheStore
from obs.otel.constants import AttributeName, MetricName
from obs.otel.metrics import (
    record_cache_event,
    record_cycle_duration,
    record_operation_duration,
    record_task_outcome,
)
from tests.obs._support.otel_harness import OtelHarness, get_otel_harness


@pytest.fixture
def harness() -> OtelHarness:
    """Return a reset harness."""
    otel = get_otel_harness()
    otel.reset()
    return otel


def _metric_points(data: object, name: str) -> list[object]:
    if data is None:
        return []
    points: list[object] = []
    for resource_metric in getattr(data, "resource_metrics", ()):
        for scope_metric in getattr(resource_metric, "scope_metrics", ()):
            for metric in getattr(scope_metric, "metrics", ()):
                if getattr(metric, "name", None) != name:
                    continue
                payload = getattr(metric, "data", None)
                points.extend(getattr(payload, "data_points", ()))
    return points


def _counts_by(points: list[object], attribute: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for point in points:
        attributes = getattr(point, "attributes", {}) or {}
        key = str(attributes.get(attribute))
        counts[key] = counts.get(key, 0) + int(getattr(point, "value", 0))
    return counts


def test_metrics_catalog_emits(harness: OtelHarness) -> None:
    """Ensure every catalog instrument emits under its canonical name."""
    record_operation_duration("validation", 0.02, status="ok")
    record_cycle_duration(0.5, status="ok")
    record_cache_event("hit")
    record_task_outcome("failed", error_type="ValueError")

    data = harness.metric_reader.get_metrics_data()
    for name in MetricName:
        assert _metric_points(data, name), name


def test_non_positive_cache_event_counts_are_skipped(harness: OtelHarness) -> None:
    """Ensure zero counts emit no data points."""
    record_cache_event("eviction", count=0)
    data = harness.metric_reader.get_metrics_data()
    assert _metric_points(data, MetricName.CACHE_EVENT_COUNT) == []


def test_store_emits_cache_events(harness: OtelHarness) -> None:
    """Ensure store traffic is exported as cache event counts."""
    store = ValidationCacheStore()
    store.set("k", "h", {"ok": True})
    store.get("k", "h")
    store.get("k", "other")
    store.close()

    data = harness.metric_reader.get_metrics_data()
    counts = _counts_by(
        _metric_points(data, MetricName.CACHE_EVENT_COUNT),
        AttributeName.CACHE_EVENT,
    )
    assert counts["write"] == 1
    assert counts["hit"] == 1
    assert counts["miss"] == 1


def test_batch_run_emits_span_and_outcomes(harness: OtelHarness) -> None:
    """Ensure batch runs produce a span and one outcome point per task."""

    def fail() -> None:
        msg = "boom"
        raise RuntimeError(msg)

    BatchOrchestrator().run({"a": lambda: 1, "b": fail}, 2)

    spans = harness.span_exporter.get_finished_spans()
    assert [span.name for span in spans] == ["batch.run"]
    assert spans[0].attributes is not None
    assert spans[0].attributes["batch.failed"] == 1

    data = harness.metric_reader.get_metrics_data()
    counts = _counts_by(
        _metric_points(data, MetricName.TASK_OUTCOME_COUNT),
        AttributeName.STATUS,
    )
    assert counts == {"succeeded": 1, "failed": 1}
