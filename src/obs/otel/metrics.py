"""Metrics catalog and helpers for modcache telemetry."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from opentelemetry import metrics
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View

from obs.otel.attributes import normalize_attributes
from obs.otel.constants import AttributeName, MetricName
from obs.otel.scope_metadata import instrumentation_schema_url, scope_version
from obs.otel.scopes import SCOPE_OBS

_DEFAULT_BUCKETS_S = (
    0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05,
    0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0,
)  # fmt: skip


@dataclass
class MetricsRegistry:
    """Registry for modcache metric instruments."""

    operation_duration: metrics.Histogram
    cycle_duration: metrics.Histogram
    cache_event_count: metrics.Counter
    task_outcome_count: metrics.Counter


_REGISTRY_CACHE: dict[str, MetricsRegistry | None] = {"value": None}


def _meter() -> metrics.Meter:
    return metrics.get_meter(
        SCOPE_OBS,
        scope_version(),
        schema_url=instrumentation_schema_url(),
    )


def metric_views() -> list[View]:
    """Return default metric Views for an SDK ``MeterProvider``.

    Returns
    -------
    list[View]
        Configured metric views for modcache instruments.
    """
    histogram = ExplicitBucketHistogramAggregation(list(_DEFAULT_BUCKETS_S))
    return [
        View(
            instrument_name=MetricName.OPERATION_DURATION,
            aggregation=histogram,
            attribute_keys={AttributeName.OPERATION_KIND, AttributeName.STATUS},
        ),
        View(
            instrument_name=MetricName.CYCLE_DURATION,
            aggregation=histogram,
            attribute_keys={AttributeName.STATUS},
        ),
        View(
            instrument_name=MetricName.CACHE_EVENT_COUNT,
            attribute_keys={AttributeName.CACHE_EVENT, AttributeName.CACHE_BACKEND},
        ),
        View(
            instrument_name=MetricName.TASK_OUTCOME_COUNT,
            attribute_keys={AttributeName.STATUS, AttributeName.ERROR_TYPE},
        ),
    ]


def reset_metrics_registry() -> None:
    """Reset cached metric instruments so they can be re-created."""
    _REGISTRY_CACHE["value"] = None


def _registry() -> MetricsRegistry:
    cached = _REGISTRY_CACHE["value"]
    if cached is not None:
        return cached
    meter = _meter()
    registry = MetricsRegistry(
        operation_duration=meter.create_histogram(
            MetricName.OPERATION_DURATION,
            unit="s",
            description="Monitored operation duration (seconds).",
        ),
        cycle_duration=meter.create_histogram(
            MetricName.CYCLE_DURATION,
            unit="s",
            description="Incremental revalidation cycle duration (seconds).",
        ),
        cache_event_count=meter.create_counter(
            MetricName.CACHE_EVENT_COUNT,
            unit="1",
            description="Validation cache events (hit, miss, write, eviction, ...).",
        ),
        task_outcome_count=meter.create_counter(
            MetricName.TASK_OUTCOME_COUNT,
            unit="1",
            description="Batch task outcomes by status.",
        ),
    )
    _REGISTRY_CACHE["value"] = registry
    return registry


def record_operation_duration(
    kind: str,
    duration_s: float,
    *,
    status: str,
    attributes: Mapping[str, object] | None = None,
) -> None:
    """Record a monitored operation duration histogram value."""
    registry = _registry()
    payload: dict[str, object] = {
        AttributeName.OPERATION_KIND: kind,
        AttributeName.STATUS: status,
    }
    if attributes:
        payload.update(attributes)
    registry.operation_duration.record(duration_s, normalize_attributes(payload))


def record_cycle_duration(duration_s: float, *, status: str) -> None:
    """Record an incremental cycle duration histogram value."""
    registry = _registry()
    registry.cycle_duration.record(
        duration_s,
        normalize_attributes({AttributeName.STATUS: status}),
    )


def record_cache_event(
    event: str,
    *,
    count: int = 1,
    backend: str | None = None,
) -> None:
    """Increment the cache event counter."""
    if count <= 0:
        return
    registry = _registry()
    payload: dict[str, object] = {
        AttributeName.CACHE_EVENT: event,
        AttributeName.CACHE_BACKEND: backend,
    }
    registry.cache_event_count.add(count, normalize_attributes(payload))


def record_task_outcome(status: str, *, error_type: str | None = None) -> None:
    """Increment the batch task outcome counter."""
    registry = _registry()
    payload: dict[str, object] = {
        AttributeName.STATUS: status,
        AttributeName.ERROR_TYPE: error_type,
    }
    registry.task_outcome_count.add(1, normalize_attributes(payload))


__all__ = [
    "MetricsRegistry",
    "metric_views",
    "record_cache_event",
    "record_cycle_duration",
    "record_operation_duration",
    "record_task_outcome",
    "reset_metrics_registry",
]
