"""OpenTelemetry helpers for modcache observability."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from obs.otel.attributes import normalize_attributes
    from obs.otel.metrics import (
        metric_views,
        record_cache_event,
        record_cycle_duration,
        record_operation_duration,
        record_task_outcome,
        reset_metrics_registry,
    )
    from obs.otel.scopes import (
        SCOPE_BATCH,
        SCOPE_CACHE,
        SCOPE_INCREMENTAL,
        SCOPE_OBS,
        SCOPE_ROOT,
    )
    from obs.otel.tracing import (
        get_tracer,
        operation_span,
        record_exception,
        set_span_attributes,
        span_attributes,
    )

__all__ = [
    "SCOPE_BATCH",
    "SCOPE_CACHE",
    "SCOPE_INCREMENTAL",
    "SCOPE_OBS",
    "SCOPE_ROOT",
    "get_tracer",
    "metric_views",
    "normalize_attributes",
    "operation_span",
    "record_cache_event",
    "record_cycle_duration",
    "record_exception",
    "record_operation_duration",
    "record_task_outcome",
    "reset_metrics_registry",
    "set_span_attributes",
    "span_attributes",
]

_EXPORT_MAP: dict[str, tuple[str, str]] = {
    "SCOPE_BATCH": ("obs.otel.scopes", "SCOPE_BATCH"),
    "SCOPE_CACHE": ("obs.otel.scopes", "SCOPE_CACHE"),
    "SCOPE_INCREMENTAL": ("obs.otel.scopes", "SCOPE_INCREMENTAL"),
    "SCOPE_OBS": ("obs.otel.scopes", "SCOPE_OBS"),
    "SCOPE_ROOT": ("obs.otel.scopes", "SCOPE_ROOT"),
    "get_tracer": ("obs.otel.tracing", "get_tracer"),
    "metric_views": ("obs.otel.metrics", "metric_views"),
    "normalize_attributes": ("obs.otel.attributes", "normalize_attributes"),
    "operation_span": ("obs.otel.tracing", "operation_span"),
    "record_cache_event": ("obs.otel.metrics", "record_cache_event"),
    "record_cycle_duration": ("obs.otel.metrics", "record_cycle_duration"),
    "record_exception": ("obs.otel.tracing", "record_exception"),
    "record_operation_duration": ("obs.otel.metrics", "record_operation_duration"),
    "record_task_outcome": ("obs.otel.metrics", "record_task_outcome"),
    "reset_metrics_registry": ("obs.otel.metrics", "reset_metrics_registry"),
    "set_span_attributes": ("obs.otel.tracing", "set_span_attributes"),
    "span_attributes": ("obs.otel.tracing", "span_attributes"),
}


def __getattr__(name: str) -> object:
    export = _EXPORT_MAP.get(name)
    if export is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    module_name, attr_name = export
    module = importlib.import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(__all__)
