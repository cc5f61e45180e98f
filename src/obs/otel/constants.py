"""Canonical OpenTelemetry constants for modcache."""

from __future__ import annotations

from enum import StrEnum


class MetricName(StrEnum):
    """Canonical metric names."""

    OPERATION_DURATION = "modcache.operation.duration"
    CACHE_EVENT_COUNT = "modcache.cache.event.count"
    TASK_OUTCOME_COUNT = "modcache.batch.task.count"
    CYCLE_DURATION = "modcache.incremental.cycle.duration"


class AttributeName(StrEnum):
    """Canonical attribute names."""

    OPERATION_KIND = "operation.kind"
    STATUS = "status"
    ERROR_TYPE = "error_type"
    CACHE_EVENT = "cache.event"
    CACHE_BACKEND = "cache.backend"
    BATCH_SIZE = "batch.size"
    BATCH_CONCURRENCY = "batch.concurrency"
    TASK_COUNT = "batch.task_count"
    AFFECTED_COUNT = "incremental.affected_count"


class ScopeName(StrEnum):
    """Canonical instrumentation scope names."""

    ROOT = "modcache"
    CACHE = "modcache.cache"
    BATCH = "modcache.batch"
    INCREMENTAL = "modcache.incremental"
    OBS = "modcache.obs"


__all__ = [
    "AttributeName",
    "MetricName",
    "ScopeName",
]
