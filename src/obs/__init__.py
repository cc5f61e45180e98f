"""Observation utilities: operation timing, insights, and telemetry."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from obs.performance import (
        Insight,
        InsightSeverity,
        OperationRecord,
        PerformanceMonitor,
        PerformanceStats,
        PerformanceThresholds,
    )

_EXPORT_MAP: dict[str, tuple[str, str]] = {
    "Insight": ("obs.performance", "Insight"),
    "InsightSeverity": ("obs.performance", "InsightSeverity"),
    "OperationRecord": ("obs.performance", "OperationRecord"),
    "PerformanceMonitor": ("obs.performance", "PerformanceMonitor"),
    "PerformanceStats": ("obs.performance", "PerformanceStats"),
    "PerformanceThresholds": ("obs.performance", "PerformanceThresholds"),
}


def __getattr__(name: str) -> object:
    target = _EXPORT_MAP.get(name)
    if target is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    module_name, attr_name = target
    module = importlib.import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(__all__)


__all__ = (
    "Insight",
    "InsightSeverity",
    "OperationRecord",
    "PerformanceMonitor",
    "PerformanceStats",
    "PerformanceThresholds",
)
