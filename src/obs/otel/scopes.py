"""Canonical OpenTelemetry instrumentation scopes for modcache."""

from __future__ import annotations

from obs.otel.constants import ScopeName

SCOPE_ROOT = ScopeName.ROOT
SCOPE_CACHE = ScopeName.CACHE
SCOPE_BATCH = ScopeName.BATCH
SCOPE_INCREMENTAL = ScopeName.INCREMENTAL
SCOPE_OBS = ScopeName.OBS

__all__ = [
    "SCOPE_BATCH",
    "SCOPE_CACHE",
    "SCOPE_INCREMENTAL",
    "SCOPE_OBS",
    "SCOPE_ROOT",
]
