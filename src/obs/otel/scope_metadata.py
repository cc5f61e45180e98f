"""Version and schema URL attached to modcache instrumentation scopes."""

from __future__ import annotations

from functools import cache
from importlib.metadata import PackageNotFoundError, version

from utils.env_utils import env_value

DISTRIBUTION_NAME = "modcache"


@cache
def instrumentation_version() -> str | None:
    """Return ``$MODCACHE_SERVICE_VERSION`` or the installed distribution version."""
    override = env_value("MODCACHE_SERVICE_VERSION")
    if override is not None:
        return override
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return None


@cache
def instrumentation_schema_url() -> str | None:
    """Return the configured telemetry schema URL, if any."""
    return env_value("MODCACHE_OTEL_SCHEMA_URL") or env_value("OTEL_SCHEMA_URL")


def scope_version() -> str:
    """Return the instrumentation version, or ``"unknown"`` when undetected.

    Returns
    -------
    str
        Version string usable for tracer and meter scopes.
    """
    return instrumentation_version() or "unknown"


__all__ = [
    "DISTRIBUTION_NAME",
    "instrumentation_schema_url",
    "instrumentation_version",
    "scope_version",
]
