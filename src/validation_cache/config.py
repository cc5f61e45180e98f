"""Validation cache configuration and loading.

Settings are read from ``modcache.toml`` or the ``[tool.modcache]`` table of
``pyproject.toml`` (searched upward from the working directory), then
``MODCACHE_*`` environment variables override individual fields.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Final, Literal

import msgspec

from batch.parallel import resolve_max_workers
from cache.diskcache_factory import DiskCacheSettings
from cache.errors import CacheConfigurationError
from core.config_base import config_fingerprint
from serde_msgspec import StructBaseStrict, convert, validation_error_payload
from utils.env_utils import env_bool, env_float, env_int, env_path, env_value
from utils.file_io import find_in_parents, read_toml

logger = logging.getLogger(__name__)

CONFIG_FILENAME: Final[str] = "modcache.toml"
PYPROJECT_FILENAME: Final[str] = "pyproject.toml"
PYPROJECT_TABLE: Final[str] = "modcache"
ENV_PREFIX: Final[str] = "MODCACHE_"

_BACKENDS: Final[frozenset[str]] = frozenset({"files", "diskcache"})


def default_cache_dir() -> Path:
    """Return ``$MODCACHE_DIR`` or ``~/.cache/modcache``.

    Returns
    -------
    pathlib.Path
        Default cache directory.
    """
    return env_path(f"{ENV_PREFIX}DIR") or Path.home() / ".cache" / "modcache"


def _default_concurrency() -> int:
    return resolve_max_workers(None)


def _env_dir(name: str) -> str | None:
    path = env_path(name)
    return str(path) if path is not None else None


class ValidationCacheConfig(StructBaseStrict, frozen=True):
    """Settings for the validation cache, orchestrator, and coordinator."""

    max_age_s: float = 24 * 60 * 60.0
    max_size_bytes: int = 64 * 1024 * 1024
    max_entry_bytes: int = 16 * 1024 * 1024
    persistent: bool = True
    cache_dir: Path = msgspec.field(default_factory=default_cache_dir)
    backend: Literal["files", "diskcache"] = "files"
    compress: bool = True
    concurrency: int = msgspec.field(default_factory=_default_concurrency)
    batch_size: int = 10
    debounce_s: float = 0.3
    maintenance_interval_s: float | None = None
    history_limit: int = 1000
    validator_version: str = "1"
    diskcache: DiskCacheSettings = msgspec.field(default_factory=DiskCacheSettings)

    def __post_init__(self) -> None:
        """Validate ranges.

        Raises
        ------
        CacheConfigurationError
            Raised when a value is out of range.
        """
        positive: dict[str, float] = {
            "max_age_s": self.max_age_s,
            "max_size_bytes": self.max_size_bytes,
            "max_entry_bytes": self.max_entry_bytes,
            "concurrency": self.concurrency,
            "batch_size": self.batch_size,
            "history_limit": self.history_limit,
        }
        for name, value in positive.items():
            if value <= 0:
                msg = f"{name} must be positive, got {value!r}."
                raise CacheConfigurationError(msg)
        if self.debounce_s < 0:
            msg = f"debounce_s must be >= 0, got {self.debounce_s!r}."
            raise CacheConfigurationError(msg)
        if self.maintenance_interval_s is not None and self.maintenance_interval_s <= 0:
            msg = f"maintenance_interval_s must be positive, got {self.maintenance_interval_s!r}."
            raise CacheConfigurationError(msg)
        if self.backend not in _BACKENDS:
            msg = f"backend must be one of {sorted(_BACKENDS)}, got {self.backend!r}."
            raise CacheConfigurationError(msg)
        if not self.validator_version:
            msg = "validator_version must be non-empty."
            raise CacheConfigurationError(msg)

    def fingerprint_payload(self) -> Mapping[str, object]:
        """Return canonical payload for config fingerprinting.

        Returns
        -------
        Mapping[str, object]
            Payload used for config fingerprinting.
        """
        payload: dict[str, object] = msgspec.structs.asdict(self)
        payload["cache_dir"] = str(self.cache_dir)
        payload["diskcache"] = self.diskcache.fingerprint()
        return payload

    def fingerprint(self) -> str:
        """Return a stable fingerprint for the config.

        Returns
        -------
        str
            Stable fingerprint for the config.
        """
        return config_fingerprint(self.fingerprint_payload())

    def with_overrides(self, **changes: object) -> ValidationCacheConfig:
        """Return a copy with some fields replaced and revalidated.

        Returns
        -------
        ValidationCacheConfig
            Updated config.
        """
        return type(self)(**{**msgspec.structs.asdict(self), **changes})


_ENV_READERS: Final[dict[str, Callable[[str], object]]] = {
    "max_age_s": env_float,
    "max_size_bytes": env_int,
    "max_entry_bytes": env_int,
    "persistent": env_bool,
    "cache_dir": _env_dir,
    "backend": env_value,
    "compress": env_bool,
    "concurrency": env_int,
    "batch_size": env_int,
    "debounce_s": env_float,
    "maintenance_interval_s": env_float,
    "history_limit": env_int,
    "validator_version": env_value,
}

_ENV_NAMES: Final[dict[str, str]] = {"cache_dir": f"{ENV_PREFIX}DIR"}


def env_overrides() -> dict[str, object]:
    """Return config fields set through ``MODCACHE_*`` environment variables.

    Returns
    -------
    dict[str, object]
        Field name to parsed value for every set variable.
    """
    overrides: dict[str, object] = {}
    for field_name, reader in _ENV_READERS.items():
        env_name = _ENV_NAMES.get(field_name, f"{ENV_PREFIX}{field_name.upper()}")
        value = reader(env_name)
        if value is not None:
            overrides[field_name] = value
    return overrides


def discover_config_file(start: Path | None = None) -> tuple[Path, str | None] | None:
    """Find the nearest config source.

    Returns
    -------
    tuple[pathlib.Path, str | None] | None
        Config file and the table holding settings (None for the whole
        file), or None when no source exists.
    """
    config_path = find_in_parents(CONFIG_FILENAME, start=start)
    if config_path is not None:
        return config_path, None
    pyproject_path = find_in_parents(PYPROJECT_FILENAME, start=start)
    if pyproject_path is not None:
        return pyproject_path, PYPROJECT_TABLE
    return None


def _file_payload(path: Path, table: str | None) -> dict[str, object]:
    try:
        raw = read_toml(path)
    except (OSError, TypeError, msgspec.DecodeError) as exc:
        msg = f"Failed to read cache config {path}: {exc}"
        raise CacheConfigurationError(msg) from exc
    if table is None:
        return dict(raw)
    tool = raw.get("tool")
    nested = tool.get(table) if isinstance(tool, Mapping) else None
    if nested is None:
        return {}
    if not isinstance(nested, Mapping):
        msg = f"[tool.{table}] in {path} must be a table."
        raise CacheConfigurationError(msg)
    return dict(nested)


def load_cache_config(
    path: Path | None = None,
    *,
    use_env: bool = True,
) -> ValidationCacheConfig:
    """Load the cache config from TOML and environment overrides.

    Parameters
    ----------
    path
        Explicit config file. ``pyproject.toml`` files are read from their
        ``[tool.modcache]`` table. When omitted the nearest ``modcache.toml``
        or ``pyproject.toml`` is used.
    use_env
        Whether ``MODCACHE_*`` environment variables override file values.

    Returns
    -------
    ValidationCacheConfig
        Resolved configuration.

    Raises
    ------
    CacheConfigurationError
        Raised when the file is unreadable or a value is invalid.
    """
    payload: dict[str, object] = {}
    location = "defaults"
    if path is not None:
        table = PYPROJECT_TABLE if path.name == PYPROJECT_FILENAME else None
        payload = _file_payload(path, table)
        location = str(path)
    else:
        discovered = discover_config_file()
        if discovered is not None:
            payload = _file_payload(*discovered)
            location = str(discovered[0])
    if use_env:
        payload.update(env_overrides())
    try:
        config = convert(payload, target_type=ValidationCacheConfig)
    except msgspec.ValidationError as exc:
        details = validation_error_payload(exc)
        msg = f"Invalid cache config in {location}: {details['summary']}"
        if details.get("path"):
            msg = f"{msg} (at {details['path']})"
        raise CacheConfigurationError(msg) from exc
    logger.debug("Loaded cache config from %s: %s", location, config.fingerprint())
    return config


__all__ = [
    "CONFIG_FILENAME",
    "ENV_PREFIX",
    "ValidationCacheConfig",
    "default_cache_dir",
    "discover_config_file",
    "env_overrides",
    "load_cache_config",
]
