"""Typed readers for environment variables.

Unset and blank variables read as ``None``. Values that fail to parse are
logged and replaced by the caller's default.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import overload

logger = logging.getLogger(__name__)

_BOOL_WORDS: dict[str, bool] = {
    **dict.fromkeys(("1", "true", "yes", "y", "on"), True),
    **dict.fromkeys(("0", "false", "no", "n", "off"), False),
}


def env_value(name: str) -> str | None:
    """Return the stripped value of ``name``, or None when unset or blank."""
    value = os.environ.get(name, "").strip()
    return value or None


def env_path(name: str) -> Path | None:
    """Return ``name`` as a user-expanded path, or None when unset."""
    value = env_value(name)
    return None if value is None else Path(value).expanduser()


def _parse_bool(raw: str) -> bool:
    try:
        return _BOOL_WORDS[raw.lower()]
    except KeyError:
        raise ValueError(raw) from None


def _read[T](name: str, parse: Callable[[str], T], kind: str, default: T | None) -> T | None:
    raw = env_value(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a valid %s", name, raw, kind)
        return default


@overload
def env_bool(name: str) -> bool | None: ...


@overload
def env_bool(name: str, *, default: bool) -> bool: ...


def env_bool(name: str, *, default: bool | None = None) -> bool | None:
    """Read a boolean flag such as ``1``, ``yes`` or ``off``.

    Returns
    -------
    bool | None
        Parsed flag, or ``default`` when unset or unrecognized.
    """
    return _read(name, _parse_bool, "boolean", default)


@overload
def env_int(name: str) -> int | None: ...


@overload
def env_int(name: str, *, default: int) -> int: ...


def env_int(name: str, *, default: int | None = None) -> int | None:
    """Read an integer, falling back to ``default`` on bad input."""
    return _read(name, int, "integer", default)


@overload
def env_float(name: str) -> float | None: ...


@overload
def env_float(name: str, *, default: float) -> float: ...


def env_float(name: str, *, default: float | None = None) -> float | None:
    """Read a float, falling back to ``default`` on bad input."""
    return _read(name, float, "float", default)


__all__ = [
    "env_bool",
    "env_float",
    "env_int",
    "env_path",
    "env_value",
]
