"""File I/O utilities with consistent encoding handling."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

import msgspec


def read_toml(path: Path) -> Mapping[str, object]:
    """Read and parse a TOML file.

    Parameters
    ----------
    path
        Path to the TOML file.

    Returns
    -------
    Mapping[str, object]
        Parsed TOML content.

    Raises
    ------
    TypeError
        Raised when the TOML content is not a mapping.
    """
    payload = msgspec.toml.decode(path.read_text(encoding="utf-8"), type=object, strict=True)
    if not isinstance(payload, dict):
        msg = f"Expected TOML mapping in {path}, got {type(payload).__name__}."
        raise TypeError(msg)
    return payload


def find_in_parents(filename: str, *, start: Path | None = None) -> Path | None:
    """Walk parents from ``start`` (default: cwd) to find a filename.

    Returns
    -------
    pathlib.Path | None
        First matching file, or None when no parent contains it.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write bytes via a sibling temp file and ``os.replace``.

    Readers never observe a partially written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_bytes_bounded(path: Path, *, max_bytes: int) -> bytes | None:
    """Read a file when it is no larger than ``max_bytes``.

    Returns
    -------
    bytes | None
        File contents, or None when the file exceeds the bound.
    """
    with path.open("rb") as handle:
        payload = handle.read(max_bytes + 1)
    if len(payload) > max_bytes:
        return None
    return payload


__all__ = [
    "find_in_parents",
    "read_bytes_bounded",
    "read_toml",
    "write_bytes_atomic",
]
