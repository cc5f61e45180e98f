"""Shared msgspec struct bases, encoders, and decoders for modcache."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Final, Literal

import msgspec


class StructBaseStrict(
    msgspec.Struct,
    frozen=True,
    kw_only=True,
    omit_defaults=True,
    repr_omit_defaults=True,
    forbid_unknown_fields=True,
):
    """Base struct for settings and in-process records; unknown fields fail."""


class StructBaseCompat(
    msgspec.Struct,
    frozen=True,
    kw_only=True,
    omit_defaults=True,
    repr_omit_defaults=True,
    forbid_unknown_fields=False,
):
    """Base struct for persisted records read back by newer releases."""


_ORDER: Final[Literal["deterministic"]] = "deterministic"
_VALIDATION_RE = re.compile(r"^(?P<summary>.*?)(?:\s+-\s+at\s+`(?P<path>[^`]+)`)?$")


def _enc_hook(obj: object) -> object:
    if isinstance(obj, Path):
        return obj.as_posix()
    if isinstance(obj, (bytes, bytearray, memoryview, msgspec.Raw)):
        return bytes(obj).hex()
    raise TypeError


def _msgpack_enc_hook(obj: object) -> object:
    if isinstance(obj, Path):
        return obj.as_posix()
    raise TypeError


def _dec_hook(type_hint: Any, obj: object) -> object:
    if type_hint is Path and isinstance(obj, str):
        return Path(obj)
    msg = f"Unsupported type {type_hint!r} for value {obj!r}."
    raise NotImplementedError(msg)


JSON_ENCODER_SORTED = msgspec.json.Encoder(enc_hook=_enc_hook, order="sorted")
MSGPACK_ENCODER = msgspec.msgpack.Encoder(enc_hook=_msgpack_enc_hook, order=_ORDER)


def validation_error_payload(exc: msgspec.ValidationError) -> dict[str, str]:
    """Split a msgspec ValidationError into summary and field path.

    Returns
    -------
    dict[str, str]
        ``type`` and ``summary`` keys, plus ``path`` when msgspec reported one.
    """
    message = str(exc).strip()
    payload = {"type": type(exc).__name__, "summary": message}
    match = _VALIDATION_RE.match(message)
    if match is None:
        return payload
    summary = (match.group("summary") or "").strip()
    if summary:
        payload["summary"] = summary
    if match.group("path"):
        payload["path"] = match.group("path")
    return payload


def dumps_msgpack(obj: object) -> bytes:
    """Encode an object as deterministic MessagePack.

    Returns
    -------
    bytes
        MessagePack payload.

    Raises
    ------
    TypeError
        Raised when the object holds values msgpack cannot represent.
    """
    return MSGPACK_ENCODER.encode(obj)


def loads_msgpack[T](buf: bytes, *, target_type: type[T], strict: bool = True) -> T:
    """Decode MessagePack into ``target_type``.

    Returns
    -------
    T
        Decoded value.
    """
    return msgspec.msgpack.decode(buf, type=target_type, strict=strict, dec_hook=_dec_hook)


def convert[T](obj: object, *, target_type: type[T], strict: bool = True) -> T:
    """Validate and convert builtin data (for example parsed TOML) into a type.

    Returns
    -------
    T
        Converted value.
    """
    return msgspec.convert(obj, type=target_type, strict=strict, dec_hook=_dec_hook)


def to_builtins(obj: object, *, str_keys: bool = True) -> object:
    """Lower structs, paths, and bytes into JSON-compatible builtins.

    Returns
    -------
    object
        Builtin representation with deterministic ordering.
    """
    return msgspec.to_builtins(obj, order=_ORDER, str_keys=str_keys, enc_hook=_enc_hook)


def ensure_raw(payload: bytes | msgspec.Raw) -> msgspec.Raw:
    """Wrap pre-encoded bytes so encoders embed them without re-encoding.

    Returns
    -------
    msgspec.Raw
        Raw wrapper around ``payload``.
    """
    return payload if isinstance(payload, msgspec.Raw) else msgspec.Raw(payload)


__all__ = [
    "JSON_ENCODER_SORTED",
    "MSGPACK_ENCODER",
    "StructBaseCompat",
    "StructBaseStrict",
    "convert",
    "dumps_msgpack",
    "ensure_raw",
    "loads_msgpack",
    "to_builtins",
    "validation_error_payload",
]
