"""Coerce arbitrary values into OpenTelemetry attribute values."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence

from opentelemetry.util.types import AttributeValue

from utils.env_utils import env_int

_COUNT_LIMIT = env_int("OTEL_ATTRIBUTE_COUNT_LIMIT")
_LENGTH_LIMIT = env_int("OTEL_ATTRIBUTE_VALUE_LENGTH_LIMIT")

type _Scalar = str | bool | int | float


def _clip(text: str) -> str:
    if _LENGTH_LIMIT is None:
        return text
    return text[: max(_LENGTH_LIMIT, 0)]


def _homogeneous(items: list[_Scalar]) -> AttributeValue:
    # OTel sequences must hold a single primitive type.
    if all(type(item) is bool for item in items):
        return list(items)
    if all(type(item) is int for item in items):
        return list(items)
    if all(type(item) in {int, float} for item in items):
        return [float(item) for item in items]
    return [_clip(str(item)) for item in items]


def _coerce(value: object) -> AttributeValue:
    match value:
        case str():
            return _clip(value)
        case bool() | int() | float():
            return value
        case bytes() | bytearray() | memoryview():
            return _clip(bytes(value).hex())
        case Mapping():
            return _clip(json.dumps(value, sort_keys=True, default=str))
        case Sequence():
            items = [
                item if isinstance(item, (str, bool, int, float)) else str(item)
                for item in value
                if item is not None
            ]
            return _homogeneous(items)
        case _:
            return _clip(str(value))


def normalize_attributes(attrs: Mapping[str, object] | None) -> dict[str, AttributeValue]:
    """Normalize raw attribute values into OpenTelemetry-safe types.

    ``None`` values are dropped. Mappings become sorted JSON, bytes become
    hex, and mixed sequences become string lists. When
    ``OTEL_ATTRIBUTE_COUNT_LIMIT`` is set only the alphabetically-first keys
    are kept.

    Returns
    -------
    dict[str, AttributeValue]
        Normalized attribute mapping.
    """
    if not attrs:
        return {}
    normalized = {str(key): _coerce(value) for key, value in attrs.items() if value is not None}
    if _COUNT_LIMIT is None or len(normalized) <= _COUNT_LIMIT:
        return normalized
    return {key: normalized[key] for key in sorted(normalized)[: max(_COUNT_LIMIT, 0)]}


__all__ = ["normalize_attributes"]
