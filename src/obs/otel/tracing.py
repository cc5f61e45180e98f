"""Span helpers shared by the batch, cache, and incremental scopes."""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.util.types import AttributeValue

from obs.otel.attributes import normalize_attributes
from obs.otel.constants import AttributeName
from obs.otel.scope_metadata import instrumentation_schema_url, scope_version


def get_tracer(scope_name: str) -> trace.Tracer:
    """Return the tracer for ``scope_name`` from the global provider."""
    return trace.get_tracer(
        scope_name,
        instrumenting_library_version=scope_version(),
        schema_url=instrumentation_schema_url(),
    )


def span_attributes(*, attrs: Mapping[str, object] | None = None) -> dict[str, AttributeValue]:
    """Return ``attrs`` normalized for ``start_as_current_span``.

    Returns
    -------
    dict[str, AttributeValue]
        Attributes with ``None`` values removed and other values coerced.
    """
    return normalize_attributes(attrs)


def set_span_attributes(span: Span, attrs: Mapping[str, object] | None) -> None:
    """Set normalized ``attrs`` on an already started span."""
    span.set_attributes(normalize_attributes(attrs))


def record_exception(span: Span, exc: Exception) -> None:
    """Attach ``exc`` to ``span`` and mark the span failed."""
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, f"{type(exc).__name__}: {exc}"))


@contextmanager
def operation_span(
    name: str,
    *,
    scope_name: str,
    attributes: Mapping[str, object] | None = None,
) -> Iterator[Span]:
    """Run the block inside a span tagged with its duration and outcome.

    Exceptions escaping the block are recorded on the span and re-raised.

    Yields
    ------
    Span
        The current span, for attributes known only after the work ran.
    """
    tracer = get_tracer(scope_name)
    outcome = "ok"
    started = time.monotonic()
    with tracer.start_as_current_span(
        name,
        attributes=span_attributes(attrs=attributes),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            outcome = "error"
            record_exception(span, exc)
            raise
        finally:
            span.set_attributes(
                {
                    "duration_s": time.monotonic() - started,
                    AttributeName.STATUS: outcome,
                }
            )


__all__ = [
    "get_tracer",
    "operation_span",
    "record_exception",
    "set_span_attributes",
    "span_attributes",
]
