"""Worker and batch sizing helpers for the batch orchestrator."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator, Sequence

from opentelemetry import context as otel_context


def resolve_max_workers(max_workers: int | None) -> int:
    """Resolve a worker count using the CPU count when unset.

    Returns
    -------
    int
        Effective worker count.
    """
    if max_workers is not None:
        return max(1, max_workers)
    cpu_count = os.cpu_count() or 1
    return max(1, cpu_count)


def chunked[T](items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items.

    Yields
    ------
    Sequence[T]
        Next batch of items.

    Raises
    ------
    ValueError
        Raised when ``size`` is not positive.
    """
    if size <= 0:
        msg = f"Batch size must be positive, got {size}."
        raise ValueError(msg)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def batch_count(total: int, size: int) -> int:
    """Return how many batches ``total`` items split into.

    Returns
    -------
    int
        Number of batches.
    """
    return -(-total // size) if total > 0 else 0


def with_current_context[**P, R](fn: Callable[P, R]) -> Callable[P, R]:
    """Wrap ``fn`` so worker threads run it in the caller's OpenTelemetry context.

    Returns
    -------
    Callable[P, R]
        Wrapped callable.
    """
    current = otel_context.get_current()

    def _wrapped(*args: P.args, **kwargs: P.kwargs) -> R:
        token = otel_context.attach(current)
        try:
            return fn(*args, **kwargs)
        finally:
            otel_context.detach(token)

    return _wrapped


__all__ = ["batch_count", "chunked", "resolve_max_workers", "with_current_context"]
