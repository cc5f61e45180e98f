"""Incremental revalidation types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from batch.orchestrator import TaskResult
    from cache.entries import PackageId


class CoordinatorState(StrEnum):
    """Lifecycle states of the incremental coordinator."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    COMPUTING = "computing"
    INVALIDATING = "invalidating"
    DISPATCHING = "dispatching"


@dataclass(frozen=True)
class AffectedPackages:
    """Packages impacted by a set of changed paths."""

    changed_paths: tuple[str, ...] = ()
    direct: tuple[PackageId, ...] = ()
    closure: tuple[PackageId, ...] = ()
    unowned_paths: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        """Return True when no package is affected."""
        return not self.closure


@dataclass(frozen=True)
class CycleReport:
    """Summary of one debounce-invalidate-dispatch cycle."""

    cycle_id: int
    affected: AffectedPackages
    invalidated: int
    results: Mapping[PackageId, TaskResult] = field(default_factory=dict)
    duration_s: float = 0.0

    @property
    def succeeded(self) -> tuple[PackageId, ...]:
        """Return packages whose revalidation succeeded."""
        return tuple(pkg for pkg, result in self.results.items() if result.ok)

    @property
    def failed(self) -> tuple[PackageId, ...]:
        """Return packages whose revalidation did not succeed."""
        return tuple(pkg for pkg, result in self.results.items() if not result.ok)


__all__ = [
    "AffectedPackages",
    "CoordinatorState",
    "CycleReport",
]
