"""Incremental revalidation: affected-set closure and the change coordinator."""

from incremental.coordinator import DEFAULT_DEBOUNCE_S, IncrementalCoordinator
from incremental.impact import affected_packages, dependents_closure, owning_package
from incremental.types import AffectedPackages, CoordinatorState, CycleReport

__all__ = [
    "DEFAULT_DEBOUNCE_S",
    "AffectedPackages",
    "CoordinatorState",
    "CycleReport",
    "IncrementalCoordinator",
    "affected_packages",
    "dependents_closure",
    "owning_package",
]
