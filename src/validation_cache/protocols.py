"""Collaborator contracts supplied by the surrounding validation system."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from cache.entries import PackageId, ValidationResult


@runtime_checkable
class Validator(Protocol):
    """Validate one package; raise on failure."""

    def validate(self, package_id: PackageId) -> ValidationResult:
        """Return the validation result for a package."""
        ...


@runtime_checkable
class DependencyGraph(Protocol):
    """Reverse dependency lookups over the loaded package graph."""

    def dependents_of(self, package_id: PackageId) -> Sequence[PackageId]:
        """Return packages that declare a direct dependency on ``package_id``."""
        ...


@runtime_checkable
class PackageCatalog(Protocol):
    """Package layout and manifest information."""

    def package_ids(self) -> Iterable[PackageId]:
        """Return every known package id."""
        ...

    def package_root(self, package_id: PackageId) -> Path:
        """Return the directory holding a package."""
        ...

    def package_files(self, package_id: PackageId) -> Sequence[Path]:
        """Return every file a validation of the package reads."""
        ...

    def dependencies_of(self, package_id: PackageId) -> Sequence[PackageId]:
        """Return the packages a package declares as dependencies."""
        ...


__all__ = ["DependencyGraph", "PackageCatalog", "Validator"]
