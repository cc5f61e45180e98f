"""Affected-package closure for changed files."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

from incremental.types import AffectedPackages

if TYPE_CHECKING:
    from cache.entries import PackageId
    from validation_cache.protocols import DependencyGraph, PackageCatalog


def package_roots(catalog: PackageCatalog) -> dict[PackageId, Path]:
    """Return absolute root directories for every known package.

    Returns
    -------
    dict[str, pathlib.Path]
        Package id to root directory.
    """
    return {
        package_id: Path(catalog.package_root(package_id)).absolute()
        for package_id in catalog.package_ids()
    }


def owning_package(
    path: str | PurePath,
    roots: Mapping[PackageId, Path],
) -> PackageId | None:
    """Return the package whose root is the longest prefix of ``path``.

    Returns
    -------
    str | None
        Owning package id, or None when no root contains the path.
    """
    parts = Path(path).absolute().parts
    best: PackageId | None = None
    best_depth = -1
    for package_id, root in roots.items():
        root_parts = root.parts
        depth = len(root_parts)
        if depth > best_depth and parts[:depth] == root_parts:
            best = package_id
            best_depth = depth
    return best


def dependents_closure(
    seeds: Iterable[PackageId],
    graph: DependencyGraph,
) -> tuple[PackageId, ...]:
    """Return ``seeds`` plus every package depending on them, transitively.

    Dependency cycles are tolerated.

    Returns
    -------
    tuple[str, ...]
        Sorted package ids in the closure.
    """
    seen: set[PackageId] = set()
    queue: deque[PackageId] = deque()
    for seed in seeds:
        if seed not in seen:
            seen.add(seed)
            queue.append(seed)
    while queue:
        current = queue.popleft()
        for dependent in graph.dependents_of(current):
            if dependent not in seen:
                seen.add(dependent)
                queue.append(dependent)
    return tuple(sorted(seen))


def affected_packages(
    paths: Iterable[str | PurePath],
    *,
    catalog: PackageCatalog,
    graph: DependencyGraph,
) -> AffectedPackages:
    """Map changed paths to owning packages and expand to their dependents.

    Returns
    -------
    AffectedPackages
        Directly affected packages, the full closure, and unowned paths.
    """
    roots = package_roots(catalog)
    changed = tuple(dict.fromkeys(str(path) for path in paths))
    direct: set[PackageId] = set()
    unowned: list[str] = []
    for path in changed:
        owner = owning_package(path, roots)
        if owner is None:
            unowned.append(path)
        else:
            direct.add(owner)
    return AffectedPackages(
        changed_paths=changed,
        direct=tuple(sorted(direct)),
        closure=dependents_closure(direct, graph),
        unowned_paths=tuple(unowned),
    )


__all__ = [
    "affected_packages",
    "dependents_closure",
    "owning_package",
    "package_roots",
]
