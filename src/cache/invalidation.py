"""Invalidation index for validation cache entries.

An entry is invalidated when any of its recorded files matches a changed file
or any of its recorded dependencies is a changed dependency.

File paths reach the cache from several subsystems and are not always spelled
the same way (absolute vs. repository-relative, bare file names). Two paths
match when the components of the shorter one equal the trailing components of
the longer one. Exact matches and bare-basename matches are both special cases
of this rule; an ambiguous tail over-invalidates rather than missing a change.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePath, PurePosixPath

from cache.entries import CacheKey, EntryMetadata, PackageId

type PathParts = tuple[str, ...]

_SKIPPED_PARTS = frozenset({"", ".", "/"})


def path_parts(path: str | PurePath) -> PathParts:
    """Return normalized POSIX components for a path.

    Returns
    -------
    tuple[str, ...]
        Path components without root markers or ``.`` segments.
    """
    text = str(path).replace("\\", "/")
    return tuple(part for part in PurePosixPath(text).parts if part not in _SKIPPED_PARTS)


def parts_match(left: PathParts, right: PathParts) -> bool:
    """Return True when one path is a component-wise suffix of the other.

    Returns
    -------
    bool
        ``True`` when the shorter path equals the tail of the longer path.
    """
    if not left or not right:
        return False
    shorter, longer = (left, right) if len(left) <= len(right) else (right, left)
    return longer[-len(shorter) :] == shorter


@dataclass(frozen=True)
class ChangeSet:
    """Normalized changed files and dependencies for matching."""

    file_parts: tuple[PathParts, ...] = ()
    dependencies: frozenset[PackageId] = frozenset()

    @classmethod
    def build(
        cls,
        changed_files: Iterable[str | PurePath] = (),
        changed_deps: Iterable[PackageId] = (),
    ) -> ChangeSet:
        """Normalize raw change lists.

        Returns
        -------
        ChangeSet
            Normalized change set.
        """
        parts = {path_parts(path) for path in changed_files}
        parts.discard(())
        return cls(file_parts=tuple(sorted(parts)), dependencies=frozenset(changed_deps))

    @property
    def empty(self) -> bool:
        """Return True when nothing changed."""
        return not self.file_parts and not self.dependencies

    def basenames(self) -> frozenset[str]:
        """Return the final component of every changed file.

        Returns
        -------
        frozenset[str]
            Changed file basenames.
        """
        return frozenset(parts[-1] for parts in self.file_parts)

    def matches(self, metadata: EntryMetadata) -> bool:
        """Return True when entry metadata overlaps this change set.

        Returns
        -------
        bool
            ``True`` when the entry must be invalidated.
        """
        if self.dependencies.intersection(metadata.dependencies):
            return True
        return any(
            parts_match(changed, path_parts(recorded))
            for recorded in metadata.files
            for changed in self.file_parts
        )


class InvalidationIndex:
    """Reverse index from files and dependencies to cache keys.

    Not synchronized; the owning store serializes access under its lock.
    """

    def __init__(self) -> None:
        self._files: dict[CacheKey, tuple[PathParts, ...]] = {}
        self._dependencies: dict[CacheKey, tuple[PackageId, ...]] = {}
        self._by_basename: dict[str, set[CacheKey]] = {}
        self._by_dependency: dict[PackageId, set[CacheKey]] = {}

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, key: object) -> bool:
        return key in self._files

    def add(self, key: CacheKey, metadata: EntryMetadata) -> None:
        """Index an entry's files and dependencies, replacing prior records."""
        self.remove(key)
        parts = tuple(parts for parts in map(path_parts, metadata.files) if parts)
        self._files[key] = parts
        self._dependencies[key] = tuple(metadata.dependencies)
        for item in parts:
            self._by_basename.setdefault(item[-1], set()).add(key)
        for dependency in metadata.dependencies:
            self._by_dependency.setdefault(dependency, set()).add(key)

    def remove(self, key: CacheKey) -> None:
        """Drop an entry from the index when present."""
        parts = self._files.pop(key, None)
        if parts is None:
            return
        for item in parts:
            _discard(self._by_basename, item[-1], key)
        for dependency in self._dependencies.pop(key, ()):
            _discard(self._by_dependency, dependency, key)

    def clear(self) -> None:
        """Drop every indexed entry."""
        self._files.clear()
        self._dependencies.clear()
        self._by_basename.clear()
        self._by_dependency.clear()

    def affected_keys(self, changes: ChangeSet) -> set[CacheKey]:
        """Return keys whose entries are invalidated by ``changes``.

        Returns
        -------
        set[str]
            Keys to invalidate.
        """
        affected: set[CacheKey] = set()
        for dependency in changes.dependencies:
            affected.update(self._by_dependency.get(dependency, ()))
        for changed in changes.file_parts:
            for key in self._by_basename.get(changed[-1], ()):
                if key in affected:
                    continue
                if any(parts_match(changed, recorded) for recorded in self._files[key]):
                    affected.add(key)
        return affected


def _discard(index: dict[str, set[CacheKey]], name: str, key: CacheKey) -> None:
    keys = index.get(name)
    if keys is None:
        return
    keys.discard(key)
    if not keys:
        del index[name]


__all__ = [
    "ChangeSet",
    "InvalidationIndex",
    "parts_match",
    "path_parts",
]
