"""Tests for invalidation matching and the reverse index."""

from __future__ import annotations

import pytest

from cache.entries import EntryMetadata
from cache.invalidation import ChangeSet, InvalidationIndex, parts_match, path_parts


@pytest.mark.parametrize(
    ("changed", "recorded", "expected"),
    [
        ("/mods/pkg/a.txt", "/mods/pkg/a.txt", True),
        ("pkg/a.txt", "/mods/pkg/a.txt", True),
        ("a.txt", "/mods/pkg/a.txt", True),
        ("/mods/pkg/a.txt", "a.txt", True),
        ("other/a.txt", "/mods/pkg/a.txt", False),
        ("/mods/pkg/ba.txt", "/mods/pkg/a.txt", False),
        ("C:\\mods\\pkg\\a.txt", "pkg/a.txt", True),
    ],
)
def test_parts_match(changed: str, recorded: str, *, expected: bool) -> None:
    """Ensure paths match on trailing components only."""
    assert parts_match(path_parts(changed), path_parts(recorded)) is expected


def test_path_parts_drops_root_and_dot_segments() -> None:
    """Ensure normalization ignores root markers and ``.`` segments."""
    assert path_parts("/mods/./pkg/a.txt") == ("mods", "pkg", "a.txt")
    assert path_parts("") == ()


def test_change_set_matches_dependencies_and_files() -> None:
    """Ensure a change set matches on either dependencies or files."""
    changes = ChangeSet.build(["pkg/a.txt"], ["core"])

    assert changes.matches(EntryMetadata(dependencies=("core",)))
    assert changes.matches(EntryMetadata(files=("/root/pkg/a.txt",)))
    assert not changes.matches(EntryMetadata(files=("/root/pkg/b.txt",), dependencies=("ui",)))
    assert changes.basenames() == frozenset({"a.txt"})
    assert ChangeSet.build().empty


def test_index_affected_keys() -> None:
    """Ensure the index finds keys through files and dependencies."""
    index = InvalidationIndex()
    index.add("a", EntryMetadata(files=("/mods/a/x.txt",), dependencies=("core",)))
    index.add("b", EntryMetadata(files=("/mods/b/x.txt",)))
    index.add("c", EntryMetadata(dependencies=("a",)))

    assert index.affected_keys(ChangeSet.build(["a/x.txt"])) == {"a"}
    assert index.affected_keys(ChangeSet.build(["x.txt"])) == {"a", "b"}
    assert index.affected_keys(ChangeSet.build(changed_deps=["core", "a"])) == {"a", "c"}


def test_index_remove_and_replace() -> None:
    """Ensure re-adding a key replaces its records and remove forgets it."""
    index = InvalidationIndex()
    index.add("a", EntryMetadata(files=("old.txt",)))
    index.add("a", EntryMetadata(files=("new.txt",)))

    assert index.affected_keys(ChangeSet.build(["old.txt"])) == set()
    assert index.affected_keys(ChangeSet.build(["new.txt"])) == {"a"}

    index.remove("a")
    assert "a" not in index
    assert len(index) == 0
    assert index.affected_keys(ChangeSet.build(["new.txt"])) == set()
