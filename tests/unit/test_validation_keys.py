"""Tests for cache keys, fingerprints, and content hashes."""

from __future__ import annotations

from pathlib import Path

from core.fingerprinting import CompositeFingerprint
from validation_cache.keys import content_hash_for_files, validation_cache_key


def test_composite_fingerprint_stable_order_and_key() -> None:
    """Ensure component ordering is stable regardless of input order."""
    first = CompositeFingerprint.from_components(1, b="2", a="1")
    second = CompositeFingerprint.from_components(1, a="1", b="2")

    assert first.components == second.components
    assert first.as_cache_key(prefix="validation") == second.as_cache_key(prefix="validation")


def test_composite_fingerprint_extend() -> None:
    """Ensure extension adds components and changes the key."""
    fp = CompositeFingerprint.from_components(1, alpha="x")
    extended = fp.extend(beta="y")

    assert [component.name for component in extended.components] == ["alpha", "beta"]
    assert extended.as_cache_key() != fp.as_cache_key()


def test_validation_key_ignores_option_order() -> None:
    """Ensure option order never changes the cache key."""
    first = validation_cache_key("pkg", {"strict": True, "level": 2})
    second = validation_cache_key("pkg", {"level": 2, "strict": True})

    assert first == second
    assert first.startswith("validation")


def test_validation_key_varies_with_identity_and_options() -> None:
    """Ensure package and options both contribute to the key."""
    base = validation_cache_key("pkg")
    assert validation_cache_key("other") != base
    assert validation_cache_key("pkg", {"strict": True}) != base
    assert validation_cache_key("pkg", {}) == base


def test_content_hash_tracks_edits_and_deletes(tmp_path: Path) -> None:
    """Ensure edits, deletions, and renames change the content hash."""
    first = tmp_path / "a.txt"
    second = tmp_path / "b.txt"
    first.write_text("one")
    second.write_text("two")
    original = content_hash_for_files([first, second])

    assert content_hash_for_files([second, first]) == original

    first.write_text("changed")
    edited = content_hash_for_files([first, second])
    assert edited != original

    second.unlink()
    assert content_hash_for_files([first, second]) != edited

    renamed = tmp_path / "c.txt"
    first.rename(renamed)
    assert content_hash_for_files([renamed]) != content_hash_for_files([first])
