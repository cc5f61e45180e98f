"""Composite fingerprints identifying a validation request."""

from __future__ import annotations

from collections.abc import Mapping

from serde_msgspec import StructBaseStrict
from utils.hashing import CacheKeyBuilder, hash_msgpack_canonical


class FingerprintComponent(StructBaseStrict, frozen=True):
    """One named, already-digested input of a fingerprint."""

    name: str
    value: str


def _sorted_components(named: Mapping[str, str]) -> tuple[FingerprintComponent, ...]:
    return tuple(FingerprintComponent(name=name, value=named[name]) for name in sorted(named))


class CompositeFingerprint(StructBaseStrict, frozen=True):
    """Versioned set of named components, kept sorted by name."""

    version: int
    components: tuple[FingerprintComponent, ...]

    @classmethod
    def from_components(cls, version: int, **components: str) -> CompositeFingerprint:
        """Build a fingerprint from keyword components.

        Returns
        -------
        CompositeFingerprint
            Fingerprint whose components are sorted by name.
        """
        return cls(version=version, components=_sorted_components(components))

    @classmethod
    def from_options(
        cls,
        version: int,
        *,
        identity: str,
        options: Mapping[str, object] | None = None,
    ) -> CompositeFingerprint:
        """Build a fingerprint from an identity and an options mapping.

        The options collapse into one digest, so neither their order nor
        their nesting reaches the key.

        Returns
        -------
        CompositeFingerprint
            Fingerprint with ``identity`` and ``options`` components.
        """
        digest = hash_msgpack_canonical(dict(options) if options else {})
        return cls.from_components(version, identity=identity, options=digest)

    def as_mapping(self) -> dict[str, str]:
        """Return the components as a name-to-value mapping."""
        return {component.name: component.value for component in self.components}

    def extend(self, **additional: str) -> CompositeFingerprint:
        """Return a copy with ``additional`` components added or replaced.

        Returns
        -------
        CompositeFingerprint
            New fingerprint with the same version.
        """
        merged = {**self.as_mapping(), **additional}
        return CompositeFingerprint(version=self.version, components=_sorted_components(merged))

    def as_cache_key(self, *, prefix: str = "") -> str:
        """Return the ``prefix:digest`` cache key for this fingerprint."""
        return (
            CacheKeyBuilder(prefix=prefix)
            .add("version", self.version)
            .add("components", self.as_mapping())
            .build()
        )


__all__ = ["CompositeFingerprint", "FingerprintComponent"]
