"""Configuration fingerprinting helpers.

Fingerprints identify a cache configuration across processes. A persisted
cache written under one fingerprint is still readable under another: entry
validity is decided per entry, the fingerprint is diagnostic only.
"""

from __future__ import annotations

from collections.abc import Mapping

from utils.hashing import hash_json_canonical


def config_fingerprint(payload: Mapping[str, object]) -> str:
    """Return the SHA-256 hexdigest of a canonical JSON rendering of ``payload``.

    Returns
    -------
    str
        Stable fingerprint; key order in ``payload`` does not matter.
    """
    return hash_json_canonical(payload, str_keys=True)


__all__ = ["config_fingerprint"]
