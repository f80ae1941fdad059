"""
Stable fingerprint generation for tracker identities.

Hashes the stable payload prefix into a 160-bit lowercase hex signature.
No salt: the same bytes give the same signature across process restarts.
Hash collisions between different prefixes are an accepted residual risk.
"""

from __future__ import annotations

import hashlib

SIGNATURE_LENGTH = 40


def fingerprint(stable_bytes: bytes) -> str:
    """Return the SHA-1 signature of the stable bytes."""
    return hashlib.sha1(bytes(stable_bytes)).hexdigest()


def logical_id(kind: str, signature: str) -> str:
    """Build the family-prefixed logical id, e.g. 'AIRTAG_<sig>'."""
    return f"{kind}_{signature}"
