from __future__ import annotations

import hashlib


CHECKSUM_HEX_LEN = 64
_HEX = frozenset("0123456789abcdef")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_checksum(s: str) -> bool:
    """True iff s is a lowercase hex SHA-256 (the only form OSTree writes)."""
    if not isinstance(s, str) or len(s) != CHECKSUM_HEX_LEN:
        return False
    for c in s:
        if c not in _HEX:
            return False
    return True


def normalize_checksum(s: str) -> str:
    if not isinstance(s, str):
        raise ValueError("checksum must be a string")
    c = s.strip().lower()
    if not is_checksum(c):
        raise ValueError(f"invalid checksum: {s!r}")
    return c
