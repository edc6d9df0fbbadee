"""
One-way credential hashing.

Passwords are reduced to a SHA-256 hex digest before they reach the store or a
log line. The digest is deterministic so it doubles as the lookup and
uniqueness value for encrypted columns.
"""

from __future__ import annotations

import hashlib
import hmac

DIGEST_HEX_LENGTH = 64


def hash_password(password: str) -> str:
    """Return the 64-character hex SHA-256 digest of ``password``."""
    if not isinstance(password, str):
        raise TypeError("password must be a string")
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, digest: str) -> bool:
    """Check a candidate password against a stored digest."""
    return hmac.compare_digest(hash_password(password), digest)


__all__ = ["DIGEST_HEX_LENGTH", "hash_password", "verify_password"]
