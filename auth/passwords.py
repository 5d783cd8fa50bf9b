"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

hash_password() is idempotent: a value that already looks like a bcrypt hash
is returned unchanged. Store update paths that re-save an unchanged password
field therefore never double-hash it.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import re

import bcrypt

MAX_PASSWORD_BYTES = 72

_BCRYPT_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def is_hashed(value: str) -> bool:
    """Return True if value is already in bcrypt modular-crypt format."""
    return bool(_BCRYPT_RE.match(value or ""))


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of plain, or plain itself if it is already a hash.

    bcrypt only reads the first MAX_PASSWORD_BYTES bytes, and recent releases
    refuse anything longer. Request models reject such passwords with a 422
    before they get here; a longer value raises ValueError.
    """
    if is_hashed(plain):
        return plain
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password exceeds {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches hashed. Never raises."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. Login always runs a bcrypt check, against this
# hash when the email is unknown, so response time does not reveal whether an
# account exists.
DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")
