"""
auth/otp.py -- One-time verification codes kept in a key-value store.

Codes live under "{purpose}:{email}" with a TTL. Setting a code overwrites
whatever was stored for that purpose and email and restarts the TTL, so at
most one code is outstanding per purpose per address.

The backend is anything with set(key, value, ttl), get(key), delete(key) and
consume(key, value):
cache.store.RedisStore in production, cache.store.MemoryStore in tests.
auth/ does not import cache/; the backend is injected by the application edge.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import secrets
from typing import Protocol

ACTIVATION = "activation"
TWO_FACTOR = "2fa"

ACTIVATION_TTL = 10 * 60
TWO_FACTOR_TTL = 5 * 60

CODE_LENGTH = 6


class KeyValueBackend(Protocol):
    def set(self, key: str, value: str, ttl: int) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...

    def consume(self, key: str, value: str) -> bool: ...


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return a zero-padded numeric code from the OS CSPRNG."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def _key(purpose: str, email: str) -> str:
    return f"{purpose}:{email}"


class OTPStore:
    """set/get/delete of verification codes by purpose and email."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend

    def set_code(self, purpose: str, email: str, code: str, ttl: int) -> None:
        self._backend.set(_key(purpose, email), code, ttl)

    def get_code(self, purpose: str, email: str) -> str | None:
        """Return the stored code, or None if absent or expired."""
        return self._backend.get(_key(purpose, email))

    def delete_code(self, purpose: str, email: str) -> None:
        self._backend.delete(_key(purpose, email))

    def consume_code(self, purpose: str, email: str, code: str) -> bool:
        """Delete the stored code if it equals code. Only one concurrent caller gets True."""
        return self._backend.consume(_key(purpose, email), code)
