"""
cache/store.py -- Key-value backends with per-key TTL.

Two interchangeable implementations of set/get/delete/consume:

  RedisStore  -- redis-py client, SET key value EX ttl. Used in production so
                 every API worker sees the same verification codes.
  MemoryStore -- dict + lock, expiry checked on read. Used by the test suite
                 and by DEBUG deployments that run without a Redis server.

auth.otp.OTPStore is the only consumer. It depends on the method shape, not
on this module, so auth/ never imports cache/.

Usage:
    store = RedisStore("redis://localhost:6379/0")
    store.set("activation:ann@x.com", "012345", ttl=600)
    store.get("activation:ann@x.com")   # "012345" or None
    store.delete("activation:ann@x.com")
    store.consume("activation:ann@x.com", "012345")   # True once, then False
"""

from __future__ import annotations

import secrets
import threading
import time

import redis


def _matches(stored: str | None, value: str) -> bool:
    return stored is not None and secrets.compare_digest(stored.encode(), value.encode())


class RedisStore:
    def __init__(self, redis_url: str, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=socket_timeout)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.set(key, value, ex=ttl)

    def get(self, key: str) -> str | None:
        return self.client.get(key)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def consume(self, key: str, value: str) -> bool:
        """Delete key if it holds value, atomically. Returns True for the one caller that deleted it.

        WATCH/MULTI: if another client touches the key between the read and
        the DEL, redis-py retries and the retry sees the key already gone.
        """

        def _consume(pipe) -> bool:
            stored = pipe.get(key)
            if not _matches(stored, value):
                return False
            pipe.multi()
            pipe.delete(key)
            return True

        return self.client.transaction(_consume, key, value_from_callable=True)

    def ping(self) -> bool:
        """Return True if the server answers PING. Raises redis.RedisError if unreachable."""
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()


class MemoryStore:
    """Thread-safe in-process store. Expired keys are dropped lazily on read."""

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires = entry
            if self._clock() >= expires:
                del self._data[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def consume(self, key: str, value: str) -> bool:
        with self._lock:
            entry = self._data.get(key)
            if entry is None or self._clock() >= entry[1] or not _matches(entry[0], value):
                return False
            del self._data[key]
            return True

    def ttl(self, key: str) -> float | None:
        """Seconds until key expires, or None if absent. Mirrors Redis TTL for tests."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            return max(entry[1] - self._clock(), 0.0)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._data.clear()
