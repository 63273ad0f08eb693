from __future__ import annotations

import threading
import time
from collections.abc import Callable

from resumable_upload.config import settings


class CoordinationStore:
    """Shared key-value state used across requests and processes.

    Every method is a single atomic operation against the backing store;
    callers never need to read-then-write to keep a set and its
    cardinality consistent.
    """

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        raise NotImplementedError

    def delete(self, *keys: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def expire(self, key: str, ttl_seconds: int) -> bool:
        raise NotImplementedError

    def set_add(self, key: str, member: str, ttl_seconds: int | None = None) -> int:
        """Add `member` and return the set's cardinality after the add."""
        raise NotImplementedError

    def set_members(self, key: str) -> set[str]:
        raise NotImplementedError

    def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        raise NotImplementedError


class MemoryCoordinationStore(CoordinationStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, str | set[str]] = {}
        self._expires_at: dict[str, float] = {}

    def _deadline(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def _live(self, key: str) -> str | set[str] | None:
        # Expiry is passive: a key past its deadline is dropped on the next access.
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            return None
        return self._values.get(key)

    def _store(self, key: str, value: str | set[str], ttl_seconds: int | None) -> None:
        self._values[key] = value
        deadline = self._deadline(ttl_seconds)
        if deadline is None:
            self._expires_at.pop(key, None)
        else:
            self._expires_at[key] = deadline

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._store(key, value, ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._store(key, value, ttl_seconds)
            return True

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._values.pop(key, None)
                self._expires_at.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._expires_at[key] = self._clock() + ttl_seconds
            return True

    def set_add(self, key: str, member: str, ttl_seconds: int | None = None) -> int:
        with self._lock:
            current = self._live(key)
            members = set(current) if isinstance(current, set) else set()
            members.add(member)
            self._store(key, members, ttl_seconds)
            return len(members)

    def set_members(self, key: str) -> set[str]:
        with self._lock:
            value = self._live(key)
            return set(value) if isinstance(value, set) else set()

    def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        with self._lock:
            current = self._live(key)
            next_value = int(current) + 1 if isinstance(current, str) else 1
            if ttl_seconds is None and key in self._expires_at:
                self._values[key] = str(next_value)
            else:
                self._store(key, str(next_value), ttl_seconds)
            return next_value


class RedisCoordinationStore(CoordinationStore):
    def __init__(self, redis_url: str, key_prefix: str = "") -> None:
        import redis

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        return self._client.get(self._key(key))

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._client.set(self._key(key), value, ex=ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        return bool(self._client.set(self._key(key), value, nx=True, ex=ttl_seconds))

    def delete(self, *keys: str) -> None:
        if keys:
            self._client.delete(*(self._key(key) for key in keys))

    def exists(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self._client.expire(self._key(key), ttl_seconds))

    def set_add(self, key: str, member: str, ttl_seconds: int | None = None) -> int:
        full_key = self._key(key)
        # MULTI/EXEC: SCARD observes exactly this SADD, never an interleaved one.
        pipe = self._client.pipeline(transaction=True)
        pipe.sadd(full_key, member)
        pipe.scard(full_key)
        if ttl_seconds is not None:
            pipe.expire(full_key, ttl_seconds)
        results = pipe.execute()
        return int(results[1])

    def set_members(self, key: str) -> set[str]:
        return set(self._client.smembers(self._key(key)))

    def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        full_key = self._key(key)
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(full_key)
        if ttl_seconds is not None:
            pipe.expire(full_key, ttl_seconds)
        results = pipe.execute()
        return int(results[0])


def build_coordination_store() -> CoordinationStore:
    backend = settings.coordination_backend.lower()
    if backend == "memory":
        return MemoryCoordinationStore()
    if backend == "redis":
        return RedisCoordinationStore(redis_url=settings.redis_url, key_prefix=settings.redis_key_prefix)
    raise ValueError(f"unsupported coordination backend: {settings.coordination_backend}")
