"""Expiring shared cache used for throttle state.

Workers can run in separate processes, so every read-modify-write goes
through the backend's own atomic primitives rather than in-process locks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Protocol

from redis.asyncio import Redis


class CacheClient(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: timedelta) -> None: ...

    async def increment(self, key: str, amount: int, ttl: timedelta) -> int: ...


def _ttl_ms(ttl: timedelta) -> int:
    # Redis rejects non-positive expiries
    return max(1, int(ttl.total_seconds() * 1000))


class RedisCacheClient:
    """CacheClient backed by Redis string keys."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(key)
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        await self._redis.set(key, value, px=_ttl_ms(ttl))

    async def increment(self, key: str, amount: int, ttl: timedelta) -> int:
        """Atomically add ``amount`` and return the new value.

        The expiry is only applied when the key has none yet, so the first
        increment of a window fixes when the window's counter disappears.
        """
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incrby(key, amount)
            pipe.pexpire(key, _ttl_ms(ttl), nx=True)
            results = await pipe.execute()
        return int(results[0])


@dataclass
class _Entry:
    value: str
    expires_at: float


class MemoryCacheClient:
    """Process-local CacheClient for single-worker deployments and tests.

    Coroutines never yield between reading and writing an entry, so
    operations are atomic for every task sharing the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl.total_seconds())

    async def increment(self, key: str, amount: int, ttl: timedelta) -> int:
        entry = self._live(key)
        if entry is None:
            entry = _Entry(value="0", expires_at=self._clock() + ttl.total_seconds())
            self._entries[key] = entry
        current = int(entry.value)
        entry.value = str(current + amount)
        return current + amount

    def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None when absent."""
        entry = self._live(key)
        return entry.expires_at - self._clock() if entry else None
