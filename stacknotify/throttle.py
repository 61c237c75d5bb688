"""Notification rate limiting over the shared cache."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from stacknotify.cache import CacheClient
from stacknotify.constants import (
    PROJECT_THROTTLE_KEY_PREFIX,
    PROJECT_THROTTLE_WINDOW,
    STACK_THROTTLE_KEY_PREFIX,
    STACK_THROTTLE_TTL,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def floor_time(value: datetime, window: timedelta) -> datetime:
    """Round ``value`` down to the start of its ``window``-sized bucket (UTC-aligned)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    elapsed = value - _EPOCH
    return value - (elapsed % window)


def stack_throttle_key(stack_id: str) -> str:
    return f"{STACK_THROTTLE_KEY_PREFIX}{stack_id}"


def project_throttle_key(project_id: str, bucket_start: datetime) -> str:
    return f"{PROJECT_THROTTLE_KEY_PREFIX}{project_id}-{int(bucket_start.timestamp())}"


class RateLimiter:
    """Stack last-sent markers and per-project windowed counters.

    Buckets roll over by key: a new window produces a new key, and old keys
    disappear through their TTL.
    """

    def __init__(
        self,
        cache: CacheClient,
        *,
        project_window: timedelta = PROJECT_THROTTLE_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cache = cache
        self._project_window = project_window
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def get_last_sent(self, stack_id: str) -> datetime | None:
        raw = await self._cache.get(stack_throttle_key(stack_id))
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    async def set_last_sent(
        self, stack_id: str, when: datetime | None = None, ttl: timedelta = STACK_THROTTLE_TTL
    ) -> None:
        when = when or self._clock()
        await self._cache.set(stack_throttle_key(stack_id), when.isoformat(), ttl)

    async def increment_project_counter(self, project_id: str, now: datetime | None = None) -> int:
        """Count one notification against the project's current window and return the total."""
        now = now or self._clock()
        bucket_start = floor_time(now, self._project_window)
        remaining = bucket_start + self._project_window - now
        return await self._cache.increment(project_throttle_key(project_id, bucket_start), 1, remaining)
