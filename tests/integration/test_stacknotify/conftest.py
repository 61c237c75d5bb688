"""Shared fixtures for stacknotify integration tests."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import pytest
from redis.exceptions import ResponseError


def _s(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _seq(entry_id: bytes | str) -> int:
    return int(_s(entry_id).split("-")[0])


def _b(value: bytes | str | int) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


@dataclass
class _Group:
    delivered: int = 0
    pending: dict[str, list[bytes]] = field(default_factory=dict)


class MockPipeline:
    def __init__(self, redis: "MockStreamRedis") -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple[object, ...], dict[str, object]]] = []

    async def __aenter__(self) -> "MockPipeline":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._ops.clear()

    def incrby(self, key: str, amount: int) -> "MockPipeline":
        self._ops.append(("incrby", (key, amount), {}))
        return self

    def pexpire(self, key: str, ms: int, nx: bool = False) -> "MockPipeline":
        self._ops.append(("pexpire", (key, ms), {"nx": nx}))
        return self

    async def execute(self) -> list[object]:
        results = [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops.clear()
        return [await result for result in results]


class MockStreamRedis:
    """Mock Redis client simulating streams with consumer groups and expiring string keys."""

    def __init__(self) -> None:
        self.streams: dict[str, list[tuple[bytes, dict[bytes, bytes]]]] = {}
        self.groups: dict[tuple[str, str], _Group] = {}
        self.data: dict[str, tuple[bytes, float | None]] = {}
        self.acked: list[tuple[str, bytes]] = []

    # -- streams ----------------------------------------------------------------

    async def xadd(self, stream: str, fields: dict[str, str]) -> bytes:
        entries = self.streams.setdefault(stream, [])
        entry_id = f"{len(entries) + 1}-0".encode()
        entries.append((entry_id, {_b(k): _b(v) for k, v in fields.items()}))
        return entry_id

    async def xgroup_create(self, stream: str, group: str, id: str = "$", mkstream: bool = False) -> bool:  # noqa: A002
        if (stream, group) in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        entries = self.streams.setdefault(stream, [])
        self.groups[(stream, group)] = _Group(delivered=len(entries) if id == "$" else 0)
        return True

    async def xreadgroup(
        self,
        group: str,
        consumer: str,
        streams: dict[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> list[list[object]]:
        result: list[list[object]] = []
        for stream, offset in streams.items():
            state = self.groups[(stream, group)]
            entries = self.streams.get(stream, [])
            pending = state.pending.setdefault(consumer, [])
            if offset == ">":
                batch = entries[state.delivered : state.delivered + (count or len(entries))]
                state.delivered += len(batch)
                pending.extend(entry_id for entry_id, _ in batch)
            else:
                after = _seq(offset)
                batch = [entry for entry in entries if entry[0] in pending and _seq(entry[0]) > after][: count or None]
            if batch:
                result.append([stream.encode(), batch])
        if not result and block:
            await asyncio.sleep(min(block, 10) / 1000)
        return result

    async def xack(self, stream: bytes | str, group: str, *ids: bytes) -> int:
        state = self.groups[(_s(stream), group)]
        removed = 0
        for pending in state.pending.values():
            for entry_id in ids:
                if entry_id in pending:
                    pending.remove(entry_id)
                    self.acked.append((_s(stream), entry_id))
                    removed += 1
        return removed

    def pending_count(self, stream: str, group: str) -> int:
        return sum(len(ids) for ids in self.groups[(stream, group)].pending.values())

    # -- keys -------------------------------------------------------------------

    def _live(self, key: str) -> bytes | None:
        item = self.data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self.data[key]
            return None
        return value

    def ttl_ms(self, key: str) -> float | None:
        item = self.data.get(key)
        if item is None or item[1] is None:
            return None
        return (item[1] - time.monotonic()) * 1000

    async def get(self, key: str) -> bytes | None:
        return self._live(key)

    async def set(self, key: str, value: str, px: int | None = None) -> bool:
        self.data[key] = (_b(value), time.monotonic() + px / 1000 if px else None)
        return True

    async def incrby(self, key: str, amount: int) -> int:
        current = self._live(key)
        value = int(current or 0) + amount
        expires_at = self.data[key][1] if current is not None else None
        self.data[key] = (_b(value), expires_at)
        return value

    async def pexpire(self, key: str, ms: int, nx: bool = False) -> bool:
        if self._live(key) is None:
            return False
        value, expires_at = self.data[key]
        if nx and expires_at is not None:
            return False
        self.data[key] = (value, time.monotonic() + ms / 1000)
        return True

    def pipeline(self, transaction: bool = True) -> MockPipeline:
        return MockPipeline(self)

    async def aclose(self) -> None:
        return None


@pytest.fixture
def redis() -> MockStreamRedis:
    return MockStreamRedis()
