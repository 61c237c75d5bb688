"""Fixtures for stacknotify unit tests."""

from __future__ import annotations

import pytest

from stacknotify.cache import MemoryCacheClient
from stacknotify.throttle import RateLimiter
from tests.unit.test_stacknotify.fakes import FakeClock, RecordingMailer


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCacheClient:
    return MemoryCacheClient(clock=clock.seconds)


@pytest.fixture
def rate_limiter(cache: MemoryCacheClient, clock: FakeClock) -> RateLimiter:
    return RateLimiter(cache, clock=clock)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()
