"""Metrics sink.

Counters and timers are side effects only; nothing in stacknotify reads
them back.
"""

from __future__ import annotations

import time
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator, Protocol

import structlog

logger = structlog.get_logger(__name__)

ERRORS_DEQUEUED = "errors.dequeued"
ERRORS_PROCESSING_FAILED = "errors.processing_failed"
ERRORS_PROCESSING_TIME = "errors.processing_time"


class StatsClient(Protocol):
    def counter(self, name: str, value: int = 1) -> None: ...

    def timer(self, name: str) -> AbstractContextManager[None]: ...


class LoggingStatsClient:
    """Writes metrics as debug log events for a log shipper to aggregate."""

    def counter(self, name: str, value: int = 1) -> None:
        logger.debug("stat.counter", stat=name, value=value)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug("stat.timer", stat=name, elapsed_ms=round(elapsed_ms, 3))
