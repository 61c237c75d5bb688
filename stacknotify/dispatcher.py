"""Message dispatcher — Redis Streams consumer that routes each message kind to its handler."""

from __future__ import annotations

import asyncio
import inspect
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from redis.asyncio import Redis
from redis.exceptions import ResponseError

from stacknotify.constants import CONSUMER_GROUP, PENDING_RECOVERY_BATCH_SIZE, READ_BATCH_SIZE, READ_BLOCK_MS
from stacknotify.errors import MessageDecodeError
from stacknotify.messages import MessageKind, from_stream_dict, project_id_of

logger = structlog.get_logger(__name__)

ProcessFn = Callable[[Any], Awaitable[object]]
FailureFn = Callable[[Any, Exception], Awaitable[None] | None]


def _as_str(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class DispatchOutcome(str, Enum):
    HANDLED = "handled"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class HandlerRegistration:
    kind: MessageKind
    process: ProcessFn
    failure: FailureFn


class MessageDispatcher:
    """Routes messages to per-kind handlers and contains every handler failure.

    A message counts as handled once its processing function returns or its
    failure function has run; either way it is acknowledged and never
    redelivered by this dispatcher. Nothing a handler raises escapes
    ``dispatch``.
    """

    def __init__(
        self,
        redis: Redis | None = None,
        *,
        group: str = CONSUMER_GROUP,
        consumer_name: str | None = None,
        batch_size: int = READ_BATCH_SIZE,
        block_ms: int = READ_BLOCK_MS,
    ) -> None:
        self._redis = redis
        self._group = group
        self._consumer = consumer_name or f"worker-{os.getpid()}"
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._registry: dict[MessageKind, HandlerRegistration] = {}

    def register(self, kind: MessageKind, process: ProcessFn, failure: FailureFn) -> None:
        if kind in self._registry:
            raise ValueError(f"Handler already registered for message kind: {kind.value}")
        self._registry[kind] = HandlerRegistration(kind=kind, process=process, failure=failure)

    @property
    def kinds(self) -> list[MessageKind]:
        return list(self._registry)

    async def dispatch(self, kind: MessageKind, message: Any) -> DispatchOutcome:
        registration = self._registry.get(kind)
        if registration is None:
            logger.error("No handler registered for message kind", kind=kind.value)
            return DispatchOutcome.REJECTED

        try:
            await registration.process(message)
            return DispatchOutcome.HANDLED
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._run_failure(registration, message, exc)
            return DispatchOutcome.FAILED

    async def _run_failure(self, registration: HandlerRegistration, message: Any, exc: Exception) -> None:
        try:
            result = registration.failure(message, exc)
            if inspect.isawaitable(result):
                await result
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception(
                "Failure handler raised",
                kind=registration.kind.value,
                project_id=project_id_of(message),
                original_error=str(exc),
            )

    async def handle_entry(self, kind: MessageKind, fields: dict[bytes, bytes] | dict[str, str]) -> DispatchOutcome:
        """Decode one stream entry and dispatch it. Undecodable entries are rejected, not retried."""
        try:
            message = from_stream_dict(kind, fields)
        except MessageDecodeError as exc:
            logger.error("Dropping undecodable message", kind=kind.value, error=str(exc))
            return DispatchOutcome.REJECTED
        return await self.dispatch(kind, message)

    # -- Redis Streams consumer -------------------------------------------------

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("MessageDispatcher has no Redis client; pass one to consume streams.")
        return self._redis

    def _streams(self, offset: str) -> dict[str, str]:
        return {kind.stream: offset for kind in self._registry}

    def _kind_for_stream(self, stream: bytes | str) -> MessageKind | None:
        name = _as_str(stream)
        for kind in self._registry:
            if kind.stream == name:
                return kind
        return None

    async def run(self, shutdown_event: asyncio.Event) -> None:
        redis = self._require_redis()
        await self._ensure_consumer_groups()
        await self._recover_pending()

        logger.info(
            "MessageDispatcher started",
            group=self._group,
            consumer=self._consumer,
            kinds=[kind.value for kind in self._registry],
        )

        while not shutdown_event.is_set():
            try:
                entries = await redis.xreadgroup(
                    self._group,
                    self._consumer,
                    self._streams(">"),
                    count=self._batch_size,
                    block=self._block_ms,
                )
                if not entries:
                    continue
                await self._process_entries(entries)
            except asyncio.CancelledError:
                break
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("MessageDispatcher read loop error; sleeping 1s")
                await asyncio.sleep(1.0)

        logger.info("MessageDispatcher stopped")

    async def _ensure_consumer_groups(self) -> None:
        redis = self._require_redis()
        for kind in self._registry:
            try:
                await redis.xgroup_create(kind.stream, self._group, id="$", mkstream=True)
            except ResponseError as exc:
                if "BUSYGROUP" not in str(exc):
                    raise

    async def _recover_pending(self) -> None:
        """Re-handle entries this consumer read but never acknowledged (e.g. after a crash).

        Pages through each stream's pending list by advancing past the last
        id read, so entries whose ack fails are not handled twice.
        """
        redis = self._require_redis()
        cursors = self._streams("0")
        try:
            while cursors:
                entries = await redis.xreadgroup(
                    self._group,
                    self._consumer,
                    cursors,
                    count=PENDING_RECOVERY_BATCH_SIZE,
                )
                batch = [(stream, messages) for stream, messages in entries or [] if messages]
                if not batch:
                    break
                logger.info(
                    "MessageDispatcher recovering pending entries",
                    entries=sum(len(messages) for _, messages in batch),
                )
                await self._process_entries(batch)
                cursors = {_as_str(stream): _as_str(messages[-1][0]) for stream, messages in batch}
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("MessageDispatcher pending recovery failed")

    async def _process_entries(self, entries: Any) -> None:
        redis = self._require_redis()
        for stream, messages in entries:
            kind = self._kind_for_stream(stream)
            for entry_id, data in messages:
                try:
                    if kind is None:
                        logger.error("Entry from unregistered stream", stream=stream, entry_id=entry_id)
                    elif data:
                        await self.handle_entry(kind, data)
                except Exception:  # pylint: disable=broad-exception-caught
                    logger.exception("MessageDispatcher failed to process entry", entry_id=entry_id)
                finally:
                    try:
                        await redis.xack(stream, self._group, entry_id)
                    except Exception:  # pylint: disable=broad-exception-caught
                        logger.exception("MessageDispatcher failed to ACK entry", entry_id=entry_id)
