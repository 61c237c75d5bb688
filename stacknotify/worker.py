"""Worker entrypoint — wires collaborators, cache and handlers, then consumes the queues.

Storage and the occurrence pipeline are provided by the host application
through a backend factory (``module:callable``) that receives the loaded
settings and returns a ``Backend``.

Usage:
    stacknotify-worker --backend myapp.notify:build_backend [--config path] [--log-level DEBUG]
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import structlog
from redis.asyncio import Redis

from stacknotify.cache import RedisCacheClient
from stacknotify.config import Settings, load_settings
from stacknotify.dispatcher import MessageDispatcher
from stacknotify.errors import ConfigError
from stacknotify.gate import NotificationGate
from stacknotify.handlers import MessageHandlers
from stacknotify.interfaces import (
    ErrorStatsHelper,
    HookRepository,
    Mailer,
    OccurrencePipeline,
    OrganizationRepository,
    ProjectRepository,
    StackRepository,
    TimeZoneResolver,
    UserRepository,
)
from stacknotify.logging_config import setup_logging
from stacknotify.mail import SmtpMailer
from stacknotify.reporting import ErrorReporter, NullErrorReporter, SentryErrorReporter, init_sentry
from stacknotify.stats import LoggingStatsClient, StatsClient
from stacknotify.summary import SummaryAggregator, ZoneInfoTimeZoneResolver
from stacknotify.throttle import RateLimiter
from stacknotify.webhooks import WebhookDispatcher

logger = structlog.get_logger(__name__)


@dataclass
class Backend:
    """Host-application collaborators. Optional members fall back to built-in implementations."""

    projects: ProjectRepository
    organizations: OrganizationRepository
    users: UserRepository
    stacks: StackRepository
    hooks: HookRepository
    error_stats: ErrorStatsHelper
    pipeline: OccurrencePipeline
    time_zones: TimeZoneResolver | None = None
    mailer: Mailer | None = None
    stats: StatsClient | None = None


@dataclass
class Worker:
    dispatcher: MessageDispatcher
    webhooks: WebhookDispatcher
    redis: Redis

    async def close(self) -> None:
        await self.webhooks.close()
        await self.redis.aclose()


def load_backend_factory(path: str) -> Callable[[Settings], Any]:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Backend must be given as 'module:factory', got: {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Backend factory {path!r} is not callable")
    return factory


async def build_backend(settings: Settings, path: str) -> Backend:
    backend = load_backend_factory(path)(settings)
    if inspect.isawaitable(backend):
        backend = await backend
    if not isinstance(backend, Backend):
        raise ConfigError(f"Backend factory {path!r} returned {type(backend).__name__}, expected Backend")
    return backend


def build_worker(
    settings: Settings,
    backend: Backend,
    redis: Redis,
    *,
    reporter: ErrorReporter | None = None,
    consumer_name: str | None = None,
) -> Worker:
    """Assemble the dispatcher and every handler from settings and collaborators."""
    mailer = backend.mailer or SmtpMailer(settings.mail)
    rate_limiter = RateLimiter(RedisCacheClient(redis))

    gate = NotificationGate(
        projects=backend.projects,
        organizations=backend.organizations,
        stacks=backend.stacks,
        users=backend.users,
        rate_limiter=rate_limiter,
        mailer=mailer,
        config=settings.notifications,
    )
    summaries = SummaryAggregator(
        projects=backend.projects,
        organizations=backend.organizations,
        stacks=backend.stacks,
        users=backend.users,
        time_zones=backend.time_zones or ZoneInfoTimeZoneResolver(backend.projects),
        stats=backend.error_stats,
        mailer=mailer,
    )
    webhooks = WebhookDispatcher(backend.hooks, timeout_s=settings.webhooks.timeout_s)

    dispatcher = MessageDispatcher(
        redis,
        group=settings.worker.consumer_group,
        consumer_name=consumer_name or settings.worker.consumer_name,
        batch_size=settings.worker.batch_size,
        block_ms=settings.worker.block_ms,
    )
    handlers = MessageHandlers(
        pipeline=backend.pipeline,
        gate=gate,
        summaries=summaries,
        webhooks=webhooks,
        reporter=reporter or NullErrorReporter(),
        stats=backend.stats or LoggingStatsClient(),
    )
    handlers.register_all(dispatcher)
    return Worker(dispatcher=dispatcher, webhooks=webhooks, redis=redis)


def create_redis(settings: Settings) -> Redis:
    return Redis.from_url(
        settings.redis.url,
        password=settings.redis.password,
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
    )


async def run(settings: Settings, backend_path: str, consumer_name: str | None = None) -> None:
    reporter: ErrorReporter = SentryErrorReporter() if init_sentry(settings.sentry) else NullErrorReporter()
    backend = await build_backend(settings, backend_path)
    worker = build_worker(settings, backend, create_redis(settings), reporter=reporter, consumer_name=consumer_name)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        await worker.dispatcher.run(shutdown_event)
    finally:
        await worker.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Consume notification, summary, webhook and occurrence queues.")
    parser.add_argument("--config", type=Path, default=None, help="Path to stacknotify.yml.")
    parser.add_argument("--backend", default=None, help="Backend factory as 'module:callable'.")
    parser.add_argument("--consumer", default=None, help="Consumer name within the group (default: worker-<pid>).")
    parser.add_argument("--log-level", default=None, help="Override STACKNOTIFY_LOG_LEVEL.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration", error=str(exc))
        return 2

    backend_path = args.backend or settings.worker.backend
    if not backend_path:
        logger.error("No backend configured; pass --backend or set worker.backend")
        return 2

    try:
        asyncio.run(run(settings, backend_path, args.consumer))
    except ConfigError as exc:
        logger.error("Invalid backend", error=str(exc))
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
