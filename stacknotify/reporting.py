"""Error-tracking sink for handler failures."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration

from stacknotify.config import SentryConfig

logger = structlog.get_logger(__name__)


class ErrorReporter(Protocol):
    def report(
        self,
        exc: BaseException,
        context: Mapping[str, Any],
        tags: Mapping[str, str],
        level: str = "error",
    ) -> None: ...


def init_sentry(config: SentryConfig) -> bool:
    """Initialise sentry-sdk when a DSN is configured. Returns whether it was enabled."""
    if not config.dsn:
        logger.info("Sentry disabled: no DSN configured")
        return False

    sentry_sdk.init(
        dsn=config.dsn,
        environment=config.environment,
        # Failures are submitted explicitly by the reporter; log records only become breadcrumbs.
        integrations=[LoggingIntegration(level=None, event_level=None)],
    )
    logger.info("Sentry enabled", environment=config.environment)
    return True


class SentryErrorReporter:
    """Submits an exception with the offending message attached as context."""

    def report(
        self,
        exc: BaseException,
        context: Mapping[str, Any],
        tags: Mapping[str, str],
        level: str = "error",
    ) -> None:
        with sentry_sdk.new_scope() as scope:
            for key, value in tags.items():
                scope.set_tag(key, value)
            scope.set_context("message", dict(context))
            scope.set_level(level)
            sentry_sdk.capture_exception(exc)


class NullErrorReporter:
    def report(
        self,
        exc: BaseException,
        context: Mapping[str, Any],
        tags: Mapping[str, str],
        level: str = "error",
    ) -> None:
        return None
