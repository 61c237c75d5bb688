"""stacknotify logging configuration.

Modules log through ``structlog.get_logger(__name__)`` with key/value event
fields. This module routes those events through stdlib logging so library
loggers (redis, httpx) end up in the same stream.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog

LOG_LEVEL_ENV = "STACKNOTIFY_LOG_LEVEL"
LOG_FORMAT_ENV = "STACKNOTIFY_LOG_FORMAT"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structlog and the root logger.

    Args:
        level: Optional override for `STACKNOTIFY_LOG_LEVEL`.
    """
    level_name = (level or os.getenv(LOG_LEVEL_ENV) or "INFO").upper()
    use_json = os.getenv(LOG_FORMAT_ENV, "").lower() == "json"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    render_chain: list[structlog.types.Processor] = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if use_json
        else [structlog.dev.ConsoleRenderer(colors=False)]
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level_name)

    # Suppress noisy library loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
