"""Worker configuration.

Settings are loaded explicitly by the worker entrypoint and passed down to
the components that need them; nothing reads configuration from module state.
"""

from stacknotify.config.loader import load_config, load_settings
from stacknotify.config.schema import (
    MailConfig,
    NotificationConfig,
    RedisConfig,
    SentryConfig,
    Settings,
    WebhookConfig,
    WebsiteMode,
    WorkerConfig,
)

__all__ = [
    "MailConfig",
    "NotificationConfig",
    "RedisConfig",
    "SentryConfig",
    "Settings",
    "WebhookConfig",
    "WebsiteMode",
    "WorkerConfig",
    "load_config",
    "load_settings",
]
