from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stacknotify.constants import (
    CONSUMER_GROUP,
    READ_BATCH_SIZE,
    READ_BLOCK_MS,
    REDIS_MAX_CONNECTIONS,
    REDIS_SOCKET_TIMEOUT,
    WEBHOOK_DELIVERY_TIMEOUT_S,
)


class WebsiteMode(str, Enum):
    DEVELOPMENT = "development"
    QA = "qa"
    PRODUCTION = "production"


class RedisConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    url: str = "redis://localhost:6379/0"
    password: Optional[str] = None
    max_connections: int = Field(default=REDIS_MAX_CONNECTIONS, ge=1)
    socket_timeout: int = Field(default=REDIS_SOCKET_TIMEOUT, ge=1)


class NotificationConfig(BaseModel):
    """Delivery-mode guard for outbound notification mail.

    Outside production, mail only goes to addresses containing one of
    ``allowed_outbound_addresses`` (case-insensitive).
    """

    model_config = ConfigDict(extra="allow")
    website_mode: WebsiteMode = WebsiteMode.DEVELOPMENT
    allowed_outbound_addresses: List[str] = []

    @field_validator("allowed_outbound_addresses")
    @classmethod
    def normalize_addresses(cls, v: List[str]) -> List[str]:
        return [addr.strip().lower() for addr in v if addr and addr.strip()]

    @property
    def is_production(self) -> bool:
        return self.website_mode == WebsiteMode.PRODUCTION


class WebhookConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    timeout_s: float = Field(default=WEBHOOK_DELIVERY_TIMEOUT_S, gt=0)


class MailConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    use_tls: bool = True
    sender_email: str = "notifications@localhost"
    sender_name: str = "Stack Notifications"
    base_url: str = "http://localhost"


class SentryConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    dsn: Optional[str] = None
    environment: str = "development"


class WorkerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    consumer_group: str = CONSUMER_GROUP
    consumer_name: Optional[str] = None
    batch_size: int = Field(default=READ_BATCH_SIZE, ge=1)
    block_ms: int = Field(default=READ_BLOCK_MS, ge=0)
    backend: Optional[str] = None  # "module:factory" returning a Backend


class Settings(BaseModel):
    model_config = ConfigDict(extra="allow")
    redis: RedisConfig = RedisConfig()
    notifications: NotificationConfig = NotificationConfig()
    webhooks: WebhookConfig = WebhookConfig()
    mail: MailConfig = MailConfig()
    sentry: SentryConfig = SentryConfig()
    worker: WorkerConfig = WorkerConfig()
