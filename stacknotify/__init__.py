"""stacknotify — queue worker for error notifications, daily summaries and webhooks."""

from stacknotify.cache import CacheClient, MemoryCacheClient, RedisCacheClient
from stacknotify.dispatcher import DispatchOutcome, MessageDispatcher
from stacknotify.gate import NotificationGate
from stacknotify.handlers import MessageHandlers
from stacknotify.messages import MessageKind, NotificationMessage, OccurrenceMessage, SummaryRequest, WebhookMessage
from stacknotify.summary import SummaryAggregator
from stacknotify.throttle import RateLimiter
from stacknotify.webhooks import WebhookDispatcher

__all__ = [
    "CacheClient",
    "MemoryCacheClient",
    "RedisCacheClient",
    "DispatchOutcome",
    "MessageDispatcher",
    "MessageHandlers",
    "NotificationGate",
    "MessageKind",
    "NotificationMessage",
    "OccurrenceMessage",
    "SummaryRequest",
    "WebhookMessage",
    "SummaryAggregator",
    "RateLimiter",
    "WebhookDispatcher",
]
