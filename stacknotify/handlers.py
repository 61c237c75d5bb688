"""Processing and failure functions for every message kind."""

from __future__ import annotations

from typing import Any

import structlog

from stacknotify.dispatcher import MessageDispatcher
from stacknotify.gate import NotificationGate
from stacknotify.interfaces import OccurrencePipeline
from stacknotify.messages import (
    MessageKind,
    NotificationMessage,
    OccurrenceMessage,
    SummaryRequest,
    WebhookMessage,
    project_id_of,
)
from stacknotify.reporting import ErrorReporter
from stacknotify.stats import ERRORS_DEQUEUED, ERRORS_PROCESSING_FAILED, ERRORS_PROCESSING_TIME, StatsClient
from stacknotify.summary import SummaryAggregator
from stacknotify.webhooks import WebhookDispatcher

logger = structlog.get_logger(__name__)

ERROR_QUEUE_TAG = "ErrorMQ"
NOTIFICATION_QUEUE_TAG = "NotificationMQ"
WEBHOOK_QUEUE_TAG = "WebHookMQ"
FAILURE_LEVEL = "fatal"


def _payload(message: Any) -> dict[str, Any]:
    dump = getattr(message, "model_dump", None)
    return dump(mode="json") if callable(dump) else {"message": repr(message)}


class MessageHandlers:
    """Binds the notification gate, summary aggregator, webhook dispatcher and
    occurrence pipeline to the dispatcher, one processing/failure pair per kind."""

    def __init__(
        self,
        *,
        pipeline: OccurrencePipeline,
        gate: NotificationGate,
        summaries: SummaryAggregator,
        webhooks: WebhookDispatcher,
        reporter: ErrorReporter,
        stats: StatsClient,
    ) -> None:
        self._pipeline = pipeline
        self._gate = gate
        self._summaries = summaries
        self._webhooks = webhooks
        self._reporter = reporter
        self._stats = stats

    def register_all(self, dispatcher: MessageDispatcher) -> None:
        dispatcher.register(MessageKind.SUMMARY, self.process_summary, self.on_summary_failure)
        dispatcher.register(MessageKind.NOTIFICATION, self.process_notification, self.on_notification_failure)
        dispatcher.register(MessageKind.OCCURRENCE, self.process_occurrence, self.on_occurrence_failure)
        dispatcher.register(MessageKind.WEBHOOK, self.process_webhook, self.on_webhook_failure)

    def _report(self, exc: Exception, message: Any, kind: MessageKind, tag: str) -> None:
        try:
            self._reporter.report(exc, _payload(message), {"queue": tag, "kind": kind.value}, FAILURE_LEVEL)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Error reporter failed", kind=kind.value, project_id=project_id_of(message))

    # -- occurrences ------------------------------------------------------------

    async def process_occurrence(self, message: OccurrenceMessage | None) -> None:
        if message is None:
            return

        self._stats.counter(ERRORS_DEQUEUED)
        with self._stats.timer(ERRORS_PROCESSING_TIME):
            await self._pipeline.run(message)

    async def on_occurrence_failure(self, message: OccurrenceMessage, exc: Exception) -> None:
        logger.error("Error processing occurrence", project_id=message.project_id, exc_info=exc)
        self._stats.counter(ERRORS_PROCESSING_FAILED)
        self._report(exc, message, MessageKind.OCCURRENCE, ERROR_QUEUE_TAG)

    # -- notifications ----------------------------------------------------------

    async def process_notification(self, message: NotificationMessage) -> None:
        await self._gate.process(message)

    async def on_notification_failure(self, message: NotificationMessage, exc: Exception) -> None:
        logger.error("Error sending notification", project_id=message.project_id, exc_info=exc)
        self._report(exc, message, MessageKind.NOTIFICATION, NOTIFICATION_QUEUE_TAG)

    # -- daily summaries --------------------------------------------------------

    async def process_summary(self, message: SummaryRequest) -> None:
        await self._summaries.send(message)

    async def on_summary_failure(self, message: SummaryRequest, exc: Exception) -> None:
        logger.error("Error processing daily summary", project_id=message.project_id, exc_info=exc)
        self._report(exc, message, MessageKind.SUMMARY, ERROR_QUEUE_TAG)

    # -- webhooks ---------------------------------------------------------------

    async def process_webhook(self, message: WebhookMessage) -> None:
        await self._webhooks.deliver(message)

    async def on_webhook_failure(self, message: WebhookMessage, exc: Exception) -> None:
        logger.error("Error calling web hook", project_id=message.project_id, url=message.url, exc_info=exc)
        self._report(exc, message, MessageKind.WEBHOOK, WEBHOOK_QUEUE_TAG)
