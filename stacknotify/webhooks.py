"""Outbound webhook delivery."""

from __future__ import annotations

import httpx
import structlog

from stacknotify.constants import WEBHOOK_DELIVERY_TIMEOUT_S
from stacknotify.interfaces import HookRepository
from stacknotify.messages import WebhookMessage

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """POSTs webhook payloads and drops registrations the receiver reports as gone.

    ``deliver`` returns only after the receiver answered (or the request
    failed), so a slow endpoint holds up the consumer that called it.
    Delivery is best-effort: apart from 410 Gone, failures are only logged.
    """

    def __init__(
        self,
        hooks: HookRepository,
        *,
        timeout_s: float = WEBHOOK_DELIVERY_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._hooks = hooks
        self._timeout_s = timeout_s
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def close(self) -> None:
        """Shut down the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def deliver(self, message: WebhookMessage) -> int | None:
        """Deliver one webhook and return the response status, or None on transport failure."""
        log = logger.bind(project_id=message.project_id, url=message.url)
        log.debug("Process web hook call")

        client = self._get_client()
        try:
            response = await client.post(message.url, json=message.data)
        except httpx.InvalidURL as exc:
            log.warning("Web hook URL is malformed", error=str(exc))
            return None
        except httpx.HTTPError as exc:
            log.warning("Web hook POST failed", error=str(exc))
            return None

        if response.status_code == httpx.codes.GONE:
            deleted = await self._hooks.delete_by_url(message.url)
            log.info("Deleting web hook", deleted=deleted)
        elif response.is_error:
            log.warning("Web hook rejected", status=response.status_code)

        log.debug("Web hook POST complete", status=response.status_code)
        return response.status_code
