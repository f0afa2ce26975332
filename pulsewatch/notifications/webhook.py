"""Generic JSON webhook notification channel."""

import httpx
import structlog

from .base import AlertNotification, NotificationChannel

logger = structlog.get_logger(__name__)


class WebhookNotificationChannel(NotificationChannel):
    """Posts the notification as JSON to a configured URL.

    Args:
        url:     Endpoint receiving the POST.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(self, url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport = None):
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send(self, notification: AlertNotification) -> bool:
        payload = notification.model_dump(mode="json")
        payload["subject"] = notification.subject
        payload["link"] = notification.error_link

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("webhook_request_failed", url=self._url, error=str(e))
            return False

        if response.status_code >= 300:
            logger.warning("webhook_rejected", url=self._url, status=response.status_code)
            return False
        return True
