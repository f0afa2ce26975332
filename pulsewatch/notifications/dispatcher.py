"""Notification fan-out and delivery bookkeeping.

NotificationDispatcher -- sends a notification to every channel; failures in
                          one channel never block the others and never raise.
deliver_notification   -- dispatches and writes the outcome back to the
                          alert history row.
"""

import asyncio
from dataclasses import dataclass
from threading import Lock
from typing import List, Optional

import structlog

from ..config import Settings
from ..metrics import notifications_total
from ..storage.base import TelemetryStore
from .base import AlertNotification, NotificationChannel
from .email import EmailNotificationChannel, SMTPConfig
from .webhook import WebhookNotificationChannel

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one fan-out."""

    sent: bool
    email_sent: bool
    error: Optional[str] = None


class NotificationDispatcher:
    """Fan-out dispatcher that sends a notification to every channel."""

    def __init__(self, channels: List[NotificationChannel]):
        self.channels = channels

    def channel(self, name: str) -> Optional[NotificationChannel]:
        for channel in self.channels:
            if channel.channel_name == name:
                return channel
        return None

    async def deliver(self, notification: AlertNotification) -> DeliveryResult:
        """
        Deliver to every channel concurrently.

        Returns:
            DeliveryResult; ``sent`` is True if at least one channel accepted
        """
        if not self.channels:
            return DeliveryResult(sent=False, email_sent=False, error="no notification channels configured")

        outcomes = await asyncio.gather(
            *(self._send_one(channel, notification) for channel in self.channels)
        )

        failed = [channel.channel_name for channel, ok in zip(self.channels, outcomes) if not ok]
        email_sent = any(
            ok for channel, ok in zip(self.channels, outcomes) if channel.channel_name == "email"
        )
        error = f"delivery failed: {', '.join(failed)}" if failed else None
        return DeliveryResult(sent=any(outcomes), email_sent=email_sent, error=error)

    async def _send_one(self, channel: NotificationChannel, notification: AlertNotification) -> bool:
        """Deliver to a single channel, recording metrics regardless of outcome."""
        try:
            success = await channel.send(notification)
        except Exception as e:
            logger.error(
                "notification_channel_unexpected_error",
                channel=channel.channel_name,
                history_id=notification.history_id,
                error=str(e),
            )
            success = False

        notifications_total.labels(channel=channel.channel_name, success=str(success).lower()).inc()

        if success:
            logger.info(
                "notification_sent",
                channel=channel.channel_name,
                history_id=notification.history_id,
                rule_id=notification.rule_id,
            )
        else:
            logger.warning(
                "notification_failed",
                channel=channel.channel_name,
                history_id=notification.history_id,
            )
        return success


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    """Channels enabled by the current settings."""
    channels: List[NotificationChannel] = []

    smtp = SMTPConfig.from_settings(settings)
    if smtp is not None:
        channels.append(EmailNotificationChannel(smtp))

    if settings.alert_webhook_url:
        channels.append(WebhookNotificationChannel(settings.alert_webhook_url))

    return NotificationDispatcher(channels)


_dispatcher: Optional[NotificationDispatcher] = None
_dispatcher_lock = Lock()


def get_dispatcher(settings: Optional[Settings] = None) -> NotificationDispatcher:
    """Get global dispatcher instance."""
    global _dispatcher

    if _dispatcher is None:
        with _dispatcher_lock:
            if _dispatcher is None:
                if settings is None:
                    from ..config import settings as default_settings

                    settings = default_settings
                _dispatcher = build_dispatcher(settings)

    return _dispatcher


def set_dispatcher(dispatcher: Optional[NotificationDispatcher]) -> None:
    global _dispatcher
    with _dispatcher_lock:
        _dispatcher = dispatcher


async def deliver_notification(
    notification: AlertNotification,
    store: TelemetryStore,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> DeliveryResult:
    """
    Send a notification once and record the outcome on its history row.

    Delivery is never retried and a failure never removes the history row.
    """
    dispatcher = dispatcher or get_dispatcher()
    result = await dispatcher.deliver(notification)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(
        None,
        store.set_history_delivery,
        notification.history_id,
        result.email_sent,
        result.error,
    )

    if not result.sent:
        logger.warning(
            "alert_notification_undelivered",
            history_id=notification.history_id,
            error=result.error,
        )
    return result
