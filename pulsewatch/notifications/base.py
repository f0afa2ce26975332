"""Notification payload and channel interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel


class AlertNotification(BaseModel):
    """Everything a channel needs to describe one alert trigger."""

    history_id: str
    rule_id: str
    rule_name: str
    rule_type: str
    dsn: str
    recipients: List[str] = []
    fingerprint: str
    group_id: str
    error_type: str
    error_message: str
    count: int
    url: str = ""
    first_seen: int
    last_seen: int
    triggered_at: int
    dashboard_url: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"[Pulsewatch] {self.rule_name}: {self.error_type}: {self.error_message[:120]}"

    @property
    def error_link(self) -> Optional[str]:
        if not self.dashboard_url:
            return None
        return f"{self.dashboard_url.rstrip('/')}/errors/{self.group_id}"


class NotificationChannel(ABC):
    """Abstract base class for all notification channels.

    Every concrete channel must implement ``send``, which should not
    raise: return ``False`` instead.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, notification: AlertNotification) -> bool:
        """Deliver ``notification``; True if the remote end accepted it."""
