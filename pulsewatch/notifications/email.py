"""Email notification channel.

SMTP I/O runs in a thread-pool executor so the event loop is never blocked.
"""

import asyncio
import smtplib
import ssl
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional

import structlog

from ..config import Settings
from .base import AlertNotification, NotificationChannel

logger = structlog.get_logger(__name__)


class SMTPConfig:
    """SMTP connection parameters.

    Args:
        host:       SMTP server hostname.
        port:       SMTP server port (587 for STARTTLS, 465 for SSL).
        username:   SMTP authentication username.
        password:   SMTP authentication password.
        from_addr:  Sender email address.
        use_tls:    If True, use SMTP_SSL (port 465). Defaults to False
                    (STARTTLS on port 587).
        timeout:    Socket timeout in seconds. Defaults to 10.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        from_addr: str,
        use_tls: bool = False,
        timeout: float = 10.0,
    ):
        if not host:
            raise ValueError("SMTP host must not be empty")
        if not from_addr:
            raise ValueError("SMTP from_addr must not be empty")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_addr = from_addr
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SMTPConfig"]:
        """SMTP config from settings, or None when SMTP is not configured."""
        if not settings.smtp_configured:
            return None
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_addr=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
        )


def _format_ms(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


class EmailNotificationChannel(NotificationChannel):
    """Delivers alerts to the rule's recipients via SMTP."""

    def __init__(self, smtp_config: SMTPConfig):
        self._smtp = smtp_config

    @property
    def channel_name(self) -> str:
        return "email"

    async def send(self, notification: AlertNotification) -> bool:
        if not notification.recipients:
            logger.debug("email_no_recipients", rule_id=notification.rule_id)
            return False

        message = self.build_message(notification, notification.recipients)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, message, notification.recipients)
            return True
        except smtplib.SMTPException as e:
            logger.warning("email_smtp_error", error=str(e), history_id=notification.history_id)
            return False
        except OSError as e:
            logger.warning("email_connection_error", error=str(e), history_id=notification.history_id)
            return False

    async def send_test(self, to_addr: str) -> None:
        """Send a plain test message; raises on failure."""
        message = MIMEText("Pulsewatch email alerts are configured correctly.", "plain", "utf-8")
        message["Subject"] = "[Pulsewatch] Test email"
        message["From"] = self._smtp.from_addr
        message["To"] = to_addr

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_sync, message, [to_addr])

    def verify(self) -> None:
        """Open and authenticate an SMTP session; raises on failure."""
        with self._connect() as server:
            server.noop()

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()

        if self._smtp.use_tls:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                self._smtp.host,
                self._smtp.port,
                context=context,
                timeout=self._smtp.timeout,
            )
        else:
            server = smtplib.SMTP(self._smtp.host, self._smtp.port, timeout=self._smtp.timeout)
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()

        if self._smtp.username:
            server.login(self._smtp.username, self._smtp.password or "")
        return server

    def _send_sync(self, message, recipients: List[str]) -> None:
        """Blocking SMTP delivery, runs inside a thread executor."""
        with self._connect() as server:
            server.send_message(message, from_addr=self._smtp.from_addr, to_addrs=recipients)

    def build_message(self, notification: AlertNotification, recipients: List[str]) -> MIMEMultipart:
        """Construct a MIME multipart email with a plain-text and HTML part."""
        message = MIMEMultipart("alternative")
        message["Subject"] = notification.subject
        message["From"] = self._smtp.from_addr
        message["To"] = ", ".join(recipients)

        message.attach(MIMEText(self._build_plain(notification), "plain", "utf-8"))
        message.attach(MIMEText(self._build_html(notification), "html", "utf-8"))
        return message

    def _build_plain(self, n: AlertNotification) -> str:
        lines = [
            "Pulsewatch Alert",
            "=" * 60,
            "",
            f"Rule:        {n.rule_name} ({n.rule_type})",
            f"Project:     {n.dsn}",
            f"Error:       {n.error_type}: {n.error_message}",
            f"Occurrences: {n.count}",
            f"Page:        {n.url}",
            f"First seen:  {_format_ms(n.first_seen)}",
            f"Last seen:   {_format_ms(n.last_seen)}",
            f"Triggered:   {_format_ms(n.triggered_at)}",
        ]
        if n.error_link:
            lines.extend(["", f"Details: {n.error_link}"])
        return "\n".join(lines) + "\n"

    def _build_html(self, n: AlertNotification) -> str:
        rows = [
            ("Rule", f"{n.rule_name} ({n.rule_type})"),
            ("Project", n.dsn),
            ("Error", f"{n.error_type}: {n.error_message}"),
            ("Occurrences", str(n.count)),
            ("Page", n.url),
            ("First seen", _format_ms(n.first_seen)),
            ("Last seen", _format_ms(n.last_seen)),
        ]
        table = "\n".join(
            f'<tr><td style="color: #757575; width: 120px;"><strong>{escape(label)}</strong></td>'
            f'<td style="font-family: monospace;">{escape(value)}</td></tr>'
            for label, value in rows
        )
        link = ""
        if n.error_link:
            link = f'<p><a href="{escape(n.error_link)}">View error details</a></p>'

        return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8" /><title>Pulsewatch Alert</title></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
  <h1 style="font-size: 20px; color: #b71c1c;">{escape(n.rule_name)}</h1>
  <table cellpadding="6" cellspacing="0" style="border-collapse: collapse;">
{table}
  </table>
  {link}
</body>
</html>"""
