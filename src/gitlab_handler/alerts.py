"""
Operational alerts for the GitLab build handler.

Alerts go to the log channel always and to a webhook channel when
ALERT_WEBHOOK_URL is configured. Sending an alert never raises: a
failing channel is logged and the remaining channels still run.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .config.settings import SettingsProtocol, settings as default_settings
from .utils.logger import get_logger


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class NotificationChannel(Enum):
    """Available notification channels."""
    LOG = "log"
    WEBHOOK = "webhook"


@dataclass
class Alert:
    """Represents an alert instance."""
    subject: str
    message: str
    severity: AlertSeverity = AlertSeverity.ERROR
    system: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert alert to dictionary."""
        return {
            "id": self.id,
            "subject": self.subject,
            "message": self.message,
            "severity": self.severity.value,
            "system": self.system,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


class NotificationHandler:
    """Base class for notification handlers."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel
        self.logger = get_logger(f"alert_notifier.{channel.value}")

    async def send_notification(self, alert: Alert) -> bool:
        """
        Send notification for an alert.

        Returns:
            True if notification was sent successfully
        """
        raise NotImplementedError("Subclasses must implement send_notification")


class LogNotificationHandler(NotificationHandler):
    """Log-based notification handler."""

    def __init__(self):
        super().__init__(NotificationChannel.LOG)

    async def send_notification(self, alert: Alert) -> bool:
        """Send notification to logs."""
        log_level = {
            AlertSeverity.INFO: "info",
            AlertSeverity.WARNING: "warning",
            AlertSeverity.ERROR: "error",
            AlertSeverity.CRITICAL: "critical",
        }.get(alert.severity, "warning")

        log_method = getattr(self.logger, log_level, self.logger.warning)
        log_method(
            f"ALERT: {alert.severity.value.upper()} - {alert.subject}: {alert.message}",
            extra={
                "alert_id": alert.id,
                "severity": alert.severity.value,
                "system": alert.system,
                "details": alert.details,
            },
        )
        return True


class WebhookNotificationHandler(NotificationHandler):
    """Webhook notification handler."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(NotificationChannel.WEBHOOK)
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    async def send_notification(self, alert: Alert) -> bool:
        """Send notification via webhook."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url=self.webhook_url, json=alert.to_dict())

            if 200 <= response.status_code < 300:
                self.logger.info(
                    "Webhook notification sent successfully",
                    extra={"alert_id": alert.id, "status_code": response.status_code},
                )
                return True

            self.logger.error(
                "Webhook notification failed",
                extra={
                    "alert_id": alert.id,
                    "status_code": response.status_code,
                    "response_text": response.text,
                },
            )
            return False

        except httpx.HTTPError as e:
            self.logger.error(
                "Failed to send webhook notification",
                extra={
                    "alert_id": alert.id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return False


class AlertNotifier:
    """
    Fans an alert out to every configured notification channel.
    """

    def __init__(
        self,
        settings: Optional[SettingsProtocol] = None,
        handlers: Optional[List[NotificationHandler]] = None,
    ):
        self.settings = settings or default_settings
        self.logger = get_logger("alert_notifier")

        if handlers is not None:
            self.handlers = handlers
        else:
            self.handlers = [LogNotificationHandler()]
            if self.settings.alert_webhook_url:
                self.handlers.append(WebhookNotificationHandler(self.settings.alert_webhook_url))

    async def send(self, alert: Alert) -> int:
        """
        Send an alert through all channels.

        Returns:
            Number of channels that accepted the alert
        """
        delivered = 0
        for handler in self.handlers:
            try:
                if await handler.send_notification(alert):
                    delivered += 1
                else:
                    self.logger.warning(
                        f"Failed to send notification via {handler.channel.value}",
                        extra={"alert_id": alert.id, "channel": handler.channel.value},
                    )
            except Exception as e:
                self.logger.error(
                    f"Error sending notification via {handler.channel.value}",
                    extra={
                        "alert_id": alert.id,
                        "channel": handler.channel.value,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True,
                )
        return delivered
