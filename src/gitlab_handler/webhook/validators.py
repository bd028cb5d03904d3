"""
Webhook intake checks.

GitLab sends the secret configured on the hook verbatim in the
X-Gitlab-Token header; there is no body signature. Without a configured
secret every delivery is accepted. Only merge request and push events
reach the build pipeline.
"""

import hmac
from dataclasses import dataclass, field
from typing import Mapping

from ..config.settings import SettingsProtocol
from ..utils.exceptions import HandlerError
from ..utils.logger import get_logger
from .models import WebhookEventType

logger = get_logger(__name__)

TOKEN_HEADER = "X-Gitlab-Token"
EVENT_HEADER = "X-Gitlab-Event"

BUILD_EVENTS = (WebhookEventType.MERGE_REQUEST, WebhookEventType.PUSH)


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup on a plain mapping."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class WebhookValidationError(HandlerError):
    """
    Raised when a delivery fails the X-Gitlab-Token check.
    """

    def __init__(self, message: str, header_present: bool = True):
        """Initialize webhook validation error."""
        super().__init__(
            message=message,
            error_code="WEBHOOK_VALIDATION_ERROR",
            details={"header": TOKEN_HEADER, "header_present": header_present},
        )


@dataclass
class WebhookConfig:
    """
    Webhook intake configuration.

    Events outside ``allowed_event_types`` are acknowledged and dropped.
    """

    secret_token: str | None = None
    allowed_event_types: list[WebhookEventType] = field(default_factory=lambda: list(BUILD_EVENTS))
    validate_signature: bool = True

    @classmethod
    def from_settings(cls, settings: SettingsProtocol) -> "WebhookConfig":
        """Token checks are on exactly when a webhook secret is configured."""
        secret = settings.webhook_secret or None
        return cls(secret_token=secret, validate_signature=secret is not None)

    def accepts(self, event_type: WebhookEventType | None) -> bool:
        return event_type is not None and event_type in self.allowed_event_types


class WebhookSignatureValidator:
    """
    Compares X-Gitlab-Token with the configured secret in constant time.
    """

    def __init__(self, secret_token: str | None = None):
        self.secret_token = secret_token

    def validate(self, headers: Mapping[str, str]) -> bool:
        """
        Check a delivery's token.

        Returns:
            True if no secret is configured or the token matches

        Raises:
            WebhookValidationError: If a secret is configured and the
                header is absent
        """
        if not self.secret_token:
            return True

        received = header_value(headers, TOKEN_HEADER)
        if received is None:
            logger.warning("Webhook delivery without X-Gitlab-Token header")
            raise WebhookValidationError(f"Missing {TOKEN_HEADER} header", header_present=False)

        if hmac.compare_digest(received.encode(), self.secret_token.encode()):
            return True

        logger.warning("Webhook delivery with wrong X-Gitlab-Token")
        return False
