"""
Webhook request handler for GitLab webhooks.

Takes a raw delivery through signature validation, JSON parsing, event
type detection and schema validation. Business filtering (MR state,
build marker) is left to the normalizer.
"""

import json
from typing import Any, Optional

from pydantic import ValidationError

from ..utils.exceptions import HandlerError
from ..utils.logger import get_logger
from .models import (
    WebhookEventType,
    MergeRequestWebhookPayload,
    PushWebhookPayload,
    WebhookValidationResult,
)
from .validators import (
    EVENT_HEADER,
    TOKEN_HEADER,
    WebhookConfig,
    WebhookSignatureValidator,
    WebhookValidationError,
    header_value,
)

logger = get_logger(__name__)


class WebhookParsingError(HandlerError):
    """
    Raised when webhook payload parsing fails.

    This includes JSON parsing errors, schema validation failures,
    and missing required fields.
    """

    def __init__(
        self,
        message: str,
        payload_excerpt: Optional[str] = None,
        validation_errors: Optional[list[dict[str, Any]]] = None,
    ):
        """Initialize webhook parsing error."""
        details: dict[str, Any] = {}
        if payload_excerpt:
            details["payload_excerpt"] = payload_excerpt
        if validation_errors:
            details["validation_errors"] = validation_errors

        super().__init__(
            message=message,
            error_code="WEBHOOK_PARSING_ERROR",
            details=details,
        )


class WebhookHandler:
    """
    Handler for incoming GitLab webhook deliveries.

    Processing flow:
    1. Signature validation
    2. JSON parsing
    3. Event type detection
    4. Payload schema validation
    """

    def __init__(self, config: WebhookConfig):
        """
        Initialize webhook handler.

        Args:
            config: Webhook intake configuration
        """
        self.config = config
        self.signature_validator = WebhookSignatureValidator(config.secret_token)
        self._logger = get_logger(__name__)

        self._logger.info(
            "WebhookHandler initialized",
            extra={
                "validate_signature": config.validate_signature,
                "allowed_events": [e.value for e in config.allowed_event_types],
            },
        )

    async def handle_request(
        self, payload_body: bytes, headers: dict[str, str]
    ) -> WebhookValidationResult:
        """
        Handle an incoming webhook request.

        Args:
            payload_body: Raw request body bytes
            headers: Request headers

        Returns:
            WebhookValidationResult; ``should_process`` is False for event
            types the pipeline does not handle

        Raises:
            WebhookValidationError: If signature validation fails
            WebhookParsingError: If payload parsing fails
        """
        self._logger.info(
            "Processing webhook request",
            extra={"content_length": len(payload_body)},
        )

        if self.config.validate_signature:
            if not self.signature_validator.validate(headers):
                raise WebhookValidationError(f"Invalid {TOKEN_HEADER} header")

        try:
            payload_dict = json.loads(payload_body.decode("utf-8"))
        except json.JSONDecodeError as e:
            excerpt = payload_body[:200].decode("utf-8", errors="replace")
            self._logger.error(
                f"Failed to parse JSON payload: {str(e)}",
                extra={"excerpt": excerpt, "error": str(e)},
            )
            raise WebhookParsingError(
                f"Invalid JSON payload: {str(e)}", payload_excerpt=excerpt
            )
        except UnicodeDecodeError as e:
            self._logger.error(
                f"Failed to decode payload as UTF-8: {str(e)}",
                extra={"error": str(e)},
            )
            raise WebhookParsingError(f"Invalid UTF-8 encoding: {str(e)}")

        if not isinstance(payload_dict, dict):
            raise WebhookParsingError("Webhook payload must be a JSON object")

        event_type = self._detect_event_type(headers, payload_dict)

        if not self.config.accepts(event_type):
            reason = (
                "Could not detect event type"
                if event_type is None
                else f"Event type '{event_type.value}' not handled"
            )
            self._logger.info(f"Ignoring webhook: {reason}")
            return WebhookValidationResult(
                is_valid=True,
                event_type=event_type,
                should_process=False,
                rejection_reason=reason,
            )

        try:
            payload = self._parse_payload(event_type, payload_dict)
        except ValidationError as e:
            validation_errors = [
                {"field": err["loc"], "message": err["msg"], "type": err["type"]}
                for err in e.errors()
            ]
            self._logger.error(
                f"Payload validation failed for {event_type.value}",
                extra={"error_count": len(validation_errors), "errors": validation_errors},
            )
            raise WebhookParsingError(
                f"Invalid {event_type.value} payload schema",
                validation_errors=validation_errors,
            )

        return WebhookValidationResult(
            is_valid=True,
            event_type=event_type,
            should_process=True,
            payload=payload,
        )

    def _detect_event_type(
        self, headers: dict[str, str], payload_dict: dict[str, Any]
    ) -> Optional[WebhookEventType]:
        """
        Detect webhook event type.

        GitLab sends the event type in the X-Gitlab-Event header; the
        payload's ``object_kind`` is used when the header is absent.
        """
        event_header = header_value(headers, EVENT_HEADER)

        if event_header:
            try:
                return WebhookEventType(event_header)
            except ValueError:
                self._logger.warning(
                    f"Unknown event type in X-Gitlab-Event header: {event_header}",
                    extra={"event_header": event_header},
                )
                return None

        object_kind = payload_dict.get("object_kind")
        if object_kind == "merge_request":
            return WebhookEventType.MERGE_REQUEST
        if object_kind == "push":
            return WebhookEventType.PUSH

        self._logger.warning("Missing X-Gitlab-Event header", extra={"object_kind": object_kind})
        return None

    def _parse_payload(
        self, event_type: WebhookEventType, payload_dict: dict[str, Any]
    ) -> MergeRequestWebhookPayload | PushWebhookPayload:
        """
        Parse webhook payload based on event type.

        Raises:
            ValidationError: If payload doesn't match schema
            ValueError: If event type is not supported
        """
        if event_type == WebhookEventType.MERGE_REQUEST:
            return MergeRequestWebhookPayload(**payload_dict)
        elif event_type == WebhookEventType.PUSH:
            return PushWebhookPayload(**payload_dict)
        else:
            raise ValueError(f"Unsupported event type for parsing: {event_type.value}")
