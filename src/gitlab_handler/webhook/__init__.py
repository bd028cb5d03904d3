"""
Webhook handling infrastructure for GitLab webhooks.

This package provides models, token validation and event normalization
for GitLab merge request and push webhooks.

Main exports:
    - WebhookHandler: Main handler for incoming deliveries
    - WebhookConfig: Configuration for webhook intake
    - normalize_merge_request / normalize_push: Payload to build request
"""

from .models import (
    WebhookEventType,
    GitLabUser,
    GitLabProject,
    GitLabMergeRequest,
    MergeRequestWebhookPayload,
    PushCommit,
    PushWebhookPayload,
    WebhookValidationResult,
)
from .validators import (
    BUILD_EVENTS,
    WebhookConfig,
    WebhookSignatureValidator,
    WebhookValidationError,
    header_value,
)
from .handlers import (
    WebhookHandler,
    WebhookParsingError,
)
from .normalizer import (
    build_hash_request,
    normalize_merge_request,
    normalize_push,
)

__all__ = [
    # Enums
    "WebhookEventType",
    # Models
    "GitLabUser",
    "GitLabProject",
    "GitLabMergeRequest",
    "MergeRequestWebhookPayload",
    "PushCommit",
    "PushWebhookPayload",
    "WebhookValidationResult",
    # Validators
    "BUILD_EVENTS",
    "WebhookConfig",
    "WebhookSignatureValidator",
    "WebhookValidationError",
    "header_value",
    # Handlers
    "WebhookHandler",
    "WebhookParsingError",
    # Normalization
    "build_hash_request",
    "normalize_merge_request",
    "normalize_push",
]
