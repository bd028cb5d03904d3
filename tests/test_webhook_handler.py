"""
Unit tests for webhook intake: signature checks, parsing and event detection
"""
import json

import pytest

from gitlab_handler.webhook.handlers import WebhookHandler, WebhookParsingError
from gitlab_handler.webhook.models import (
    MergeRequestWebhookPayload,
    PushWebhookPayload,
    WebhookEventType,
)
from gitlab_handler.webhook.validators import (
    BUILD_EVENTS,
    WebhookConfig,
    WebhookSignatureValidator,
    WebhookValidationError,
    header_value,
)


class TestWebhookSignatureValidator:
    """Test cases for X-Gitlab-Token checks"""

    def test_no_secret_accepts_everything(self):
        assert WebhookSignatureValidator(None).validate({})

    def test_matching_token(self):
        validator = WebhookSignatureValidator("s3cret")

        assert validator.validate({"X-Gitlab-Token": "s3cret"})
        assert validator.validate({"x-gitlab-token": "s3cret"})

    def test_wrong_token(self):
        assert not WebhookSignatureValidator("s3cret").validate({"X-Gitlab-Token": "guess"})

    def test_missing_header(self):
        with pytest.raises(WebhookValidationError) as exc_info:
            WebhookSignatureValidator("s3cret").validate({"Content-Type": "application/json"})

        assert exc_info.value.details == {"header": "X-Gitlab-Token", "header_present": False}


class TestWebhookConfig:
    """Test cases for intake configuration"""

    def test_from_settings_without_secret(self, settings):
        config = WebhookConfig.from_settings(settings)

        assert config.secret_token is None
        assert config.validate_signature is False

    def test_from_settings_with_secret(self, settings):
        settings.webhook_secret = "s3cret"

        config = WebhookConfig.from_settings(settings)

        assert config.secret_token == "s3cret"
        assert config.validate_signature is True

    def test_accepts_only_build_events(self):
        config = WebhookConfig()

        assert list(BUILD_EVENTS) == config.allowed_event_types
        assert config.accepts(WebhookEventType.MERGE_REQUEST)
        assert config.accepts(WebhookEventType.PUSH)
        assert not config.accepts(WebhookEventType.TAG_PUSH)
        assert not config.accepts(None)

    def test_configs_do_not_share_event_lists(self):
        first, second = WebhookConfig(), WebhookConfig()
        first.allowed_event_types.remove(WebhookEventType.PUSH)

        assert second.accepts(WebhookEventType.PUSH)


class TestHeaderValue:
    """Test cases for header lookup"""

    @pytest.mark.parametrize("name", ["X-Gitlab-Event", "x-gitlab-event", "X-GITLAB-EVENT"])
    def test_case_insensitive(self, name):
        assert header_value({name: "Push Hook"}, "X-Gitlab-Event") == "Push Hook"

    def test_missing(self):
        assert header_value({"Content-Type": "application/json"}, "X-Gitlab-Event") is None


class TestWebhookHandler:
    """Test cases for WebhookHandler"""

    @pytest.fixture
    def handler(self):
        return WebhookHandler(WebhookConfig(secret_token=None, validate_signature=False))

    @pytest.mark.asyncio
    async def test_merge_request_by_header(self, handler, mr_payload):
        result = await handler.handle_request(
            json.dumps(mr_payload).encode(), {"X-Gitlab-Event": "Merge Request Hook"}
        )

        assert result.should_process
        assert result.event_type == WebhookEventType.MERGE_REQUEST
        assert isinstance(result.payload, MergeRequestWebhookPayload)
        assert result.payload.mr_iid == 7

    @pytest.mark.asyncio
    async def test_push_by_object_kind(self, handler, push_payload):
        """Without the header the payload's object_kind decides"""
        result = await handler.handle_request(json.dumps(push_payload).encode(), {})

        assert result.should_process
        assert isinstance(result.payload, PushWebhookPayload)
        assert result.payload.branch_name == "feature/sprockets"

    @pytest.mark.asyncio
    async def test_unknown_header_not_processed(self, handler, push_payload):
        result = await handler.handle_request(
            json.dumps(push_payload).encode(), {"X-Gitlab-Event": "Deployment Hook"}
        )

        assert result.is_valid
        assert not result.should_process

    @pytest.mark.asyncio
    async def test_tag_push_not_processed(self, handler, push_payload):
        result = await handler.handle_request(
            json.dumps(push_payload).encode(), {"X-Gitlab-Event": "Tag Push Hook"}
        )

        assert not result.should_process
        assert "Tag Push Hook" in result.rejection_reason

    @pytest.mark.asyncio
    async def test_invalid_json(self, handler):
        with pytest.raises(WebhookParsingError) as exc_info:
            await handler.handle_request(b"{broken", {"X-Gitlab-Event": "Push Hook"})

        assert "payload_excerpt" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_non_object_body(self, handler):
        with pytest.raises(WebhookParsingError):
            await handler.handle_request(b"[1, 2, 3]", {"X-Gitlab-Event": "Push Hook"})

    @pytest.mark.asyncio
    async def test_schema_errors_listed(self, handler, mr_payload):
        del mr_payload["object_attributes"]["iid"]

        with pytest.raises(WebhookParsingError) as exc_info:
            await handler.handle_request(
                json.dumps(mr_payload).encode(), {"X-Gitlab-Event": "Merge Request Hook"}
            )

        assert exc_info.value.details["validation_errors"]

    @pytest.mark.asyncio
    async def test_signature_checked_first(self, mr_payload):
        handler = WebhookHandler(WebhookConfig(secret_token="s3cret"))

        with pytest.raises(WebhookValidationError):
            await handler.handle_request(b"{broken", {"X-Gitlab-Token": "wrong"})


class TestPushPayload:
    """Test cases for push payload helpers"""

    def test_deleted_branch(self, push_payload):
        push_payload["after"] = "0" * 40

        assert PushWebhookPayload(**push_payload).is_deleted_branch

    def test_head_commit_falls_back_to_last(self, push_payload):
        push_payload["after"] = "not-in-list"

        assert PushWebhookPayload(**push_payload).head_commit.id == "bbb222"

    def test_wrong_object_kind(self, push_payload):
        push_payload["object_kind"] = "tag_push"

        with pytest.raises(ValueError):
            PushWebhookPayload(**push_payload)
