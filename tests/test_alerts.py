"""
Unit tests for operational alerts
"""
import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from gitlab_handler.alerts import (
    Alert,
    AlertNotifier,
    AlertSeverity,
    LogNotificationHandler,
    NotificationChannel,
    WebhookNotificationHandler,
)


@pytest.fixture
def alert():
    return Alert(
        subject="GitLab Access Token Refresh",
        message="The access token could not be successfully refreshed.",
        system="Token Checking",
        details={"slug": "acme/widgets"},
    )


class TestAlertNotifier:
    """Test cases for AlertNotifier"""

    def test_log_channel_only_by_default(self, settings):
        notifier = AlertNotifier(settings)

        assert [h.channel for h in notifier.handlers] == [NotificationChannel.LOG]

    def test_webhook_channel_when_configured(self, settings):
        settings.alert_webhook_url = "https://alerts.example.com/hook"

        notifier = AlertNotifier(settings)

        assert [h.channel for h in notifier.handlers] == [NotificationChannel.LOG, NotificationChannel.WEBHOOK]

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_stop_others(self, settings, alert):
        broken = Mock(channel=NotificationChannel.WEBHOOK)
        broken.send_notification = AsyncMock(side_effect=RuntimeError("down"))
        notifier = AlertNotifier(settings, handlers=[broken, LogNotificationHandler()])

        delivered = await notifier.send(alert)

        assert delivered == 1


class TestWebhookNotificationHandler:
    """Test cases for webhook delivery"""

    @pytest.mark.asyncio
    async def test_posts_alert_json(self, alert):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        channel = WebhookNotificationHandler(
            "https://alerts.example.com/hook", transport=httpx.MockTransport(handler)
        )

        assert await channel.send_notification(alert)
        body = json.loads(seen[0].content)
        assert body["subject"] == "GitLab Access Token Refresh"
        assert body["severity"] == AlertSeverity.ERROR.value
        assert body["system"] == "Token Checking"

    @pytest.mark.asyncio
    async def test_http_error_reported_as_failure(self, alert):
        channel = WebhookNotificationHandler(
            "https://alerts.example.com/hook",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="nope")),
        )

        assert not await channel.send_notification(alert)

    @pytest.mark.asyncio
    async def test_transport_error_reported_as_failure(self, alert):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        channel = WebhookNotificationHandler(
            "https://alerts.example.com/hook", transport=httpx.MockTransport(handler)
        )

        assert not await channel.send_notification(alert)
