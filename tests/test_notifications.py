"""
Tests for notification sinks.
"""

import json
from unittest.mock import patch

import httpx

from conftest import TRADER_KEY, RecordingSink
from hotspot_ledger.services.notifications import (
    NotificationSink,
    NullNotificationSink,
    WebhookNotificationSink,
    build_notification_sink,
    notify_best_effort,
)

RELAY_URL = "http://relay.local/send"


class TestWebhookSink:
    """Tests for WebhookNotificationSink."""

    async def test_posts_json_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        sink = WebhookNotificationSink(RELAY_URL, transport=httpx.MockTransport(handler))

        assert await sink.send(TRADER_KEY, "Credit added") is True
        assert seen[0].method == "POST"
        assert str(seen[0].url) == RELAY_URL
        assert json.loads(seen[0].content) == {"to": TRADER_KEY, "message": "Credit added"}

    async def test_relay_error_reported_as_undelivered(self) -> None:
        sink = WebhookNotificationSink(
            RELAY_URL, transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        assert await notify_best_effort(sink, TRADER_KEY, "hello") is False

    async def test_relay_unreachable_reported_as_undelivered(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sink = WebhookNotificationSink(RELAY_URL, transport=httpx.MockTransport(handler))

        assert await notify_best_effort(sink, TRADER_KEY, "hello") is False


class TestNotifyBestEffort:
    """Tests for notify_best_effort."""

    async def test_delivered(self, recording_sink: RecordingSink) -> None:
        assert await notify_best_effort(recording_sink, TRADER_KEY, "hi") is True
        assert recording_sink.messages == [(TRADER_KEY, "hi")]

    async def test_exception_swallowed(self, failing_sink: RecordingSink) -> None:
        assert await notify_best_effort(failing_sink, TRADER_KEY, "hi") is False

    async def test_null_sink_drops(self) -> None:
        assert await notify_best_effort(NullNotificationSink(), TRADER_KEY, "hi") is False


class TestBuildNotificationSink:
    """Tests for configuration-driven sink selection."""

    def test_null_without_url(self) -> None:
        with patch("hotspot_ledger.services.notifications.settings") as mock_settings:
            mock_settings.notification_webhook_url = ""

            sink = build_notification_sink()

        assert isinstance(sink, NullNotificationSink)

    def test_webhook_with_url(self) -> None:
        with patch("hotspot_ledger.services.notifications.settings") as mock_settings:
            mock_settings.notification_webhook_url = RELAY_URL
            mock_settings.notification_timeout = 2.5

            sink = build_notification_sink()

        assert isinstance(sink, WebhookNotificationSink)
        assert sink.url == RELAY_URL
        assert sink.timeout == 2.5

    def test_sinks_satisfy_protocol(self) -> None:
        assert isinstance(NullNotificationSink(), NotificationSink)
        assert isinstance(RecordingSink(), NotificationSink)
