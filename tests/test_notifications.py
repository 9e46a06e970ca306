"""
Tests for best-effort notification delivery.
"""

import json

import httpx
import pytest

from scan_engine.monitoring.scan_logger import ScanLogger
from scan_engine.services.notifications import (
    EVENT_RELISTING,
    EVENT_SCAN_COMPLETED,
    BestEffortDispatcher,
    WebhookSink,
)

from .conftest import RecordingSink


class TestBestEffortDispatcher:
    """Dispatch never raises and reports delivery as a boolean."""

    @pytest.mark.asyncio
    async def test_unconfigured_sink_is_skipped(self):
        dispatcher = BestEffortDispatcher(sink=WebhookSink(url=""))

        assert await dispatcher.dispatch(EVENT_SCAN_COMPLETED, {"new": 1}) is False
        assert dispatcher.sent == 0
        assert dispatcher.failed == 0

    @pytest.mark.asyncio
    async def test_delivered_event_envelope(self, sink):
        dispatcher = BestEffortDispatcher(sink=sink)

        delivered = await dispatcher.dispatch(EVENT_RELISTING, {"source_url": "https://mega.nz/file/abc"})

        assert delivered is True
        assert dispatcher.sent == 1
        envelope = sink.envelopes[0]
        assert envelope["event"] == EVENT_RELISTING
        assert envelope["payload"] == {"source_url": "https://mega.nz/file/abc"}
        assert "sent_at" in envelope

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self):
        scan_logger = ScanLogger("run-1")
        dispatcher = BestEffortDispatcher(sink=RecordingSink(fail=True), scan_logger=scan_logger)

        delivered = await dispatcher.dispatch(EVENT_SCAN_COMPLETED, {})

        assert delivered is False
        assert dispatcher.failed == 1
        entry = scan_logger.entries[-1]
        assert entry.log_level == "warn"
        assert entry.error_code == "NOTIFY_FAIL"
        assert entry.stage == "finalization"
        assert entry.metrics == {"event": EVENT_SCAN_COMPLETED}


class TestWebhookSink:
    """HTTP delivery through httpx."""

    @pytest.mark.asyncio
    async def test_posts_json_envelope(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            sink = WebhookSink(url="https://hooks.example.test/scan", http_client=http_client)
            await sink.send({"event": EVENT_SCAN_COMPLETED, "payload": {"new": 2}})

        assert len(received) == 1
        assert str(received[0].url) == "https://hooks.example.test/scan"
        assert received[0].headers["content-type"] == "application/json"
        assert json.loads(received[0].content) == {"event": EVENT_SCAN_COMPLETED, "payload": {"new": 2}}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            sink = WebhookSink(url="https://hooks.example.test/scan", http_client=http_client)
            with pytest.raises(httpx.HTTPStatusError):
                await sink.send({"event": EVENT_SCAN_COMPLETED})

    def test_url_defaults_to_settings(self, settings):
        settings.SCAN_NOTIFICATION_WEBHOOK_URL = "https://crm.example.test/hook"

        assert WebhookSink().url == "https://crm.example.test/hook"
        assert WebhookSink().is_configured is True
