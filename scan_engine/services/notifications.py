"""
Best-effort notifications for scan outcomes.

Events are posted as JSON to a webhook (CRM, email relay, chat) configured
with SCAN_NOTIFICATION_WEBHOOK_URL. Delivery never affects a scan: every
failure is logged (NOTIFY_FAIL) and reported as ``False``.

Events:
    scan_completed          a run finished with new infringements
    high_severity_detected  a new P0 infringement was stored
    relisting_detected      previously removed content reappeared
    scan_failed             a run ended with an unhandled error
"""

import logging
from typing import Any, Dict, Optional

import httpx
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from scan_engine.monitoring.scan_logger import ErrorCode, ScanLogger
from scan_engine.services.scan_progress import ScanStage

logger = logging.getLogger(__name__)

EVENT_SCAN_COMPLETED = "scan_completed"
EVENT_HIGH_SEVERITY = "high_severity_detected"
EVENT_RELISTING = "relisting_detected"
EVENT_SCAN_FAILED = "scan_failed"

NOTIFICATION_EVENTS = (
    EVENT_SCAN_COMPLETED,
    EVENT_HIGH_SEVERITY,
    EVENT_RELISTING,
    EVENT_SCAN_FAILED,
)


class WebhookSink:
    """
    Posts event envelopes to a webhook URL.

    Raises on transport errors and non-2xx responses; the dispatcher is
    responsible for containing them.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url if url is not None else getattr(settings, "SCAN_NOTIFICATION_WEBHOOK_URL", "")
        self.timeout = timeout or getattr(settings, "SCAN_NOTIFICATION_TIMEOUT_SECONDS", 5)
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    async def send(self, envelope: Dict[str, Any]) -> None:
        content = DjangoJSONEncoder().encode(envelope)
        headers = {"Content-Type": "application/json"}
        if self._client is not None:
            response = await self._client.post(self.url, content=content, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, content=content, headers=headers)
        response.raise_for_status()


class BestEffortDispatcher:
    """
    Dispatch scan notifications without ever raising.

    Usage:
        dispatcher = BestEffortDispatcher(scan_logger=scan_logger)
        await dispatcher.dispatch(EVENT_RELISTING, {"source_url": url})
    """

    def __init__(self, sink: Optional[WebhookSink] = None, scan_logger: Optional[ScanLogger] = None):
        self.sink = sink if sink is not None else WebhookSink()
        self.scan_logger = scan_logger
        self.sent = 0
        self.failed = 0

    async def dispatch(self, event: str, payload: Dict[str, Any]) -> bool:
        """
        Send one event.

        Returns:
            True when the sink accepted the event, False otherwise
        """
        if not self.sink.is_configured:
            logger.debug(f"Notification sink not configured, skipping {event}")
            return False

        envelope = {
            "event": event,
            "sent_at": timezone.now().isoformat(),
            "payload": payload,
        }
        try:
            await self.sink.send(envelope)
        except Exception as e:
            self.failed += 1
            message = f"Notification {event} failed: {e}"
            if self.scan_logger:
                self.scan_logger.warn(
                    ScanStage.FINALIZATION,
                    message,
                    ErrorCode.NOTIFY_FAIL,
                    metrics={"event": event},
                )
            else:
                logger.warning(message)
            return False

        self.sent += 1
        logger.debug(f"Notification {event} delivered")
        return True
