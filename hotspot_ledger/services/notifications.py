"""
Notification Sink - Delivery of balance-change messages to traders.

Delivery is always best-effort: a failing sink never affects a ledger result.
"""

from typing import Protocol, runtime_checkable

import httpx

from hotspot_ledger.config import settings
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.metrics import metrics

logger = get_logger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """
    Protocol for notification delivery.

    `send` returns True when the message was accepted by the transport.
    """

    async def send(self, target_key: str, text: str) -> bool:
        """Deliver `text` to the trader identified by `target_key`."""
        ...


class NullNotificationSink:
    """Sink used when no transport is configured. Accepts and drops messages."""

    async def send(self, target_key: str, text: str) -> bool:
        logger.debug("notification_dropped", target_key=target_key)
        return False


class WebhookNotificationSink:
    """
    Posts messages to an HTTP relay as {"to": ..., "message": ...} JSON.

    The relay (a WhatsApp/SMS gateway) is responsible for the final hop.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, target_key: str, text: str) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json={"to": target_key, "message": text})
            response.raise_for_status()
        return True


def build_notification_sink() -> NotificationSink:
    """Create the sink selected by configuration."""
    if settings.notification_webhook_url:
        return WebhookNotificationSink(
            settings.notification_webhook_url, timeout=settings.notification_timeout
        )
    return NullNotificationSink()


async def notify_best_effort(sink: NotificationSink, target_key: str, text: str) -> bool:
    """
    Send a notification, logging and swallowing any failure.

    Returns:
        True if the sink accepted the message
    """
    try:
        delivered = await sink.send(target_key, text)
    except Exception as e:
        logger.warning(
            "notification_failed",
            target_key=target_key,
            error_type=type(e).__name__,
            error=str(e),
        )
        metrics.record_notification(delivered=False)
        return False

    metrics.record_notification(delivered=delivered)
    if delivered:
        logger.info("notification_sent", target_key=target_key)
    return delivered
