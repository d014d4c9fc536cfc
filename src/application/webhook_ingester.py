"""
Webhook Ingester - Delivery Status from Messaging Vendors
=========================================================

Flow per request:
    verify signature (401 and no store access when it fails)
      -> parse body into WebhookEvents (vendor status already mapped)
      -> per event: find notification by external message id
      -> apply the status if it moves forward

Unknown message ids are acknowledged, not rejected, so vendors do not keep
redelivering events for messages we never sent. A bad event inside a
multi-event body is logged and skipped.
"""

import logging
from dataclasses import dataclass
from typing import Mapping

from ..domain.errors import UnauthorizedError
from ..domain.models import NotificationStatus
from ..domain.status import TERMINAL_FAILURES
from ..infrastructure.messaging import MessagingProvider, ProviderFactory, WebhookEvent
from ..infrastructure.persistence import NotificationStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    events: int = 0
    found: int = 0
    updated: int = 0

    def to_dict(self) -> dict:
        if self.events <= 1:
            return {"received": True, "found": self.found == 1, "updated": self.updated == 1}
        return {
            "received": True,
            "events": self.events,
            "found": self.found,
            "updated": self.updated,
        }


class WebhookIngester:
    """
    Usage:
        ingester = WebhookIngester(notifications, providers)
        result = ingester.ingest("gatewayapi", lowercase_headers, raw_body)
    """

    def __init__(self, notifications: NotificationStore, providers: ProviderFactory):
        self._notifications = notifications
        self._providers = providers

    def ingest(self, provider_name: str, headers: Mapping[str, str], body: bytes) -> IngestResult:
        provider = self._providers.get(provider_name)
        if not provider.verify_webhook(headers, body):
            logger.warning(f"[{provider_name}] Webhook signature verification failed")
            raise UnauthorizedError("Invalid webhook signature")

        events = provider.parse_webhook(body)
        result = IngestResult(events=len(events))
        for event in events:
            try:
                found, updated = self._apply(provider, event)
            except Exception:
                logger.exception(f"[{provider_name}] Failed to apply event for message {event.message_id}")
                continue
            result.found += int(found)
            result.updated += int(updated)
        return result

    def _apply(self, provider: MessagingProvider, event: WebhookEvent):
        notification = self._notifications.find_by_external_message_id(event.message_id)
        if notification is None:
            logger.warning(f"[{provider.name}] Notification not found for message id {event.message_id}")
            return False, False

        error = event.error if event.status in TERMINAL_FAILURES else None
        if event.status in TERMINAL_FAILURES and not error:
            error = f"{provider.name}: {event.vendor_status}"

        updated = self._notifications.update_status(
            notification.id, event.status, error_message=error, at=event.timestamp
        )
        if updated:
            logger.info(
                f"[{provider.name}] Notification {notification.id}: "
                f"{event.vendor_status} -> {event.status.value}"
            )
        return True, updated

    def record_click(self, notification_id: str) -> bool:
        """A review link was opened; clicked outranks everything but failures."""
        return self._notifications.update_status(notification_id, NotificationStatus.CLICKED)
