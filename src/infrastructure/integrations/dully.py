"""
Dully Adapter - Webhook-Driven Order Source
===========================================

Dully posts order events signed per Standard Webhooks
(https://www.standardwebhooks.com/):

    webhook-id:        msg_2Lx...
    webhook-timestamp: 1718000000
    webhook-signature: v1,<base64 HMAC-SHA256 of "{timestamp}.{id}.{body}">

Older integrations send the same values as x-dully-id / x-dully-timestamp /
x-dully-signature.

ARCHITECTURAL DECISION:
- The webhook secret is per business, so verify_request() takes it as an
  argument instead of reading adapter state. One adapter instance serves
  every business and concurrent requests share nothing.
"""

import logging
from datetime import datetime
from typing import Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ...domain.models import IntegrationConfig, OrderData, Platform, parse_datetime
from ..messaging.signatures import DEFAULT_TOLERANCE_SECONDS, verify_standard_webhook
from .base import IntegrationAdapter, IntegrationError

logger = logging.getLogger(__name__)

PROCESSED_EVENTS = ("order.picked_up", "order.approved")
CANCELLED_EVENT = "order.cancelled"

_HEADER_NAMES = {
    "id": ("webhook-id", "x-dully-id"),
    "timestamp": ("webhook-timestamp", "x-dully-timestamp"),
    "signature": ("webhook-signature", "x-dully-signature"),
}


class DullyWebhookPayload(BaseModel):
    """Order event as Dully sends it."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = Field(min_length=1)
    order_id: str = Field(alias="orderId", min_length=1)
    restaurant_id: Optional[str] = Field(default=None, alias="restaurantId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    total_amount: Optional[float] = Field(default=None, alias="totalAmount")
    timestamp: datetime


def _header(headers: Mapping[str, str], key: str) -> Optional[str]:
    for name in _HEADER_NAMES[key]:
        value = headers.get(name)
        if value:
            return value
    return None


class DullyAdapter(IntegrationAdapter):
    """
    Usage:
        adapter = DullyAdapter()
        if adapter.verify_request(secret, request_headers, raw_body):
            payload = DullyWebhookPayload.model_validate_json(raw_body)
            if adapter.should_process(payload):
                order = adapter.transform_payload(payload)
    """

    name = Platform.DULLY.value

    def __init__(self, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS):
        super().__init__()
        self._tolerance = tolerance_seconds

    def connect(self, config: IntegrationConfig):
        if not config.webhook_secret:
            raise IntegrationError("Dully integration requires webhook_secret")
        super().connect(config)

    def test_connection(self) -> bool:
        if self._config is None or not self._config.webhook_secret:
            return False
        return super().test_connection()

    def verify_request(
        self,
        secret: Optional[str],
        headers: Mapping[str, str],
        body: Union[str, bytes],
        now: Optional[float] = None,
    ) -> bool:
        """Headers must be lowercase. Fails closed without a secret."""
        if not secret:
            logger.error(f"[{self.name}] Cannot verify signature: no webhook secret configured")
            return False
        return verify_standard_webhook(
            secret,
            _header(headers, "id"),
            _header(headers, "timestamp"),
            body,
            _header(headers, "signature"),
            self._tolerance,
            now,
        )

    def should_process(self, event: DullyWebhookPayload) -> bool:
        return event.event in PROCESSED_EVENTS

    def is_cancellation(self, event: DullyWebhookPayload) -> bool:
        return event.event == CANCELLED_EVENT

    def transform_payload(self, payload: DullyWebhookPayload) -> OrderData:
        return OrderData(
            order_id=payload.order_id,
            platform=self.name,
            order_date=parse_datetime(payload.timestamp),
            completed_at=parse_datetime(payload.timestamp),
            customer_name=payload.customer_name or None,
            customer_email=payload.customer_email or None,
            customer_phone=payload.customer_phone or None,
            order_total=payload.total_amount,
            metadata={"restaurantId": payload.restaurant_id, "event": payload.event},
        )
