"""
Domain Models - Orders, Queue Items, Notifications, Businesses
==============================================================

ARCHITECTURAL DECISION:
- Plain dataclasses and Enums, no persistence or HTTP concerns
- Enum values are the strings stored in the database and sent over the wire
- All timestamps are timezone-aware UTC datetimes
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through) as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Platform(Enum):
    """Order sources. DIRECT and TEST only ever appear in signed links."""
    DULLY = "dully"
    EASYTABLE = "easytable"
    DIRECT = "direct"
    TEST = "test"


class QueueStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(Enum):
    SMS = "sms"
    EMAIL = "email"


class NotificationStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    BOUNCED = "bounced"


@dataclass
class OrderData:
    """Normalized completed order, whatever platform it came from."""
    order_id: str
    platform: str
    order_date: datetime
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    order_total: Optional[float] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_contact(self) -> bool:
        return bool(self.customer_email or self.customer_phone)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "platform": self.platform,
            "order_date": self.order_date.isoformat(),
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "order_total": self.order_total,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderData":
        return cls(
            order_id=str(data["order_id"]),
            platform=data["platform"],
            order_date=parse_datetime(data.get("order_date")) or utc_now(),
            customer_name=data.get("customer_name"),
            customer_email=data.get("customer_email"),
            customer_phone=data.get("customer_phone"),
            order_total=data.get("order_total"),
            completed_at=parse_datetime(data.get("completed_at")),
            metadata=data.get("metadata") or {},
        )


@dataclass
class QueuedOrder:
    """One order waiting for its delayed review request."""
    id: int
    business_id: str
    order_id: str
    platform: str
    order_data: OrderData
    status: QueueStatus
    scheduled_for: datetime
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_due(self) -> bool:
        return self.status == QueueStatus.PENDING and self.scheduled_for <= utc_now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "order_id": self.order_id,
            "platform": self.platform,
            "status": self.status.value,
            "scheduled_for": _iso(self.scheduled_for),
            "processed_at": _iso(self.processed_at),
            "error_message": self.error_message,
            "attempts": self.attempts,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Notification:
    """One review request on one channel."""
    id: str
    business_id: str
    type: NotificationType
    status: NotificationStatus
    recipient: str
    content: str
    subject: Optional[str] = None
    review_link: Optional[str] = None
    order_id: Optional[str] = None
    external_message_id: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    retry_count: int = 0
    retry_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "type": self.type.value,
            "status": self.status.value,
            "recipient": self.recipient,
            "subject": self.subject,
            "content": self.content,
            "review_link": self.review_link,
            "order_id": self.order_id,
            "external_message_id": self.external_message_id,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
            "delivered_at": _iso(self.delivered_at),
            "opened_at": _iso(self.opened_at),
            "clicked_at": _iso(self.clicked_at),
            "retry_count": self.retry_count,
            "retry_at": _iso(self.retry_at),
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class IntegrationConfig:
    """Per-business settings for one order source."""
    platform: str
    enabled: bool = True
    webhook_secret: Optional[str] = None
    api_key: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "enabled": self.enabled,
            "webhook_secret": self.webhook_secret,
            "api_key": self.api_key,
            "settings": self.settings,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IntegrationConfig":
        return cls(
            platform=data["platform"],
            enabled=bool(data.get("enabled", True)),
            webhook_secret=data.get("webhook_secret"),
            api_key=data.get("api_key"),
            settings=data.get("settings") or {},
        )


@dataclass
class Business:
    """Messaging preferences for one business."""
    id: str
    name: str
    sms_enabled: bool = True
    email_enabled: bool = False
    sms_template: Optional[str] = None
    email_template: Optional[str] = None
    email_subject: Optional[str] = None
    default_delay_minutes: Optional[int] = None
    sms_delay_minutes: Optional[int] = None
    email_delay_minutes: Optional[int] = None
    google_review_url: Optional[str] = None
    integrations: List[IntegrationConfig] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def get_integration(self, platform: str) -> Optional[IntegrationConfig]:
        for integration in self.integrations:
            if integration.platform == platform:
                return integration
        return None

    def to_public_dict(self) -> dict:
        """Fields safe to show on the review landing page."""
        return {
            "id": self.id,
            "name": self.name,
            "google_review_url": self.google_review_url,
        }
