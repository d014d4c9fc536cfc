"""
Email Providers - SendGrid and Resend
=====================================

SendGrid reports events as a JSON array signed with ECDSA; Resend posts one
event object per request, signed the Svix way.
"""

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

import requests

from ...domain.models import NotificationStatus, NotificationType
from ..config.settings import HttpSettings, ResendSettings, SendGridSettings
from .messaging_provider import (
    Message,
    MessagingProvider,
    SendResult,
    WebhookEvent,
    from_epoch,
    parse_optional_datetime,
)
from .rate_limiter import RateLimiter
from .signatures import verify_ecdsa_signature, verify_svix_webhook

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_SUBJECT = "Message from ReviewFlow"


class EmailProvider(MessagingProvider):
    channel = NotificationType.EMAIL

    def _validate(self, message: Message) -> Optional[str]:
        if not _EMAIL_PATTERN.match(message.to or ""):
            return f"Invalid email address: {message.to}"
        return None


class SendGridProvider(EmailProvider):
    """
    SendGrid v3 mail send (https://docs.sendgrid.com/api-reference/mail-send).
    The message id comes back in the X-Message-Id header of the 202 response.
    """

    name = "sendgrid"

    STATUS_MAP = {
        "processed": NotificationStatus.SENT,
        "deferred": NotificationStatus.SENT,
        "delivered": NotificationStatus.DELIVERED,
        "bounce": NotificationStatus.BOUNCED,
        "dropped": NotificationStatus.FAILED,
        "open": NotificationStatus.OPENED,
        "click": NotificationStatus.CLICKED,
    }

    SIGNATURE_HEADER = "x-twilio-email-event-webhook-signature"
    TIMESTAMP_HEADER = "x-twilio-email-event-webhook-timestamp"

    def __init__(self, settings: SendGridSettings, rate_limiter: RateLimiter, http: HttpSettings,
                 session: Optional[requests.Session] = None):
        super().__init__(rate_limiter, http, session)
        self._settings = settings

    def is_configured(self) -> bool:
        return bool(self._settings.api_key and self._settings.from_email)

    @classmethod
    def map_status(cls, event: str) -> NotificationStatus:
        return cls.STATUS_MAP.get((event or "").lower(), NotificationStatus.SENT)

    def _send_sync(self, message: Message) -> SendResult:
        logger.info(f"[{self.name}] Sending email to {message.to}: {message.subject!r}")
        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {
                "email": message.sender or self._settings.from_email,
                "name": message.sender_name or self._settings.from_name,
            },
            "subject": message.subject or DEFAULT_SUBJECT,
            "content": [
                {
                    "type": "text/html" if message.html else "text/plain",
                    "value": message.html or message.content,
                }
            ],
        }
        response = self._request(
            "POST",
            f"{self._settings.api_url}/mail/send",
            json=payload,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        if response.status_code != 202:
            return SendResult(success=False, error=self._error_text(response, "errors"))

        message_id = response.headers.get("X-Message-Id")
        if not message_id:
            return SendResult(success=False, error="SendGrid returned no message id")
        logger.info(f"[{self.name}] Email sent: {message_id}")
        return SendResult(success=True, message_id=message_id)

    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        return verify_ecdsa_signature(
            self._settings.webhook_verification_key,
            headers.get(self.TIMESTAMP_HEADER),
            body,
            headers.get(self.SIGNATURE_HEADER),
        )

    def parse_webhook(self, body: bytes) -> List[WebhookEvent]:
        try:
            events = json.loads(body or b"[]")
        except ValueError:
            return []
        if not isinstance(events, list):
            return []

        parsed = []
        for event in events:
            if not isinstance(event, dict):
                continue
            # sg_message_id is "<x-message-id>.<filter suffix>"
            message_id = str(event.get("sg_message_id") or "").split(".")[0]
            if not message_id:
                continue
            name = str(event.get("event", ""))
            parsed.append(
                WebhookEvent(
                    message_id=message_id,
                    status=self.map_status(name),
                    vendor_status=name,
                    timestamp=from_epoch(event.get("timestamp")),
                    error=str(event["reason"]) if event.get("reason") else None,
                    raw=event,
                )
            )
        return parsed


class ResendProvider(EmailProvider):
    """Resend REST (https://resend.com/docs/api-reference/emails/send-email)."""

    name = "resend"

    STATUS_MAP = {
        "email.sent": NotificationStatus.SENT,
        "email.delivered": NotificationStatus.DELIVERED,
        "email.delivery_delayed": NotificationStatus.SENT,
        "email.bounced": NotificationStatus.BOUNCED,
        "email.complained": NotificationStatus.BOUNCED,
        "email.opened": NotificationStatus.OPENED,
        "email.clicked": NotificationStatus.CLICKED,
    }

    def __init__(self, settings: ResendSettings, rate_limiter: RateLimiter, http: HttpSettings,
                 tolerance_seconds: int = 300, session: Optional[requests.Session] = None):
        super().__init__(rate_limiter, http, session)
        self._settings = settings
        self._tolerance = tolerance_seconds

    def is_configured(self) -> bool:
        return bool(self._settings.api_key and self._settings.from_email)

    @classmethod
    def map_status(cls, event_type: str) -> NotificationStatus:
        return cls.STATUS_MAP.get(event_type or "", NotificationStatus.SENT)

    def _send_sync(self, message: Message) -> SendResult:
        logger.info(f"[{self.name}] Sending email to {message.to}: {message.subject!r}")
        address = message.sender or self._settings.from_email
        name = message.sender_name or self._settings.from_name
        payload: Dict[str, Any] = {
            "from": f"{name} <{address}>" if name else address,
            "to": [message.to],
            "subject": message.subject or DEFAULT_SUBJECT,
        }
        if message.html:
            payload["html"] = message.html
        else:
            payload["text"] = message.content

        response = self._request(
            "POST",
            f"{self._settings.api_url}/emails",
            json=payload,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        if not response.ok:
            return SendResult(success=False, error=self._error_text(response, "message"))

        message_id = response.json().get("id")
        if not message_id:
            return SendResult(success=False, error="Resend returned no message id")
        logger.info(f"[{self.name}] Email sent: {message_id}")
        return SendResult(success=True, message_id=message_id)

    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        return verify_svix_webhook(
            self._settings.webhook_secret,
            headers.get("svix-id"),
            headers.get("svix-timestamp"),
            body,
            headers.get("svix-signature"),
            self._tolerance,
        )

    def parse_webhook(self, body: bytes) -> List[WebhookEvent]:
        try:
            event = json.loads(body or b"null")
        except ValueError:
            return []
        if not isinstance(event, dict) or not event.get("type") or not isinstance(event.get("data"), dict):
            return []

        data = event["data"]
        message_id = data.get("email_id")
        if not message_id:
            return []

        bounce = data.get("bounce") if isinstance(data.get("bounce"), dict) else {}
        return [
            WebhookEvent(
                message_id=str(message_id),
                status=self.map_status(event["type"]),
                vendor_status=event["type"],
                timestamp=parse_optional_datetime(event.get("created_at")),
                error=bounce.get("message"),
                raw=event,
            )
        ]

