"""
SMS Providers - GatewayAPI and InMobile
=======================================

Both vendors take MSISDNs without the leading "+" and need to be told when a
message must go out as UCS-2.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from ...domain.models import NotificationStatus, NotificationType
from ...domain.phone import is_valid_phone_number, mask_phone, normalize_phone
from ...domain.sms_encoding import calculate_sms_segments, requires_ucs2_encoding
from ..config.settings import GatewayApiSettings, HttpSettings, InMobileSettings
from .messaging_provider import (
    Message,
    MessageStatusResult,
    MessagingProvider,
    SendResult,
    WebhookEvent,
    from_epoch,
    load_json,
    parse_optional_datetime,
)
from .rate_limiter import RateLimiter
from .signatures import verify_hmac_hex, verify_jwt_hs256, verify_shared_secret

logger = logging.getLogger(__name__)


class SmsProvider(MessagingProvider):
    """Shared phone handling for SMS vendors."""

    channel = NotificationType.SMS

    def __init__(self, rate_limiter: RateLimiter, http: HttpSettings, country_code: str = "45",
                 session: Optional[requests.Session] = None):
        super().__init__(rate_limiter, http, session)
        self._country_code = country_code

    def _validate(self, message: Message) -> Optional[str]:
        if not is_valid_phone_number(message.to, self._country_code):
            return f"Invalid phone number: {mask_phone(message.to)}"
        return None

    def _msisdn(self, phone: str) -> str:
        return normalize_phone(phone, self._country_code).lstrip("+")

    def _log_send(self, message: Message):
        info = calculate_sms_segments(message.content)
        logger.info(
            f"[{self.name}] Sending SMS to {mask_phone(message.to)}: "
            f"{info.encoding}, {info.segment_count} segment(s), {info.character_count} chars"
        )


class GatewayApiProvider(SmsProvider):
    """
    GatewayAPI REST (https://gatewayapi.com/docs/).
    Delivery webhooks carry an HS256 JWT signed with the webhook secret.
    """

    name = "gatewayapi"

    STATUS_MAP = {
        "DELIVERED": NotificationStatus.DELIVERED,
        "UNDELIVERED": NotificationStatus.FAILED,
        "EXPIRED": NotificationStatus.FAILED,
        "REJECTED": NotificationStatus.FAILED,
        "BUFFERED": NotificationStatus.SENT,
        "ENROUTE": NotificationStatus.SENT,
    }

    def __init__(self, settings: GatewayApiSettings, rate_limiter: RateLimiter, http: HttpSettings,
                 country_code: str = "45", session: Optional[requests.Session] = None):
        super().__init__(rate_limiter, http, country_code, session)
        self._settings = settings

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    @classmethod
    def map_status(cls, vendor_status: str) -> NotificationStatus:
        return cls.STATUS_MAP.get((vendor_status or "").upper(), NotificationStatus.SENT)

    def _send_sync(self, message: Message) -> SendResult:
        self._log_send(message)
        payload: Dict[str, Any] = {
            "sender": message.sender or self._settings.sender,
            "message": message.content,
            "recipients": [{"msisdn": int(self._msisdn(message.to))}],
        }
        if requires_ucs2_encoding(message.content):
            payload["encoding"] = "UCS2"

        response = self._request(
            "POST",
            f"{self._settings.api_url}/mtsms",
            json=payload,
            auth=(self._settings.api_key, ""),
        )
        if not response.ok:
            return SendResult(success=False, error=self._error_text(response, "message"))

        data = response.json()
        ids = data.get("ids") or []
        if not ids:
            return SendResult(success=False, error="GatewayAPI returned no message id")

        message_id = str(ids[0])
        logger.info(f"[{self.name}] SMS sent: {message_id}")
        return SendResult(success=True, message_id=message_id)

    def _get_status_sync(self, message_id: str) -> MessageStatusResult:
        response = self._request(
            "GET",
            f"{self._settings.api_url}/mtsms/{message_id}",
            auth=(self._settings.api_key, ""),
        )
        if not response.ok:
            return MessageStatusResult(message_id, NotificationStatus.FAILED, error=f"HTTP {response.status_code}")
        data = response.json()
        return MessageStatusResult(
            message_id=message_id,
            status=self.map_status(str(data.get("status", ""))),
            timestamp=parse_optional_datetime(data.get("delivered_time")),
        )

    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        token = headers.get("x-gwapi-signature")
        if not token:
            authorization = headers.get("authorization", "")
            if authorization.lower().startswith("bearer "):
                token = authorization[7:].strip()
        return verify_jwt_hs256(token, self._settings.webhook_secret)

    def parse_webhook(self, body: bytes) -> List[WebhookEvent]:
        data = load_json(body)
        if not isinstance(data, dict) or data.get("id") is None:
            return []
        vendor_status = str(data.get("status", ""))
        return [
            WebhookEvent(
                message_id=str(data["id"]),
                status=self.map_status(vendor_status),
                vendor_status=vendor_status,
                timestamp=from_epoch(data.get("time")),
                error=str(data["error"]) if data.get("error") else None,
                raw=data,
            )
        ]


class InMobileProvider(SmsProvider):
    """
    InMobile REST v4 (https://www.inmobile.com/docs/rest-api/v4).

    Webhooks are accepted with either an X-InMobile-Signature header
    (hex HMAC-SHA256 of the body) or the shared secret in X-InMobile-Secret.
    """

    name = "inmobile"

    STATUS_MAP = {
        "delivered": NotificationStatus.DELIVERED,
        "failed": NotificationStatus.FAILED,
        "rejected": NotificationStatus.FAILED,
        "expired": NotificationStatus.FAILED,
        "sent": NotificationStatus.SENT,
        "buffered": NotificationStatus.SENT,
    }

    # Alphanumeric sender ids are capped by the networks
    MAX_SENDER_LENGTH = 11

    def __init__(self, settings: InMobileSettings, rate_limiter: RateLimiter, http: HttpSettings,
                 country_code: str = "45", session: Optional[requests.Session] = None):
        super().__init__(rate_limiter, http, country_code, session)
        self._settings = settings

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    @classmethod
    def map_status(cls, vendor_status: str) -> NotificationStatus:
        return cls.STATUS_MAP.get((vendor_status or "").lower(), NotificationStatus.SENT)

    def _send_sync(self, message: Message) -> SendResult:
        self._log_send(message)
        sender = (message.sender_name or message.sender or self._settings.sender)[: self.MAX_SENDER_LENGTH]
        outgoing: Dict[str, Any] = {
            "to": self._msisdn(message.to),
            "text": message.content,
            "from": sender,
            "encoding": "ucs2" if requires_ucs2_encoding(message.content) else "gsm7",
            "respectBlacklist": True,
        }
        if self._settings.status_callback_url:
            outgoing["statusCallbackUrl"] = self._settings.status_callback_url

        response = self._request(
            "POST",
            f"{self._settings.api_url}/sms/outgoing",
            json={"messages": [outgoing]},
            auth=("", self._settings.api_key),
        )
        if not response.ok:
            return SendResult(success=False, error=self._error_text(response, "errorMessage"))

        results = response.json().get("results") or []
        message_id = results[0].get("messageId") if results else None
        if not message_id:
            return SendResult(success=False, error="InMobile returned no message id")

        logger.info(f"[{self.name}] SMS sent: {message_id}")
        return SendResult(success=True, message_id=str(message_id))

    def _get_status_sync(self, message_id: str) -> MessageStatusResult:
        response = self._request(
            "GET",
            f"{self._settings.api_url}/sms/outgoing/reports",
            params={"limit": 250},
            auth=("", self._settings.api_key),
        )
        if not response.ok:
            return MessageStatusResult(message_id, NotificationStatus.FAILED, error=f"HTTP {response.status_code}")

        for report in response.json().get("reports") or []:
            if report.get("messageId") == message_id:
                return MessageStatusResult(
                    message_id=message_id,
                    status=self.map_status(str(report.get("status", ""))),
                    timestamp=parse_optional_datetime(report.get("statusTimestamp")),
                )
        # Reports are consumed on read; no report yet means still in flight
        return MessageStatusResult(message_id, NotificationStatus.SENT)

    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        secret = self._settings.webhook_secret
        signature = headers.get("x-inmobile-signature")
        if signature:
            return verify_hmac_hex(secret, body, signature)
        return verify_shared_secret(secret, headers.get("x-inmobile-secret"))

    def parse_webhook(self, body: bytes) -> List[WebhookEvent]:
        data = load_json(body)
        if isinstance(data, dict) and isinstance(data.get("reports"), list):
            reports = data["reports"]
        elif isinstance(data, dict):
            reports = [data]
        elif isinstance(data, list):
            reports = data
        else:
            return []

        events = []
        for report in reports:
            if not isinstance(report, dict) or not report.get("messageId"):
                continue
            vendor_status = str(report.get("status", ""))
            events.append(
                WebhookEvent(
                    message_id=str(report["messageId"]),
                    status=self.map_status(vendor_status),
                    vendor_status=vendor_status,
                    timestamp=parse_optional_datetime(report.get("statusTimestamp")),
                    error=str(report["errorDescription"]) if report.get("errorDescription") else None,
                    raw=report,
                )
            )
        return events
