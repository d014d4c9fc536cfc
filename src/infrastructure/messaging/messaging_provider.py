"""
Messaging Provider - Abstraction Layer for SMS and Email Vendors
================================================================

Provides a unified interface for sending review requests and for reading
the vendor's delivery webhooks back.

USAGE:
    provider = GatewayApiProvider(settings.gatewayapi, limiter, settings.http)
    result = await provider.send(Message(to="+4512345678", content="Hi!"))
    if result.success:
        print(result.message_id)

ARCHITECTURAL DECISION:
- Vendor HTTP calls are blocking `requests` calls run in a worker thread
  (asyncio.to_thread) so the event loop keeps serving webhooks
- Every send first takes a token from the provider's rate limiter
- Network errors, 429 and 5xx are retried with exponential backoff inside
  _request(); anything left over is reported as SendResult(success=False)
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import requests

from ...domain.models import NotificationStatus, NotificationType, parse_datetime
from ..config.settings import HttpSettings
from .errors import ProviderError, RateLimitExceededError, TransientProviderError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 30


# ── Webhook body helpers ───────────────────────────────────────────

def load_json(body: bytes) -> Any:
    try:
        return json.loads(body or b"null")
    except ValueError:
        return None


def from_epoch(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(float(value), timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_optional_datetime(value: Any) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Message:
    to: str
    content: str
    subject: Optional[str] = None
    html: Optional[str] = None
    sender: Optional[str] = None
    sender_name: Optional[str] = None


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MessageStatusResult:
    message_id: str
    status: NotificationStatus
    timestamp: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class WebhookEvent:
    """One delivery event, already mapped to our status vocabulary."""
    message_id: str
    status: NotificationStatus
    vendor_status: str
    timestamp: Optional[datetime] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class MessagingProvider(ABC):
    """
    Abstract base class for outbound messaging vendors.
    Implement this interface to add new vendors.
    """

    name: str = ""
    channel: NotificationType = NotificationType.SMS

    def __init__(
        self,
        rate_limiter: RateLimiter,
        http: HttpSettings,
        session: Optional[requests.Session] = None,
    ):
        self._rate_limiter = rate_limiter
        self._http = http
        self._session = session or requests.Session()

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials for sending are present."""
        ...

    @abstractmethod
    def _validate(self, message: Message) -> Optional[str]:
        """Return an error text if the message cannot be sent."""
        ...

    @abstractmethod
    def _send_sync(self, message: Message) -> SendResult:
        """Blocking vendor call. Runs in a worker thread."""
        ...

    def _get_status_sync(self, message_id: str) -> MessageStatusResult:
        # Most vendors only report status through webhooks
        return MessageStatusResult(message_id=message_id, status=NotificationStatus.SENT)

    @abstractmethod
    def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Check the vendor's signature on an inbound webhook. Headers are lowercase."""
        ...

    @abstractmethod
    def parse_webhook(self, body: bytes) -> List[WebhookEvent]:
        """Turn a verified webhook body into status events."""
        ...

    async def send(self, message: Message) -> SendResult:
        if not self.is_configured():
            return SendResult(success=False, error=f"{self.name} is not configured")

        error = self._validate(message)
        if error:
            return SendResult(success=False, error=error)

        try:
            await self._rate_limiter.acquire()
            return await asyncio.to_thread(self._send_sync, message)
        except RateLimitExceededError as e:
            logger.warning(f"[{self.name}] {e}")
            return SendResult(success=False, error=str(e))
        except ProviderError as e:
            logger.warning(f"[{self.name}] send failed: {e}")
            return SendResult(success=False, error=str(e))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Vendor answered 2xx with a body we cannot read
            logger.error(f"[{self.name}] unreadable send response: {e!r}")
            return SendResult(success=False, error=f"{self.name}: unreadable response ({e})")

    async def get_status(self, message_id: str) -> MessageStatusResult:
        try:
            await self._rate_limiter.acquire()
            return await asyncio.to_thread(self._get_status_sync, message_id)
        except (ProviderError, RateLimitExceededError) as e:
            return MessageStatusResult(message_id, NotificationStatus.FAILED, error=str(e))

    # ── HTTP ───────────────────────────────────────────────────────

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        HTTP call with timeout and retries for transient failures.
        Returns the response for any non-retryable status; the caller decides
        what a 4xx means.
        """
        attempts = max(1, self._http.max_attempts)
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                response = self._session.request(
                    method, url, timeout=self._http.timeout_seconds, **kwargs
                )
            except requests.Timeout:
                last_error = "request timed out"
                delay = self._backoff(attempt)
            except requests.RequestException as e:
                last_error = f"network error: {e}"
                delay = self._backoff(attempt)
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    return response
                last_error = f"HTTP {response.status_code}"
                delay = self._retry_after(response) or self._backoff(attempt)

            if attempt < attempts:
                logger.info(f"[{self.name}] {last_error}, retrying in {delay:.1f}s ({attempt}/{attempts})")
                time.sleep(delay)

        raise TransientProviderError(self.name, last_error)

    def _backoff(self, attempt: int) -> float:
        return self._http.backoff_seconds * (2 ** (attempt - 1))

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return min(float(value), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            return None

    @staticmethod
    def _error_text(response: requests.Response, *keys: str) -> str:
        """Pull a human-readable message out of a vendor error body."""
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(data, dict):
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value:
                    return value
                if isinstance(value, list) and value:
                    return ", ".join(
                        str(item.get("message", item)) if isinstance(item, dict) else str(item)
                        for item in value
                    )
        return f"HTTP {response.status_code}"
