"""
Tests for the SMS and email vendor clients.

The HTTP session is a Mock; nothing leaves the process.
"""

import base64
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import jwt
import pytest
import requests

from src.domain.models import NotificationStatus, NotificationType
from src.infrastructure.config.settings import (
    GatewayApiSettings,
    HttpSettings,
    InMobileSettings,
    ResendSettings,
    SendGridSettings,
)
from src.infrastructure.messaging import (
    GatewayApiProvider,
    InMobileProvider,
    Message,
    ProviderFactory,
    ProviderNotConfiguredError,
    RateLimiter,
    RateLimiterRegistry,
    ResendProvider,
    SendGridProvider,
)
from src.infrastructure.messaging.signatures import hmac_sha256_base64

HTTP = HttpSettings(timeout_seconds=5, max_attempts=3, backoff_seconds=0)


def response(status_code=200, body=None, headers=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.headers = headers or {}
    if body is None:
        resp.json.side_effect = ValueError("no body")
    else:
        resp.json.return_value = body
    return resp


def limiter():
    return RateLimiter(100, 1000)


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


class TestGatewayApi:

    SETTINGS = GatewayApiSettings(api_key="gw-key", sender="Hygge", webhook_secret="gw-secret")

    def provider(self, session):
        return GatewayApiProvider(self.SETTINGS, limiter(), HTTP, "45", session)

    async def test_send(self, session):
        session.request.return_value = response(200, {"ids": [4242]})

        result = await self.provider(session).send(Message(to="12345678", content="Hej!"))

        assert result.success and result.message_id == "4242"
        method, url = session.request.call_args.args
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "https://gatewayapi.com/rest/mtsms")
        assert payload["recipients"] == [{"msisdn": 4512345678}]
        assert payload["sender"] == "Hygge"
        assert "encoding" not in payload

    async def test_unicode_content_is_flagged(self, session):
        session.request.return_value = response(200, {"ids": [1]})

        await self.provider(session).send(Message(to="+4512345678", content="Tak 🎉"))

        assert session.request.call_args.kwargs["json"]["encoding"] == "UCS2"

    async def test_invalid_number_is_not_sent(self, session):
        result = await self.provider(session).send(Message(to="123", content="Hi"))

        assert not result.success
        assert "Invalid phone number" in result.error
        session.request.assert_not_called()

    async def test_vendor_error_message(self, session):
        session.request.return_value = response(400, {"message": "Insufficient credit"})

        result = await self.provider(session).send(Message(to="+4512345678", content="Hi"))

        assert not result.success
        assert result.error == "Insufficient credit"

    async def test_transient_errors_are_retried(self, session):
        session.request.side_effect = [
            response(503, {}),
            requests.ConnectionError("reset"),
            response(200, {"ids": [7]}),
        ]

        result = await self.provider(session).send(Message(to="+4512345678", content="Hi"))

        assert result.success and result.message_id == "7"
        assert session.request.call_count == 3

    async def test_gives_up_after_max_attempts(self, session):
        session.request.return_value = response(502, {})

        result = await self.provider(session).send(Message(to="+4512345678", content="Hi"))

        assert not result.success
        assert "HTTP 502" in result.error
        assert session.request.call_count == 3

    async def test_not_configured(self, session):
        provider = GatewayApiProvider(GatewayApiSettings(api_key=""), limiter(), HTTP, "45", session)
        result = await provider.send(Message(to="+4512345678", content="Hi"))

        assert not result.success
        assert "not configured" in result.error

    def test_webhook_jwt_header_or_bearer(self, session):
        provider = self.provider(session)
        token = jwt.encode({"id": 1}, "gw-secret", algorithm="HS256")

        assert provider.verify_webhook({"x-gwapi-signature": token}, b"{}")
        assert provider.verify_webhook({"authorization": f"Bearer {token}"}, b"{}")
        assert not provider.verify_webhook({}, b"{}")

    def test_parse_webhook(self, session):
        body = json.dumps({"id": 4242, "status": "DELIVERED", "time": 1700000000}).encode()

        [event] = self.provider(session).parse_webhook(body)

        assert event.message_id == "4242"
        assert event.status == NotificationStatus.DELIVERED
        assert event.timestamp.timestamp() == 1700000000

    @pytest.mark.parametrize(
        "vendor, status",
        [("UNDELIVERED", NotificationStatus.FAILED), ("ENROUTE", NotificationStatus.SENT),
         ("SOMETHING_NEW", NotificationStatus.SENT)],
    )
    def test_status_map(self, vendor, status):
        assert GatewayApiProvider.map_status(vendor) == status


class TestInMobile:

    SETTINGS = InMobileSettings(
        api_key="im-key", sender="Hygge", webhook_secret="im-secret", status_callback_url="https://cb"
    )

    def provider(self, session):
        return InMobileProvider(self.SETTINGS, limiter(), HTTP, "45", session)

    async def test_send_uses_business_name_capped_at_eleven(self, session):
        session.request.return_value = response(200, {"results": [{"messageId": "im-1"}]})

        result = await self.provider(session).send(
            Message(to="+4512345678", content="Hi", sender_name="Restaurant Aurora")
        )

        assert result.success and result.message_id == "im-1"
        [outgoing] = session.request.call_args.kwargs["json"]["messages"]
        assert outgoing["from"] == "Restaurant "
        assert outgoing["to"] == "4512345678"
        assert outgoing["encoding"] == "gsm7"
        assert outgoing["statusCallbackUrl"] == "https://cb"

    def test_webhook_hmac_or_shared_secret(self, session):
        provider = self.provider(session)
        body = b'{"messageId":"im-1","status":"delivered"}'
        signature = hmac.new(b"im-secret", body, hashlib.sha256).hexdigest()

        assert provider.verify_webhook({"x-inmobile-signature": signature}, body)
        assert provider.verify_webhook({"x-inmobile-secret": "im-secret"}, body)
        assert not provider.verify_webhook({"x-inmobile-signature": "00"}, body)
        assert not provider.verify_webhook({}, body)

    def test_parse_report_list(self, session):
        body = json.dumps({
            "reports": [
                {"messageId": "im-1", "status": "delivered"},
                {"messageId": "im-2", "status": "failed", "errorDescription": "Unknown subscriber"},
                {"status": "delivered"},
            ]
        }).encode()

        events = self.provider(session).parse_webhook(body)

        assert [e.message_id for e in events] == ["im-1", "im-2"]
        assert events[1].status == NotificationStatus.FAILED
        assert events[1].error == "Unknown subscriber"


class TestSendGrid:

    def provider(self, session, key=""):
        settings = SendGridSettings(
            api_key="sg-key", from_email="hello@hygge.test", from_name="Hygge",
            webhook_verification_key=key,
        )
        return SendGridProvider(settings, limiter(), HTTP, session)

    async def test_send_reads_message_id_header(self, session):
        session.request.return_value = response(202, None, {"X-Message-Id": "sg-1"})

        result = await self.provider(session).send(
            Message(to="anna@example.com", content="Hi", subject="How was it?", sender_name="Cafe Hygge")
        )

        assert result.success and result.message_id == "sg-1"
        payload = session.request.call_args.kwargs["json"]
        assert payload["from"] == {"email": "hello@hygge.test", "name": "Cafe Hygge"}
        assert payload["subject"] == "How was it?"

    async def test_invalid_email(self, session):
        result = await self.provider(session).send(Message(to="not-an-email", content="Hi"))

        assert not result.success
        session.request.assert_not_called()

    def test_webhook_without_key_fails_closed(self, session):
        assert not self.provider(session).verify_webhook({}, b"[]")

    def test_parse_strips_filter_suffix(self, session):
        body = json.dumps([
            {"sg_message_id": "sg-1.filter0001", "event": "open", "timestamp": 1700000000},
            {"sg_message_id": "sg-2.filter0002", "event": "bounce", "reason": "550 no such user"},
            {"event": "processed"},
        ]).encode()

        events = self.provider(session).parse_webhook(body)

        assert [(e.message_id, e.status) for e in events] == [
            ("sg-1", NotificationStatus.OPENED),
            ("sg-2", NotificationStatus.BOUNCED),
        ]
        assert events[1].error == "550 no such user"


class TestResend:

    SETTINGS = ResendSettings(
        api_key="re-key", from_email="hello@hygge.test", from_name="Hygge",
        webhook_secret="whsec_" + base64.b64encode(b"resend-secret").decode(),
    )

    def provider(self, session):
        return ResendProvider(self.SETTINGS, limiter(), HTTP, 300, session)

    async def test_send(self, session):
        session.request.return_value = response(200, {"id": "re-1"})

        result = await self.provider(session).send(Message(to="anna@example.com", content="Hi"))

        assert result.success and result.message_id == "re-1"
        assert session.request.call_args.kwargs["json"]["from"] == "Hygge <hello@hygge.test>"

    def test_svix_webhook(self, session):
        body = json.dumps({"type": "email.delivered", "data": {"email_id": "re-1"}}).encode()
        ts = str(int(time.time()))
        signature = "v1," + hmac_sha256_base64(b"resend-secret", f"msg_1.{ts}.".encode() + body)
        headers = {"svix-id": "msg_1", "svix-timestamp": ts, "svix-signature": signature}

        provider = self.provider(session)
        assert provider.verify_webhook(headers, body)
        [event] = provider.parse_webhook(body)
        assert event.message_id == "re-1"
        assert event.status == NotificationStatus.DELIVERED

    def test_bounce_carries_reason(self, session):
        body = json.dumps({
            "type": "email.bounced",
            "created_at": "2024-05-01T10:00:00Z",
            "data": {"email_id": "re-1", "bounce": {"message": "Mailbox full"}},
        }).encode()

        [event] = self.provider(session).parse_webhook(body)

        assert event.status == NotificationStatus.BOUNCED
        assert event.error == "Mailbox full"


class TestProviderFactory:

    def test_active_providers_per_channel(self, settings):
        factory = ProviderFactory(settings, RateLimiterRegistry(settings.rate_limits.limits))

        assert factory.for_channel(NotificationType.SMS).name == "gatewayapi"
        assert factory.for_channel(NotificationType.EMAIL).name == "sendgrid"
        assert factory.get("resend").name == "resend"
        assert factory.status()["inmobile"] == {"channel": "sms", "configured": True, "active": False}

    def test_unknown_provider(self, settings):
        factory = ProviderFactory(settings, RateLimiterRegistry(settings.rate_limits.limits))

        with pytest.raises(ProviderNotConfiguredError):
            factory.get("twilio")
