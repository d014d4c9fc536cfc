import json

import jwt
import pytest

from src.domain.errors import UnauthorizedError
from src.domain.models import Notification, NotificationStatus, NotificationType

GATEWAY_SECRET = "gw-secret"
INMOBILE_SECRET = "im-secret"


def gateway_headers():
    return {"x-gwapi-signature": jwt.encode({"id": 1}, GATEWAY_SECRET, algorithm="HS256")}


def gateway_body(message_id="4242", status="DELIVERED", **extra):
    return json.dumps(dict({"id": message_id, "status": status, "time": 1700000000}, **extra)).encode()


@pytest.fixture
def sent(container):
    container.notifications.create(Notification(
        id="n-1",
        business_id="cafe-hygge",
        type=NotificationType.SMS,
        status=NotificationStatus.PENDING,
        recipient="+4512345678",
        content="Hi",
    ))
    container.notifications.update_status("n-1", NotificationStatus.SENT, external_message_id="4242")
    return container.notifications.find_by_id("n-1")


class TestIngest:

    def test_delivery_updates_notification(self, container, sent):
        result = container.ingester.ingest("gatewayapi", gateway_headers(), gateway_body())

        assert result.to_dict() == {"received": True, "found": True, "updated": True}
        stored = container.notifications.find_by_id("n-1")
        assert stored.status == NotificationStatus.DELIVERED
        assert stored.delivered_at.timestamp() == 1700000000

    def test_bad_signature_touches_nothing(self, container, sent):
        with pytest.raises(UnauthorizedError):
            container.ingester.ingest("gatewayapi", {"x-gwapi-signature": "forged"}, gateway_body())

        assert container.notifications.find_by_id("n-1").status == NotificationStatus.SENT

    def test_unknown_message_is_acknowledged(self, container, sent):
        result = container.ingester.ingest("gatewayapi", gateway_headers(), gateway_body("9999"))

        assert result.to_dict() == {"received": True, "found": False, "updated": False}

    def test_out_of_order_event_is_ignored(self, container, sent):
        container.ingester.ingest("gatewayapi", gateway_headers(), gateway_body())
        result = container.ingester.ingest("gatewayapi", gateway_headers(), gateway_body(status="ENROUTE"))

        assert result.to_dict() == {"received": True, "found": True, "updated": False}
        assert container.notifications.find_by_id("n-1").status == NotificationStatus.DELIVERED

    def test_failure_without_reason_gets_vendor_status(self, container, sent):
        container.ingester.ingest("gatewayapi", gateway_headers(), gateway_body(status="UNDELIVERED"))

        stored = container.notifications.find_by_id("n-1")
        assert stored.status == NotificationStatus.FAILED
        assert stored.error_message == "gatewayapi: UNDELIVERED"

    def test_failure_reason_is_kept(self, container, sent):
        container.ingester.ingest(
            "gatewayapi", gateway_headers(), gateway_body(status="REJECTED", error="Blacklisted")
        )
        assert container.notifications.find_by_id("n-1").error_message == "Blacklisted"

    def test_multi_event_body_reports_counts(self, container, sent):
        body = json.dumps({"reports": [
            {"messageId": "4242", "status": "delivered"},
            {"messageId": "unknown", "status": "delivered"},
        ]}).encode()

        result = container.ingester.ingest("inmobile", {"x-inmobile-secret": INMOBILE_SECRET}, body)

        assert result.to_dict() == {"received": True, "events": 2, "found": 1, "updated": 1}

    def test_record_click(self, container, sent):
        assert container.ingester.record_click("n-1")
        assert container.notifications.find_by_id("n-1").status == NotificationStatus.CLICKED
        assert not container.ingester.record_click("n-1")
