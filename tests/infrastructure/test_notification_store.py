from datetime import timedelta

import pytest

from src.domain.errors import NotFoundError
from src.domain.models import Notification, NotificationStatus, NotificationType, utc_now


def make_notification(notification_id="n-1", business_id="b1", type=NotificationType.SMS):
    return Notification(
        id=notification_id,
        business_id=business_id,
        type=type,
        status=NotificationStatus.PENDING,
        recipient="+4512345678",
        content="Thanks for visiting!",
        order_id="order-1",
        metadata={"platform": "dully"},
    )


class TestStatusUpdates:

    def test_forward_transitions_stamp_timestamps(self, notifications):
        notifications.create(make_notification())

        assert notifications.update_status("n-1", NotificationStatus.SENT, external_message_id="msg-1")
        assert notifications.update_status("n-1", NotificationStatus.DELIVERED)

        stored = notifications.find_by_id("n-1")
        assert stored.status == NotificationStatus.DELIVERED
        assert stored.external_message_id == "msg-1"
        assert stored.sent_at is not None and stored.delivered_at is not None
        assert notifications.find_by_external_message_id("msg-1").id == "n-1"

    def test_late_event_is_ignored(self, notifications):
        notifications.create(make_notification())
        notifications.update_status("n-1", NotificationStatus.CLICKED)

        assert not notifications.update_status("n-1", NotificationStatus.DELIVERED)
        assert notifications.find_by_id("n-1").status == NotificationStatus.CLICKED

    def test_failure_always_applies(self, notifications):
        notifications.create(make_notification())
        notifications.update_status("n-1", NotificationStatus.DELIVERED)

        assert notifications.update_status("n-1", NotificationStatus.BOUNCED, error_message="mailbox full")
        stored = notifications.find_by_id("n-1")
        assert stored.status == NotificationStatus.BOUNCED
        assert stored.error_message == "mailbox full"

    def test_event_time_is_used_for_timestamp(self, notifications):
        notifications.create(make_notification())
        at = utc_now() - timedelta(hours=1)

        notifications.update_status("n-1", NotificationStatus.DELIVERED, at=at)
        assert notifications.find_by_id("n-1").delivered_at == at

    def test_unknown_notification(self, notifications):
        assert not notifications.update_status("missing", NotificationStatus.SENT)


class TestDispatchSelection:

    def test_pending_without_retry_or_due_retry(self, notifications):
        notifications.create(make_notification("fresh"))
        notifications.create(make_notification("due"))
        notifications.create(make_notification("later"))
        notifications.create(make_notification("sent"))
        notifications.schedule_retry("due", 1, utc_now() - timedelta(seconds=1), "timeout")
        notifications.schedule_retry("later", 1, utc_now() + timedelta(minutes=5), "timeout")
        notifications.update_status("sent", NotificationStatus.SENT)

        ids = {n.id for n in notifications.get_pending_for_dispatch(limit=10)}
        assert ids == {"fresh", "due"}

    def test_schedule_retry_records_error(self, notifications):
        notifications.create(make_notification())
        notifications.schedule_retry("n-1", 2, utc_now(), "HTTP 503")

        stored = notifications.find_by_id("n-1")
        assert stored.retry_count == 2
        assert stored.error_message == "HTTP 503"

    def test_schedule_retry_unknown(self, notifications):
        with pytest.raises(NotFoundError):
            notifications.schedule_retry("missing", 1, utc_now(), "x")


class TestListingAndStats:

    def test_list_filters_and_paginates(self, notifications):
        for i in range(3):
            notifications.create(make_notification(f"sms-{i}"))
        notifications.create(make_notification("email-0", type=NotificationType.EMAIL))

        page = notifications.list("b1", type=NotificationType.SMS, page=1, limit=2)

        assert len(page["data"]) == 2
        assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert all(n.type == NotificationType.SMS for n in page["data"])

    def test_funnel_counts_are_cumulative(self, notifications):
        notifications.create(make_notification("a"))
        notifications.create(make_notification("b"))
        notifications.create(make_notification("c", type=NotificationType.EMAIL))
        notifications.update_status("a", NotificationStatus.CLICKED)
        notifications.update_status("b", NotificationStatus.SENT)
        notifications.update_status("c", NotificationStatus.OPENED)

        stats = notifications.get_stats("b1")

        assert stats["sms_sent"] == 2
        assert stats["sms_delivered"] == 1
        assert stats["sms_clicked"] == 1
        assert stats["email_opened"] == 1
        assert stats["email_clicked"] == 0
