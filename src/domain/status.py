"""
Notification Status Progression
===============================

Vendor webhooks arrive late, duplicated and out of order. A status only
moves forward along its rank; failed and bounced are terminal but always
accepted so a late failure is never lost behind a "delivered".
"""

from typing import Dict, List, Optional

from .models import NotificationStatus

STATUS_RANK: Dict[NotificationStatus, int] = {
    NotificationStatus.PENDING: 0,
    NotificationStatus.SENT: 1,
    NotificationStatus.DELIVERED: 2,
    NotificationStatus.OPENED: 3,
    NotificationStatus.CLICKED: 4,
    NotificationStatus.FAILED: 5,
    NotificationStatus.BOUNCED: 5,
}

TERMINAL_FAILURES = frozenset({NotificationStatus.FAILED, NotificationStatus.BOUNCED})

# Column stamped when a status is accepted
STATUS_TIMESTAMP_FIELD: Dict[NotificationStatus, str] = {
    NotificationStatus.SENT: "sent_at",
    NotificationStatus.DELIVERED: "delivered_at",
    NotificationStatus.OPENED: "opened_at",
    NotificationStatus.CLICKED: "clicked_at",
}


def should_update_status(current: NotificationStatus, new: NotificationStatus) -> bool:
    if new in TERMINAL_FAILURES:
        return True
    return STATUS_RANK[new] > STATUS_RANK[current]


def statuses_replaceable_by(new: NotificationStatus) -> List[NotificationStatus]:
    """Current statuses a transition to `new` may overwrite."""
    return [status for status in NotificationStatus if should_update_status(status, new)]


def timestamp_field_for(status: NotificationStatus) -> Optional[str]:
    return STATUS_TIMESTAMP_FIELD.get(status)
