"""
Notification Store - Review Request Records
===========================================

Status changes go through update_status(), which folds the monotonic rule
into the UPDATE itself (WHERE status IN <lower ranks>). Two webhook events
for the same message therefore cannot interleave a read and a write.
"""

import json
import sqlite3
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ...domain.errors import NotFoundError
from ...domain.models import (
    Notification,
    NotificationStatus,
    NotificationType,
    parse_datetime,
    utc_now,
)
from ...domain.status import statuses_replaceable_by, timestamp_field_for
from .database import Database, to_db_time

logger = logging.getLogger(__name__)

_TIMESTAMP_COLUMNS = ("sent_at", "delivered_at", "opened_at", "clicked_at")


class NotificationStore:
    """
    Usage:
        store = NotificationStore(db)
        store.create(notification)
        store.update_status(notification.id, NotificationStatus.DELIVERED)
    """

    def __init__(self, db: Database):
        self._db = db

    def create(self, notification: Notification) -> Notification:
        now = utc_now()
        notification.created_at = notification.created_at or now
        notification.updated_at = now
        with self._db.connection() as conn:
            conn.execute(
                """INSERT INTO notifications (
                       id, business_id, type, status, recipient, subject, content,
                       review_link, order_id, external_message_id, retry_count,
                       metadata, created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    notification.id,
                    notification.business_id,
                    notification.type.value,
                    notification.status.value,
                    notification.recipient,
                    notification.subject,
                    notification.content,
                    notification.review_link,
                    notification.order_id,
                    notification.external_message_id,
                    notification.retry_count,
                    json.dumps(notification.metadata),
                    to_db_time(notification.created_at),
                    to_db_time(notification.updated_at),
                ),
            )
        logger.debug(f"Created {notification.type.value} notification {notification.id}")
        return notification

    def find_by_id(self, notification_id: str) -> Optional[Notification]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
            return self._row_to_notification(row) if row else None

    def find_by_external_message_id(self, external_id: str) -> Optional[Notification]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE external_message_id = ?", (external_id,)
            ).fetchone()
            return self._row_to_notification(row) if row else None

    def list(
        self,
        business_id: str,
        type: Optional[NotificationType] = None,
        status: Optional[NotificationStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Newest first, with pagination info."""
        where = ["business_id = ?"]
        params: list = [business_id]
        if type is not None:
            where.append("type = ?")
            params.append(type.value)
        if status is not None:
            where.append("status = ?")
            params.append(status.value)
        where_sql = " AND ".join(where)

        with self._db.connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM notifications WHERE {where_sql}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM notifications WHERE {where_sql} "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()

        return {
            "data": [self._row_to_notification(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        }

    def get_pending_for_dispatch(self, limit: int) -> List[Notification]:
        """Pending notifications with no retry scheduled or a retry now due."""
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT * FROM notifications
                   WHERE status = 'pending' AND (retry_at IS NULL OR retry_at <= ?)
                   ORDER BY created_at ASC LIMIT ?""",
                (to_db_time(utc_now()), limit),
            ).fetchall()
            return [self._row_to_notification(row) for row in rows]

    # ── Status ─────────────────────────────────────────────────────

    def update_status(
        self,
        notification_id: str,
        status: NotificationStatus,
        error_message: Optional[str] = None,
        external_message_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Apply a status transition if it moves forward.
        Returns False when the notification's current status outranks it.
        """
        stamp = to_db_time(at or utc_now())
        sets = ["status = ?", "updated_at = ?"]
        values: list = [status.value, to_db_time(utc_now())]

        ts_field = timestamp_field_for(status)
        if ts_field:
            sets.append(f"{ts_field} = ?")
            values.append(stamp)
        if error_message is not None:
            sets.append("error_message = ?")
            values.append(error_message[:1000])
        if external_message_id is not None:
            sets.append("external_message_id = ?")
            values.append(external_message_id)

        allowed = [s.value for s in statuses_replaceable_by(status)]
        placeholders = ", ".join("?" for _ in allowed)

        with self._db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE notifications SET {', '.join(sets)} "
                f"WHERE id = ? AND status IN ({placeholders})",
                values + [notification_id] + allowed,
            )
            updated = cursor.rowcount == 1

        if updated:
            logger.info(f"Notification {notification_id} -> {status.value}")
        else:
            logger.debug(f"Ignored {status.value} for notification {notification_id} (not forward)")
        return updated

    def schedule_retry(self, notification_id: str, retry_count: int, retry_at: datetime, error: str):
        with self._db.connection() as conn:
            cursor = conn.execute(
                """UPDATE notifications
                   SET retry_count = ?, retry_at = ?, error_message = ?, updated_at = ?
                   WHERE id = ? AND status = 'pending'""",
                (retry_count, to_db_time(retry_at), error[:1000], to_db_time(utc_now()), notification_id),
            )
            if cursor.rowcount == 0 and self._missing(conn, notification_id):
                raise NotFoundError("Notification")

    def _missing(self, conn, notification_id: str) -> bool:
        return conn.execute(
            "SELECT 1 FROM notifications WHERE id = ?", (notification_id,)
        ).fetchone() is None

    # ── Stats ──────────────────────────────────────────────────────

    def get_stats(self, business_id: str) -> Dict[str, int]:
        """
        Funnel counts per channel. A clicked message also counts as sent,
        delivered and opened.
        """
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT type,
                       SUM(CASE WHEN status IN ('sent', 'delivered', 'opened', 'clicked') THEN 1 ELSE 0 END) AS sent,
                       SUM(CASE WHEN status IN ('delivered', 'opened', 'clicked') THEN 1 ELSE 0 END) AS delivered,
                       SUM(CASE WHEN status IN ('opened', 'clicked') THEN 1 ELSE 0 END) AS opened,
                       SUM(CASE WHEN status = 'clicked' THEN 1 ELSE 0 END) AS clicked
                   FROM notifications WHERE business_id = ? GROUP BY type""",
                (business_id,),
            ).fetchall()

        stats = {
            f"{channel.value}_{metric}": 0
            for channel in NotificationType
            for metric in ("sent", "delivered", "opened", "clicked")
        }
        for row in rows:
            for metric in ("sent", "delivered", "opened", "clicked"):
                stats[f"{row['type']}_{metric}"] = row[metric] or 0
        return stats

    def _row_to_notification(self, row: sqlite3.Row) -> Notification:
        """Convert database row to Notification object."""
        timestamps = {col: parse_datetime(row[col]) for col in _TIMESTAMP_COLUMNS}
        return Notification(
            id=row["id"],
            business_id=row["business_id"],
            type=NotificationType(row["type"]),
            status=NotificationStatus(row["status"]),
            recipient=row["recipient"],
            subject=row["subject"],
            content=row["content"],
            review_link=row["review_link"],
            order_id=row["order_id"],
            external_message_id=row["external_message_id"],
            error_message=row["error_message"],
            retry_count=row["retry_count"],
            retry_at=parse_datetime(row["retry_at"]),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            **timestamps,
        )
