"""
Order Queue Store - Durable Delayed Queue
=========================================

One row per (business, order, platform). A second enqueue for the same
triple returns the existing row, so webhook redeliveries and repeated polls
are harmless.

Status moves pending -> processing -> completed | failed. The claim to
processing is a conditional UPDATE, so two workers never process the same
item. Only retry_failed() moves an item back to pending.
"""

import json
import sqlite3
import logging
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from ...domain.errors import ConflictError, NotFoundError
from ...domain.models import OrderData, QueuedOrder, QueueStatus, parse_datetime, utc_now
from .database import Database, to_db_time

logger = logging.getLogger(__name__)


class OrderQueueStore:
    """
    Queue of completed orders awaiting their review request.

    Usage:
        queue = OrderQueueStore(db)
        item = queue.enqueue("b1", order, delay_minutes=60)
        for due in queue.get_due_orders():
            ...
    """

    def __init__(self, db: Database):
        self._db = db

    def enqueue(self, business_id: str, order: OrderData, delay_minutes: int) -> QueuedOrder:
        """Schedule an order; returns the existing item if already queued."""
        now = utc_now()
        scheduled_for = now + timedelta(minutes=delay_minutes)

        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    """INSERT INTO order_queue (
                           business_id, order_id, platform, order_data, status,
                           scheduled_for, created_at, updated_at
                       ) VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)""",
                    (
                        business_id,
                        order.order_id,
                        order.platform,
                        json.dumps(order.to_dict()),
                        to_db_time(scheduled_for),
                        to_db_time(now),
                        to_db_time(now),
                    ),
                )
                item_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            logger.info(
                f"Order {order.order_id} already queued for business {business_id}, skipping"
            )
            existing = self.find_existing(business_id, order.order_id, order.platform)
            if existing is None:
                raise
            return existing

        logger.info(
            f"Enqueued order {order.order_id} for business {business_id}, "
            f"scheduled for {scheduled_for.isoformat()}"
        )
        return self.find_by_id(item_id)

    def find_by_id(self, item_id: int) -> Optional[QueuedOrder]:
        with self._db.connection() as conn:
            row = conn.execute("SELECT * FROM order_queue WHERE id = ?", (item_id,)).fetchone()
            return self._row_to_item(row) if row else None

    def find_existing(self, business_id: str, order_id: str, platform: str) -> Optional[QueuedOrder]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM order_queue WHERE business_id = ? AND order_id = ? AND platform = ?",
                (business_id, order_id, platform),
            ).fetchone()
            return self._row_to_item(row) if row else None

    def get_due_orders(self, limit: Optional[int] = None) -> List[QueuedOrder]:
        """Pending items whose scheduled time has passed, oldest first."""
        sql = (
            "SELECT * FROM order_queue WHERE status = 'pending' AND scheduled_for <= ? "
            "ORDER BY scheduled_for ASC, id ASC"
        )
        params: tuple = (to_db_time(utc_now()),)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)

        with self._db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_item(row) for row in rows]

    # ── Transitions ────────────────────────────────────────────────

    def mark_processing(self, item_id: int) -> Optional[QueuedOrder]:
        """
        Claim a pending item. Returns None when another worker got there first
        (or the item is no longer pending).
        """
        now = to_db_time(utc_now())
        with self._db.connection() as conn:
            cursor = conn.execute(
                """UPDATE order_queue
                   SET status = 'processing', attempts = attempts + 1, updated_at = ?
                   WHERE id = ? AND status = 'pending'""",
                (now, item_id),
            )
            claimed = cursor.rowcount == 1

        if not claimed:
            if self.find_by_id(item_id) is None:
                raise NotFoundError("Queue item")
            return None
        return self.find_by_id(item_id)

    def mark_completed(self, item_id: int) -> QueuedOrder:
        now = to_db_time(utc_now())
        return self._update(
            item_id,
            "status = 'completed', processed_at = ?, error_message = NULL, updated_at = ?",
            (now, now),
        )

    def mark_failed(self, item_id: int, error: str) -> QueuedOrder:
        now = to_db_time(utc_now())
        return self._update(
            item_id,
            "status = 'failed', processed_at = ?, error_message = ?, updated_at = ?",
            (now, error[:1000], now),
        )

    def retry_failed(self, item_id: int, delay_minutes: int = 60) -> QueuedOrder:
        """Put an item back to pending, scheduled delay_minutes from now."""
        item = self.find_by_id(item_id)
        if item is None:
            raise NotFoundError("Queue item")
        if item.status == QueueStatus.PROCESSING:
            raise ConflictError("Queue item is currently being processed")

        now = utc_now()
        logger.info(f"Retrying queue item {item_id} in {delay_minutes} minutes")
        return self._update(
            item_id,
            """status = 'pending', scheduled_for = ?, processed_at = NULL,
               error_message = NULL, attempts = 0, updated_at = ?""",
            (to_db_time(now + timedelta(minutes=delay_minutes)), to_db_time(now)),
        )

    def cancel_pending(self, business_id: str, order_id: str, platform: str,
                       reason: str = "Order cancelled") -> bool:
        """Fail a still-pending item. Items already claimed or finished are left alone."""
        now = to_db_time(utc_now())
        with self._db.connection() as conn:
            cancelled = conn.execute(
                """UPDATE order_queue
                   SET status = 'failed', error_message = ?, processed_at = ?, updated_at = ?
                   WHERE business_id = ? AND order_id = ? AND platform = ? AND status = 'pending'""",
                (reason, now, now, business_id, order_id, platform),
            ).rowcount == 1
        if cancelled:
            logger.info(f"Cancelled queued order {order_id} for business {business_id}")
        return cancelled

    def _update(self, item_id: int, set_clause: str, values: tuple) -> QueuedOrder:
        with self._db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE order_queue SET {set_clause} WHERE id = ?",
                values + (item_id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Queue item")
        return self.find_by_id(item_id)

    # ── Maintenance ────────────────────────────────────────────────

    def reclaim_stale(self, older_than_minutes: int, max_attempts: int) -> Tuple[int, int]:
        """
        Recover items left in processing by a crashed worker.

        Items below max_attempts go back to pending; the rest are failed.
        Returns (requeued, failed).
        """
        now = utc_now()
        cutoff = to_db_time(now - timedelta(minutes=older_than_minutes))
        stamp = to_db_time(now)

        with self._db.connection() as conn:
            requeued = conn.execute(
                """UPDATE order_queue SET status = 'pending', updated_at = ?
                   WHERE status = 'processing' AND updated_at < ? AND attempts < ?""",
                (stamp, cutoff, max_attempts),
            ).rowcount
            failed = conn.execute(
                """UPDATE order_queue
                   SET status = 'failed', error_message = 'stale processing item',
                       processed_at = ?, updated_at = ?
                   WHERE status = 'processing' AND updated_at < ?""",
                (stamp, stamp, cutoff),
            ).rowcount

        if requeued or failed:
            logger.warning(f"Reclaimed stale queue items: {requeued} requeued, {failed} failed")
        return requeued, failed

    def delete_old_completed(self, older_than_days: int = 30) -> int:
        cutoff = to_db_time(utc_now() - timedelta(days=older_than_days))
        with self._db.connection() as conn:
            deleted = conn.execute(
                "DELETE FROM order_queue WHERE status = 'completed' AND processed_at < ?",
                (cutoff,),
            ).rowcount
        if deleted:
            logger.info(f"Deleted {deleted} completed queue items older than {older_than_days} days")
        return deleted

    # ── Stats ──────────────────────────────────────────────────────

    def get_pending_count(self, business_id: str) -> int:
        with self._db.connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM order_queue WHERE business_id = ? AND status = 'pending'",
                (business_id,),
            ).fetchone()[0]

    def get_business_stats(self, business_id: str) -> Dict[str, int]:
        stats = {status.value: 0 for status in QueueStatus}
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM order_queue WHERE business_id = ? GROUP BY status",
                (business_id,),
            ).fetchall()
        for row in rows:
            stats[row["status"]] = row["n"]
        return stats

    def _row_to_item(self, row: sqlite3.Row) -> QueuedOrder:
        """Convert database row to QueuedOrder object."""
        return QueuedOrder(
            id=row["id"],
            business_id=row["business_id"],
            order_id=row["order_id"],
            platform=row["platform"],
            order_data=OrderData.from_dict(json.loads(row["order_data"])),
            status=QueueStatus(row["status"]),
            scheduled_for=parse_datetime(row["scheduled_for"]),
            processed_at=parse_datetime(row["processed_at"]),
            error_message=row["error_message"],
            attempts=row["attempts"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )
