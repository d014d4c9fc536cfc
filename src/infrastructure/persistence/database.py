"""
SQLite Database - Schema and Business Preferences
=================================================

Owns the connection handling and schema for every table. Queue items and
notifications have their own stores (order_queue.py, notifications.py)
built on the same connection helper.
"""

import json
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from ...domain.models import Business, IntegrationConfig, parse_datetime, utc_now

logger = logging.getLogger(__name__)

DATABASE_FILE = "reviewflow.db"


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string, so SQL string comparison orders by time."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """
    SQLite database for ReviewFlow.

    Usage:
        db = Database("reviewflow.db")
        db.init()

        db.save_business(Business(id="b1", name="Cafe Hygge"))
        business = db.get_business("b1")
    """

    def __init__(self, db_path: Union[str, Path] = DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def connection(self):
        """Get database connection with context manager. Commits on success."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS businesses (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    sms_enabled INTEGER DEFAULT 1,
                    email_enabled INTEGER DEFAULT 0,
                    sms_template TEXT,
                    email_template TEXT,
                    email_subject TEXT,
                    default_delay_minutes INTEGER,
                    sms_delay_minutes INTEGER,
                    email_delay_minutes INTEGER,
                    google_review_url TEXT,
                    integrations TEXT DEFAULT '[]',
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS order_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    business_id TEXT NOT NULL,
                    order_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    order_data TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    scheduled_for TEXT NOT NULL,
                    processed_at TEXT,
                    error_message TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(business_id, order_id, platform)
                )
            """)
            self._migrate_order_queue_table(conn)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_order_queue_due ON order_queue (status, scheduled_for)"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    business_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    recipient TEXT NOT NULL,
                    subject TEXT,
                    content TEXT NOT NULL,
                    review_link TEXT,
                    order_id TEXT,
                    external_message_id TEXT,
                    error_message TEXT,
                    sent_at TEXT,
                    delivered_at TEXT,
                    opened_at TEXT,
                    clicked_at TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    retry_at TEXT,
                    metadata TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_external "
                "ON notifications (external_message_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_dispatch "
                "ON notifications (status, retry_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_business "
                "ON notifications (business_id, created_at)"
            )

            logger.info(f"Database initialized: {self.db_path}")

    def _migrate_order_queue_table(self, conn):
        """Add missing columns to existing order_queue table."""
        existing = {row[1] for row in conn.execute("PRAGMA table_info(order_queue)").fetchall()}

        migrations = {
            "attempts": "ALTER TABLE order_queue ADD COLUMN attempts INTEGER NOT NULL DEFAULT 0",
        }

        for col, sql in migrations.items():
            if col not in existing:
                conn.execute(sql)
                logger.info(f"Migrated: added '{col}' column to order_queue")

    # ── Businesses ─────────────────────────────────────────────────

    def save_business(self, business: Business) -> Business:
        """Insert or replace a business and its integration settings."""
        created_at = business.created_at or utc_now()
        with self.connection() as conn:
            conn.execute(
                """INSERT INTO businesses (
                       id, name, sms_enabled, email_enabled, sms_template, email_template,
                       email_subject, default_delay_minutes, sms_delay_minutes,
                       email_delay_minutes, google_review_url, integrations, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       sms_enabled = excluded.sms_enabled,
                       email_enabled = excluded.email_enabled,
                       sms_template = excluded.sms_template,
                       email_template = excluded.email_template,
                       email_subject = excluded.email_subject,
                       default_delay_minutes = excluded.default_delay_minutes,
                       sms_delay_minutes = excluded.sms_delay_minutes,
                       email_delay_minutes = excluded.email_delay_minutes,
                       google_review_url = excluded.google_review_url,
                       integrations = excluded.integrations""",
                (
                    business.id,
                    business.name,
                    int(business.sms_enabled),
                    int(business.email_enabled),
                    business.sms_template,
                    business.email_template,
                    business.email_subject,
                    business.default_delay_minutes,
                    business.sms_delay_minutes,
                    business.email_delay_minutes,
                    business.google_review_url,
                    json.dumps([i.to_dict() for i in business.integrations]),
                    to_db_time(created_at),
                ),
            )
        business.created_at = created_at
        return business

    def get_business(self, business_id: str) -> Optional[Business]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM businesses WHERE id = ?", (business_id,)
            ).fetchone()
            return self._row_to_business(row) if row else None

    def get_businesses_with_integration(self, platform: str) -> List[Business]:
        """Businesses with an enabled integration for the given platform."""
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM businesses ORDER BY id").fetchall()
        result = []
        for row in rows:
            business = self._row_to_business(row)
            integration = business.get_integration(platform)
            if integration and integration.enabled:
                result.append(business)
        return result

    def _row_to_business(self, row: sqlite3.Row) -> Business:
        """Convert database row to Business object."""
        integrations = [
            IntegrationConfig.from_dict(item) for item in json.loads(row["integrations"] or "[]")
        ]
        return Business(
            id=row["id"],
            name=row["name"],
            sms_enabled=bool(row["sms_enabled"]),
            email_enabled=bool(row["email_enabled"]),
            sms_template=row["sms_template"],
            email_template=row["email_template"],
            email_subject=row["email_subject"],
            default_delay_minutes=row["default_delay_minutes"],
            sms_delay_minutes=row["sms_delay_minutes"],
            email_delay_minutes=row["email_delay_minutes"],
            google_review_url=row["google_review_url"],
            integrations=integrations,
            created_at=parse_datetime(row["created_at"]),
        )
