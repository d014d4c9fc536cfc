"""
Queue Processor - Turns Due Orders into Notifications
=====================================================

ARCHITECTURAL DECISION:
- One asyncio task ticks every interval_seconds; a tick that finds the
  previous one still running returns immediately
- Due items are handled in batches: items inside a batch run concurrently
  (each in a worker thread, since store I/O is blocking sqlite), batches run
  one after another
- A failing item is marked failed and the tick moves on; nothing an item
  does can stop the loop
- The notification id is generated before the insert, so the signed link
  inside the message already points at the row that is about to exist
"""

import asyncio
import logging
import time
import uuid
from typing import List, Optional

from ..domain.errors import NotFoundError
from ..domain.models import (
    Business,
    Notification,
    NotificationStatus,
    NotificationType,
    OrderData,
    QueuedOrder,
)
from ..domain.phone import normalize_phone
from ..domain.templates import TemplateService
from ..infrastructure.config.settings import QueueSettings
from ..infrastructure.links import ReviewCustomer, ReviewTokenPayload, SignedLinkService
from ..infrastructure.persistence import Database, NotificationStore, OrderQueueStore

logger = logging.getLogger(__name__)


class QueueProcessor:
    """
    Usage:
        processor = QueueProcessor(db, queue, notifications, templates, links, settings.queue)
        processor.start()
        ...
        await processor.stop()
    """

    def __init__(
        self,
        db: Database,
        queue: OrderQueueStore,
        notifications: NotificationStore,
        templates: TemplateService,
        links: SignedLinkService,
        settings: QueueSettings,
        country_code: str = "45",
    ):
        self._db = db
        self._queue = queue
        self._notifications = notifications
        self._templates = templates
        self._links = links
        self._settings = settings
        self._country_code = country_code

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._last_sweep: Optional[float] = None
        self.is_running = False
        self.is_processing = False

    # ── Lifecycle ──────────────────────────────────────────────────

    def start(self):
        if self.is_running:
            logger.info("Queue processor already running")
            return
        self.is_running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Starting queue processor ({self._settings.interval_seconds}s interval)")
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if not self.is_running:
            return
        logger.info("Stopping queue processor")
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        self.is_running = False

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                await self.process_queue()
                await self._maybe_sweep()
            except Exception:
                logger.exception("Queue processing tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._settings.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def get_status(self) -> dict:
        return {"is_running": self.is_running, "is_processing": self.is_processing}

    # ── Tick ───────────────────────────────────────────────────────

    async def process_queue(self) -> int:
        """
        One tick. Returns the number of items handled.
        Storage errors while loading due items propagate to the caller.
        """
        if self.is_processing:
            logger.debug("Queue processor busy, skipping tick")
            return 0

        self.is_processing = True
        try:
            await asyncio.to_thread(
                self._queue.reclaim_stale,
                self._settings.stale_after_minutes,
                self._settings.max_attempts,
            )
            due = await asyncio.to_thread(self._queue.get_due_orders)
            if not due:
                return 0

            logger.info(f"Processing {len(due)} due orders")
            size = max(1, self._settings.batch_size)
            for start in range(0, len(due), size):
                batch = due[start:start + size]
                await asyncio.gather(*(self.process_item(item) for item in batch))
            return len(due)
        finally:
            self.is_processing = False

    async def process_item(self, item: QueuedOrder):
        await asyncio.to_thread(self._process_item, item)

    def _process_item(self, item: QueuedOrder):
        try:
            claimed = self._queue.mark_processing(item.id)
        except NotFoundError:
            logger.warning(f"Queue item {item.id} disappeared before it could be claimed")
            return
        if claimed is None:
            logger.debug(f"Queue item {item.id} already claimed, skipping")
            return

        order = claimed.order_data
        try:
            business = self._db.get_business(claimed.business_id)
            if business is None:
                self._queue.mark_failed(claimed.id, "Business not found")
                return

            if not order.has_contact:
                logger.warning(f"Order {order.order_id} has no customer contact info, skipping")
                self._queue.mark_completed(claimed.id)
                return

            channels = self.eligible_channels(business, order)
            if not channels:
                logger.warning(f"No notification channel available for order {order.order_id}")
                self._queue.mark_completed(claimed.id)
                return

            for channel in channels:
                notification = self.build_notification(business, order, channel, claimed.id)
                self._notifications.create(notification)
                logger.info(f"Created {channel.value} notification for order {order.order_id}")

            self._queue.mark_completed(claimed.id)
        except Exception as e:
            logger.exception(f"Failed to process order {order.order_id}")
            self._queue.mark_failed(claimed.id, str(e) or e.__class__.__name__)

    def eligible_channels(self, business: Business, order: OrderData) -> List[NotificationType]:
        channels = []
        if business.sms_enabled and order.customer_phone:
            channels.append(NotificationType.SMS)
        if business.email_enabled and order.customer_email:
            channels.append(NotificationType.EMAIL)
        return channels

    def build_notification(
        self,
        business: Business,
        order: OrderData,
        channel: NotificationType,
        queue_id: Optional[int] = None,
        source_platform: Optional[str] = None,
    ) -> Notification:
        """Review request for one channel, with its signed link already embedded."""
        notification_id = uuid.uuid4().hex
        review_link = self._links.build_link(
            ReviewTokenPayload(
                business_id=business.id,
                customer=ReviewCustomer(
                    email=order.customer_email,
                    phone=order.customer_phone,
                    name=order.customer_name,
                ),
                order_id=order.order_id,
                source_platform=source_platform or order.platform,
                notification_id=notification_id,
            )
        )
        variables = {
            "customerName": order.customer_name,
            "businessName": business.name,
            "reviewLink": review_link,
        }
        metadata = {"platform": order.platform}
        if queue_id is not None:
            metadata["queue_id"] = queue_id

        if channel == NotificationType.SMS:
            return Notification(
                id=notification_id,
                business_id=business.id,
                type=channel,
                status=NotificationStatus.PENDING,
                recipient=normalize_phone(order.customer_phone, self._country_code),
                content=self._templates.render_sms_review_request(variables, business.sms_template),
                review_link=review_link,
                order_id=order.order_id,
                metadata=metadata,
            )

        email = self._templates.render_email_review_request(
            variables, business.email_template, business.email_subject
        )
        return Notification(
            id=notification_id,
            business_id=business.id,
            type=channel,
            status=NotificationStatus.PENDING,
            recipient=order.customer_email,
            subject=email["subject"],
            content=email["body"],
            review_link=review_link,
            order_id=order.order_id,
            metadata=metadata,
        )

    # ── Retention ──────────────────────────────────────────────────

    async def _maybe_sweep(self):
        now = time.monotonic()
        interval = self._settings.retention_sweep_hours * 3600
        if self._last_sweep is not None and now - self._last_sweep < interval:
            return
        self._last_sweep = now
        await asyncio.to_thread(self._queue.delete_old_completed, self._settings.retention_days)
