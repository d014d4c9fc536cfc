"""
Notification Dispatcher - Sends Pending Notifications
=====================================================

Picks pending notifications (never tried, or whose retry time has come),
sends them through the active provider for their channel and records the
vendor's message id, which delivery webhooks later refer to.

RETRIES:
- Network errors, 429 and 5xx are already retried inside the provider's
  HTTP layer; what reaches this module is a failed send
- A failed send is retried after 60s, 120s, 240s; after max_retries the
  notification becomes failed with the last error
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from ..domain.models import Notification, NotificationStatus, NotificationType, utc_now
from ..domain.phone import mask_phone
from ..infrastructure.config.settings import DispatcherSettings
from ..infrastructure.messaging import Message, ProviderFactory, ProviderNotConfiguredError
from ..infrastructure.persistence import Database, NotificationStore

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(db, notifications, providers, settings.dispatcher)
        dispatcher.start()
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        db: Database,
        notifications: NotificationStore,
        providers: ProviderFactory,
        settings: DispatcherSettings,
    ):
        self._db = db
        self._notifications = notifications
        self._providers = providers
        self._settings = settings

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.is_running = False
        self.is_processing = False

    def start(self):
        if self.is_running:
            logger.info("Notification dispatcher already running")
            return
        self.is_running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Starting notification dispatcher ({self._settings.interval_seconds}s interval)")
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if not self.is_running:
            return
        logger.info("Stopping notification dispatcher")
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        self.is_running = False

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                await self.dispatch_pending()
            except Exception:
                logger.exception("Notification dispatch tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._settings.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def get_status(self) -> dict:
        return {"is_running": self.is_running, "is_processing": self.is_processing}

    async def dispatch_pending(self) -> int:
        if self.is_processing:
            return 0

        self.is_processing = True
        try:
            pending = await asyncio.to_thread(
                self._notifications.get_pending_for_dispatch, self._settings.batch_size
            )
            if not pending:
                return 0
            logger.info(f"Dispatching {len(pending)} notifications")
            for notification in pending:
                try:
                    await self.dispatch(notification)
                except Exception as e:
                    logger.exception(f"Dispatch of notification {notification.id} failed")
                    await asyncio.to_thread(
                        self._handle_failure, notification, str(e) or type(e).__name__
                    )
            return len(pending)
        finally:
            self.is_processing = False

    async def dispatch(self, notification: Notification):
        try:
            provider = self._providers.for_channel(notification.type)
        except ProviderNotConfiguredError as e:
            logger.warning(f"Cannot send notification {notification.id}: {e}")
            await asyncio.to_thread(self._handle_failure, notification, str(e))
            return

        business = await asyncio.to_thread(self._db.get_business, notification.business_id)
        message = Message(
            to=notification.recipient,
            content=notification.content,
            subject=notification.subject,
            sender_name=business.name if business else None,
        )

        recipient = (
            mask_phone(notification.recipient)
            if notification.type == NotificationType.SMS
            else notification.recipient
        )
        logger.info(f"Sending {notification.type.value} {notification.id} to {recipient} via {provider.name}")

        result = await provider.send(message)
        if result.success:
            await asyncio.to_thread(
                self._notifications.update_status,
                notification.id,
                NotificationStatus.SENT,
                None,
                result.message_id,
            )
            logger.info(f"Sent {notification.id} (external: {result.message_id})")
        else:
            logger.error(f"Send failed for {notification.id}: {result.error}")
            await asyncio.to_thread(self._handle_failure, notification, result.error or "Unknown error")

    def _handle_failure(self, notification: Notification, error: str):
        retries = notification.retry_count
        if retries >= self._settings.max_retries:
            self._notifications.update_status(
                notification.id,
                NotificationStatus.FAILED,
                error_message=f"Max retries exceeded. Last error: {error}",
            )
            logger.warning(f"Notification {notification.id} failed after {retries} retries")
            return

        delays = self._settings.retry_delays_seconds
        delay = delays[min(retries, len(delays) - 1)]
        retry_at = utc_now() + timedelta(seconds=delay)
        self._notifications.schedule_retry(notification.id, retries + 1, retry_at, error)
        logger.info(
            f"Notification {notification.id} retry {retries + 1}/{self._settings.max_retries} "
            f"scheduled in {delay}s"
        )
