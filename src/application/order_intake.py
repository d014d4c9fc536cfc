"""
Order Intake - Entry Point for Completed Orders
===============================================

Every order source ends up here: the Dully webhook route and the EasyTable
poller both hand over (business_id, OrderData) and get a queue item back.
"""

import logging
from typing import Dict, Optional

from ..domain.errors import NotFoundError
from ..domain.models import Business, OrderData, QueuedOrder
from ..infrastructure.persistence import Database, OrderQueueStore

logger = logging.getLogger(__name__)

FALLBACK_DELAY_MINUTES = 60


class OrderIntake:
    """
    Usage:
        intake = OrderIntake(db, queue, {"dully": 60, "easytable": 120})
        item = intake.enqueue_order("b1", order)
    """

    def __init__(self, db: Database, queue: OrderQueueStore, platform_delays: Dict[str, int]):
        self._db = db
        self._queue = queue
        self._platform_delays = dict(platform_delays)

    def delay_for(self, business: Optional[Business], platform: str) -> int:
        """A delay set on the business wins over the platform default."""
        if business is not None and business.default_delay_minutes is not None:
            return business.default_delay_minutes
        return self._platform_delays.get(platform, FALLBACK_DELAY_MINUTES)

    def enqueue_order(self, business_id: str, order: OrderData) -> QueuedOrder:
        business = self._db.get_business(business_id)
        if business is None:
            raise NotFoundError("Business")
        delay = self.delay_for(business, order.platform)
        return self._queue.enqueue(business_id, order, delay)

    def cancel_order(self, business_id: str, order_id: str, platform: str) -> bool:
        return self._queue.cancel_pending(business_id, order_id, platform)
