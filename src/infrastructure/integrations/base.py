"""
Integration Adapter - Abstraction Layer for Order Sources
=========================================================

An adapter turns one platform's order or booking events into OrderData
and hands them to the registered order handlers.

ARCHITECTURAL DECISION:
- Adapters are synchronous; the poller runs them in a worker thread
- A failing handler is logged and the remaining handlers still run
- Webhook-driven adapters keep no per-business state, so one instance
  serves every business
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ...domain.models import IntegrationConfig, OrderData

logger = logging.getLogger(__name__)

OrderHandler = Callable[[OrderData], None]


class IntegrationError(Exception):
    """Adapter misconfiguration or a failed call to the platform."""
    pass


class IntegrationAdapter(ABC):
    """
    Abstract base class for order sources.
    Implement this interface to add new platforms.
    """

    name: str = ""

    def __init__(self):
        self._config: Optional[IntegrationConfig] = None
        self._connected = False
        self._handlers: List[OrderHandler] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def config(self) -> Optional[IntegrationConfig]:
        return self._config

    def connect(self, config: IntegrationConfig):
        if not config.enabled:
            raise IntegrationError(f"Integration {self.name} is not enabled")
        self._config = config
        self._connected = True
        logger.info(f"[{self.name}] Connected")

    def disconnect(self):
        self._config = None
        self._connected = False
        self._handlers = []
        logger.info(f"[{self.name}] Disconnected")

    def test_connection(self) -> bool:
        return self._connected and self._config is not None

    def on_order_complete(self, handler: OrderHandler):
        self._handlers.append(handler)
        logger.debug(f"[{self.name}] Order handler registered (total: {len(self._handlers)})")

    def notify_handlers(self, order: OrderData):
        for handler in self._handlers:
            try:
                handler(order)
            except Exception:
                logger.exception(f"[{self.name}] Handler error for order {order.order_id}")

    def _require_connected(self):
        if self._config is None or not self._connected:
            raise IntegrationError(f"{self.name} not connected")

    @abstractmethod
    def should_process(self, event) -> bool:
        """True when the platform event means the order is complete."""
        ...
