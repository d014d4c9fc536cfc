from .base import IntegrationAdapter, IntegrationError, OrderHandler
from .dully import DullyAdapter, DullyWebhookPayload
from .easytable import EasyTableAdapter, EasyTableClient, EasyTablePoller
from .registry import IntegrationRegistry

__all__ = [
    "IntegrationAdapter",
    "IntegrationError",
    "OrderHandler",
    "DullyAdapter",
    "DullyWebhookPayload",
    "EasyTableAdapter",
    "EasyTableClient",
    "EasyTablePoller",
    "IntegrationRegistry",
]
