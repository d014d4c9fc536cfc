# Application layer - use cases wired from infrastructure services
from .container import Container, build_container
from .notification_dispatcher import NotificationDispatcher
from .order_intake import OrderIntake
from .queue_processor import QueueProcessor
from .webhook_ingester import IngestResult, WebhookIngester

__all__ = [
    "Container",
    "build_container",
    "NotificationDispatcher",
    "OrderIntake",
    "QueueProcessor",
    "IngestResult",
    "WebhookIngester",
]
