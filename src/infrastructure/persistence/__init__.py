from .database import Database, to_db_time
from .notifications import NotificationStore
from .order_queue import OrderQueueStore

__all__ = ["Database", "NotificationStore", "OrderQueueStore", "to_db_time"]
