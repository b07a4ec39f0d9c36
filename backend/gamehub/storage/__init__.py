"""Chat persistence and notification storage."""
from .schemas import MessageUser, Notification, NotificationCreate, StoredMessage
from .service import ChatStore, get_store

__all__ = [
    "ChatStore",
    "MessageUser",
    "Notification",
    "NotificationCreate",
    "StoredMessage",
    "get_store",
]
