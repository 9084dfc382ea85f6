"""Services package."""

from src.services.notifications import (
    CollectingNotifier,
    LogNotifier,
    Notification,
    NotificationLevel,
    Notifier,
)
from src.services.storage import (
    AuthenticationRequired,
    ConnectionError,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)

__all__ = [
    # Notifications
    "CollectingNotifier",
    "LogNotifier",
    "Notification",
    "NotificationLevel",
    "Notifier",
    # Storage services
    "AuthenticationRequired",
    "ConnectionError",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStoreInterface",
    "StorageError",
]
