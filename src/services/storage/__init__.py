"""
Storage Services Package

Provides the abstract remote store interface and its implementations.
The in-memory store backs tests and credential-less sessions; Google Sheets
is the persistent backend.
"""

from src.services.storage.interface import (
    AuthenticationRequired,
    ConnectionError,
    NotFoundError,
    RecordStoreInterface,
    Row,
    StorageError,
    require_owner,
)
from src.services.storage.memory import InMemoryRecordStore
from src.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
)

__all__ = [
    # Interface
    "RecordStoreInterface",
    "Row",
    "require_owner",
    # Exceptions
    "AuthenticationRequired",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryRecordStore",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
]
