"""
Abstract Remote Store Interface

DESIGN DECISION: The remote store is an external collaborator reached
through this interface only. This allows us to:
1. Swap Google Sheets for a hosted database later
2. Use in-memory storage for testing
3. Keep the mutation pipeline decoupled from any backend

Rows are plain dictionaries keyed by "id" and carrying "owner_id".
Turning rows into typed entities is the caller's job.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.models.records import Collection


Row = dict[str, Any]


class RecordStoreInterface(ABC):
    """
    Abstract interface for owner-scoped record storage.

    Every method takes the caller's owner_id. A missing owner_id means
    there is no active session and must raise AuthenticationRequired.
    """

    @abstractmethod
    async def insert(
        self,
        collection: Collection,
        owner_id: Optional[str],
        values: Row,
    ) -> Row:
        """
        Insert a row and return the canonical stored row.

        The store assigns "id", "owner_id", "created_at" and "updated_at".

        Raises:
            AuthenticationRequired: No owner
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
        changes: Row,
    ) -> Row:
        """
        Apply changes to an existing row and return the stored row.

        Raises:
            AuthenticationRequired: No owner
            NotFoundError: Row doesn't exist for this owner
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> None:
        """
        Delete a row.

        Raises:
            AuthenticationRequired: No owner
            NotFoundError: Row doesn't exist for this owner
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> Optional[Row]:
        """Retrieve a row by id, None if absent."""
        pass

    @abstractmethod
    async def select(
        self,
        collection: Collection,
        owner_id: Optional[str],
        **filters: Any,
    ) -> list[Row]:
        """
        List the owner's rows, optionally filtered by field equality.

        Example: select(Collection.INVOICES, owner, status="pending")
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class AuthenticationRequired(StorageError):
    """No active session; the store refuses owner-less calls."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def require_owner(owner_id: Optional[str]) -> str:
    """Return owner_id or raise AuthenticationRequired."""
    if not owner_id:
        raise AuthenticationRequired("No active session: sign in to continue")
    return owner_id
