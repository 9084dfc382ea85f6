"""
In-Memory Remote Store

Used by tests and by sessions that run without a configured backend.
Behaves like the hosted store: it stamps ids and timestamps, scopes every
row to its owner and suspends at each call.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from src.models.records import Collection
from src.services.storage.interface import (
    NotFoundError,
    RecordStoreInterface,
    Row,
    require_owner,
)


def _matches(row: Row, filters: dict[str, Any]) -> bool:
    for field, expected in filters.items():
        value = row.get(field)
        if hasattr(expected, "value"):
            expected = expected.value
        if str(value) != str(expected):
            return False
    return True


class InMemoryRecordStore(RecordStoreInterface):
    """
    Dictionary-backed store.

    Rows are kept per collection in insertion order and always handed out
    as copies, so callers can never mutate stored state.
    """

    def __init__(self, latency: float = 0.0):
        self._latency = latency
        self._rows: dict[Collection, dict[str, Row]] = {
            collection: {} for collection in Collection
        }

    async def _suspend(self) -> None:
        await asyncio.sleep(self._latency)

    def _owned(self, collection: Collection, owner_id: str, row_id: str) -> Row:
        row = self._rows[collection].get(row_id)
        if row is None or row.get("owner_id") != owner_id:
            raise NotFoundError(f"{collection.value} row not found: {row_id}")
        return row

    async def insert(
        self,
        collection: Collection,
        owner_id: Optional[str],
        values: Row,
    ) -> Row:
        owner = require_owner(owner_id)
        await self._suspend()

        now = datetime.now(timezone.utc).isoformat()
        row = copy.deepcopy(values)
        row.update({
            "id": str(uuid4()),
            "owner_id": owner,
            "created_at": now,
            "updated_at": now,
        })
        self._rows[collection][row["id"]] = row
        return copy.deepcopy(row)

    async def update(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
        changes: Row,
    ) -> Row:
        owner = require_owner(owner_id)
        await self._suspend()

        row = self._owned(collection, owner, row_id)
        row.update(copy.deepcopy(changes))
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        return copy.deepcopy(row)

    async def delete(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> None:
        owner = require_owner(owner_id)
        await self._suspend()

        self._owned(collection, owner, row_id)
        del self._rows[collection][row_id]

    async def get(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> Optional[Row]:
        owner = require_owner(owner_id)
        await self._suspend()

        try:
            return copy.deepcopy(self._owned(collection, owner, row_id))
        except NotFoundError:
            return None

    async def select(
        self,
        collection: Collection,
        owner_id: Optional[str],
        **filters: Any,
    ) -> list[Row]:
        owner = require_owner(owner_id)
        await self._suspend()

        return [
            copy.deepcopy(row)
            for row in self._rows[collection].values()
            if row.get("owner_id") == owner and _matches(row, filters)
        ]
