"""
Shared fixtures.

No test talks to Google Sheets: sessions run on the in-memory store, and
FlakyStore lets a test hold or fail individual store calls.
"""

import asyncio
from typing import Optional

import pytest

from src.audit import AuditLogger
from src.config import EngineSettings
from src.models.records import Collection
from src.orchestrator import FinanceSession, UserIdentity
from src.services.notifications import CollectingNotifier
from src.services.storage import InMemoryRecordStore, StorageError


OWNER = "user-1"


class FlakyStore(InMemoryRecordStore):
    """
    In-memory store whose writes can be held back or made to fail.

    - fail_next("insert") makes the next insert raise StorageError
    - fail_next("insert", when={"description": "B"}, delay=0.05) fails only
      the insert carrying those values, after the delay
    - hold() makes every write wait until release() is called
    """

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, Collection]] = []
        self._failures: list[tuple[str, Optional[Collection], Exception, dict, float]] = []
        self._gate: Optional[asyncio.Event] = None

    def fail_next(
        self,
        action: str,
        collection: Optional[Collection] = None,
        error: Optional[Exception] = None,
        when: Optional[dict] = None,
        delay: float = 0.0,
    ) -> None:
        self._failures.append((
            action,
            collection,
            error or StorageError("remote store unavailable"),
            when or {},
            delay,
        ))

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    async def _write(self, action: str, collection: Collection, values: Optional[dict] = None) -> None:
        self.calls.append((action, collection))
        if self._gate is not None:
            await self._gate.wait()
        values = values or {}
        for index, (failing, scope, error, when, delay) in enumerate(self._failures):
            matches = all(values.get(k) == v for k, v in when.items())
            if failing == action and scope in (None, collection) and matches:
                del self._failures[index]
                await asyncio.sleep(delay)
                raise error

    async def insert(self, collection, owner_id, values):
        await self._write("insert", collection, values)
        return await super().insert(collection, owner_id, values)

    async def update(self, collection, owner_id, row_id, changes):
        await self._write("update", collection, changes)
        return await super().update(collection, owner_id, row_id, changes)

    async def delete(self, collection, owner_id, row_id):
        await self._write("delete", collection)
        return await super().delete(collection, owner_id, row_id)


@pytest.fixture
def engine_settings():
    return EngineSettings()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def session(store, notifier, audit_logger, engine_settings):
    return FinanceSession(
        store,
        user=UserIdentity(user_id=OWNER, email="owner@example.com"),
        notifier=notifier,
        audit_logger=audit_logger,
        settings=engine_settings,
    )


@pytest.fixture
def seed(store):
    """Insert a row straight into the store, bypassing the session and any failure hooks."""

    async def _seed(collection: Collection, **values) -> dict:
        return await InMemoryRecordStore.insert(store, collection, OWNER, values)

    return _seed
