"""
Local Projection

The client-side copy of every collection. Screens read from here, the
mutation coordinator writes optimistic state here, and refreshes replace
a collection wholesale with what the remote store returns.

Besides the four collections the projection tracks staleness of derived
keys ("dashboard_stats", "calendar") so dependents know when to recompute.
"""

import asyncio
from typing import Callable, Iterable, Optional

import structlog

from src.engine.aggregation import coerce_records
from src.models.records import ENTITY_MODELS, Collection, StoredRecord
from src.services.storage.interface import RecordStoreInterface

logger = structlog.get_logger(__name__)

DASHBOARD_STATS = "dashboard_stats"
CALENDAR = "calendar"

ChangeListener = Callable[[Collection, tuple[StoredRecord, ...]], None]


def _key(name) -> str:
    return name.value if isinstance(name, Collection) else str(name)


class LocalProjection:
    """
    Per-collection state with cancellable refreshes.

    Collections are stored as tuples and only ever replaced, never edited
    in place, so a snapshot is simply the tuple held at that moment.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        owner_provider: Callable[[], Optional[str]],
    ):
        self._store = store
        self._owner_provider = owner_provider
        self._items: dict[Collection, tuple[StoredRecord, ...]] = {
            collection: () for collection in Collection
        }
        self._stale: set[str] = set()
        self._refresh_tasks: dict[Collection, asyncio.Task] = {}
        self._listeners: dict[Collection, list[ChangeListener]] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def items(self, collection: Collection) -> tuple[StoredRecord, ...]:
        return self._items[collection]

    def snapshot(self, collection: Collection) -> tuple[StoredRecord, ...]:
        """The collection exactly as it is now."""
        return self._items[collection]

    def find(self, collection: Collection, entity_id: str) -> Optional[StoredRecord]:
        return next((e for e in self._items[collection] if e.id == entity_id), None)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def replace(self, collection: Collection, items: Iterable[StoredRecord]) -> None:
        """Swap the whole collection and tell listeners."""
        self._items[collection] = tuple(items)
        for listener in list(self._listeners.get(collection, [])):
            try:
                listener(collection, self._items[collection])
            except Exception as e:
                logger.error(
                    "projection_listener_failed",
                    collection=collection.value,
                    error=str(e),
                )

    def upsert(self, collection: Collection, entity: StoredRecord) -> None:
        """Put a canonical entity in place of the one with the same id (or first)."""
        current = self._items[collection]
        if any(e.id == entity.id for e in current):
            self.replace(collection, (entity if e.id == entity.id else e for e in current))
        else:
            self.replace(collection, (entity, *current))

    def on_change(self, collection: Collection, listener: ChangeListener) -> None:
        self._listeners.setdefault(collection, []).append(listener)

    def remove_listener(self, collection: Collection, listener: ChangeListener) -> None:
        if listener in self._listeners.get(collection, []):
            self._listeners[collection].remove(listener)

    # -------------------------------------------------------------------------
    # Staleness
    # -------------------------------------------------------------------------

    def invalidate(self, *keys) -> None:
        """Mark collections and/or derived keys for refresh."""
        self._stale.update(_key(k) for k in keys)

    def is_stale(self, key) -> bool:
        return _key(key) in self._stale

    def mark_fresh(self, key) -> None:
        self._stale.discard(_key(key))

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh(self, collection: Collection) -> tuple[StoredRecord, ...]:
        """
        Reload a collection from the remote store.

        Raises whatever the store raises (e.g. AuthenticationRequired);
        local state is left untouched in that case.
        """
        rows = await self._store.select(collection, self._owner_provider())
        entities = coerce_records(rows, ENTITY_MODELS[collection])
        self.mark_fresh(collection)
        self.replace(collection, entities)
        return self._items[collection]

    def schedule_refresh(self, collection: Collection) -> asyncio.Task:
        """Start a background refresh, reusing one already running."""
        task = self._refresh_tasks.get(collection)
        if task is not None and not task.done():
            return task

        task = asyncio.get_running_loop().create_task(self._refresh_quietly(collection))
        self._refresh_tasks[collection] = task
        return task

    async def _refresh_quietly(self, collection: Collection) -> None:
        try:
            await self.refresh(collection)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("refresh_failed", collection=collection.value, error=str(e))

    def cancel_refresh(self, collection: Collection) -> bool:
        """
        Stop waiting for an in-flight refresh.

        The remote read itself may still complete; its result is discarded.
        """
        task = self._refresh_tasks.pop(collection, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def wait_for_refreshes(self) -> None:
        tasks = [t for t in self._refresh_tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for collection in list(self._refresh_tasks):
            self.cancel_refresh(collection)
        await self.wait_for_refreshes()
