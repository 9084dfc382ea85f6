"""
Domain Event Bus

Confirmed writes are announced as domain events ("income_created",
"invoice_updated", ...). Side effects subscribe to events instead of
living inside the write's success path.

A failing subscriber is logged and skipped; it never affects the write
that produced the event or the other subscribers.
"""

import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.models.records import Collection, StoredRecord

logger = structlog.get_logger(__name__)

_SINGULAR = {
    Collection.INCOMES: "income",
    Collection.EXPENSES: "expense",
    Collection.CLIENTS: "client",
    Collection.INVOICES: "invoice",
}


def event_name(collection: Collection, action: str) -> str:
    """event_name(Collection.INCOMES, "create") == "income_created"."""
    return f"{_SINGULAR[collection]}_{action}d"


INCOME_CREATED = event_name(Collection.INCOMES, "create")
INVOICE_CREATED = event_name(Collection.INVOICES, "create")
INVOICE_UPDATED = event_name(Collection.INVOICES, "update")


class DomainEvent(BaseModel):
    """A confirmed change to one entity."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    collection: Collection
    entity_id: str
    entity: Optional[StoredRecord] = None
    correlation_id: Optional[UUID] = None
    occurred_at: datetime = Field(default_factory=datetime.now)


Handler = Callable[[DomainEvent], Union[Any, Awaitable[Any]]]


class EventBus:
    """Name-keyed publish/subscribe with sync or async handlers."""

    def __init__(self):
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._subscribers.get(name, []):
            self._subscribers[name].remove(handler)

    def subscribers(self, name: str) -> list[Handler]:
        return list(self._subscribers.get(name, []))

    async def publish(self, event: DomainEvent) -> list[Any]:
        """Deliver an event to every subscriber in subscription order."""
        results = []
        for handler in self.subscribers(event.name):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    event=event.name,
                    entity_id=event.entity_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )
        return results
