"""
Mutation Coordinator

DESIGN DECISION: Every user write goes through one pipeline per
collection:

1. VALIDATE: the payload is checked before anything changes
2. OPTIMISTIC: local state is updated immediately and a handle returned
3. REMOTE: the store call runs as a background task
4. SETTLE: success reconciles the canonical row, failure restores the
   exact pre-write snapshot and tells the user once
5. ANNOUNCE: confirmed writes are published as domain events

IMPORTANT: Awaiting a PendingMutation never raises a remote failure.
The failure is reported in the MutationOutcome; only problems detected
before the network call (validation, missing session, unknown id) are
raised from submit().
"""

import asyncio
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Literal, Optional, Union
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, Field, TypeAdapter

from src.audit import AuditLogger, create_correlation_id
from src.models.audit import AuditEventBuilder
from src.models.records import ENTITY_MODELS, Collection, StoredRecord
from src.services.notifications import Notification, NotificationLevel, Notifier
from src.services.storage.interface import (
    NotFoundError,
    RecordStoreInterface,
    require_owner,
)
from src.sync.events import DomainEvent, EventBus, event_name
from src.sync.projection import LocalProjection
from src.validation import validate_create, validate_update

logger = structlog.get_logger(__name__)

TEMP_ID_PREFIX = "temp-"


# =============================================================================
# INTENTS
# =============================================================================

class CreateIntent(BaseModel):
    action: Literal["create"] = "create"
    payload: Any


class UpdateIntent(BaseModel):
    action: Literal["update"] = "update"
    id: str
    changes: dict[str, Any]
    automatic: bool = False


class DeleteIntent(BaseModel):
    action: Literal["delete"] = "delete"
    id: str


MutationIntent = Annotated[
    Union[CreateIntent, UpdateIntent, DeleteIntent],
    Field(discriminator="action"),
]

_intent_adapter = TypeAdapter(MutationIntent)


def parse_intent(intent: Any) -> Union[CreateIntent, UpdateIntent, DeleteIntent]:
    """Accept an intent model or its dict form ({"action": "update", ...})."""
    if isinstance(intent, (CreateIntent, UpdateIntent, DeleteIntent)):
        return intent
    return _intent_adapter.validate_python(intent)


def is_temporary_id(entity_id: str) -> bool:
    return entity_id.startswith(TEMP_ID_PREFIX)


# =============================================================================
# OUTCOMES
# =============================================================================

class RemoteWriteFailed(Exception):
    """The remote store rejected or never acknowledged a write."""

    def __init__(self, collection: Collection, action: str, entity_id: str, cause: Exception):
        self.collection = collection
        self.action = action
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(f"{action} on {collection.value} ({entity_id}) failed: {cause}")


@dataclass
class MutationOutcome:
    """How a submitted write settled."""

    collection: Collection
    action: str
    entity_id: str
    correlation_id: UUID
    entity: Optional[StoredRecord] = None
    error: Optional[RemoteWriteFailed] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PendingMutation:
    """
    Handle returned by submit().

    `entity_id` is the temporary id for creates and the real id otherwise.
    Await the handle to get the MutationOutcome.
    """

    def __init__(self, task: asyncio.Task, entity_id: str, correlation_id: UUID):
        self._task = task
        self.entity_id = entity_id
        self.correlation_id = correlation_id

    def done(self) -> bool:
        return self._task.done()

    def __await__(self):
        return self._task.__await__()


# =============================================================================
# COORDINATOR
# =============================================================================

class MutationCoordinator:
    """
    Optimistic write pipeline for one collection.

    Several mutations may be in flight at once. Each one restores its own
    snapshot on failure, keeping the writes that confirmed meanwhile; the
    collection is refreshed from the store once the last in-flight
    mutation settles, whatever its outcome.
    """

    def __init__(
        self,
        collection: Collection,
        store: RecordStoreInterface,
        projection: LocalProjection,
        owner_provider: Callable[[], Optional[str]],
        event_bus: Optional[EventBus] = None,
        audit_logger: Optional[AuditLogger] = None,
        notifier: Optional[Notifier] = None,
        dependents: tuple[str, ...] = (),
        auto_refresh: bool = True,
    ):
        self.collection = collection
        self._store = store
        self._projection = projection
        self._owner_provider = owner_provider
        self._events = event_bus or EventBus()
        self._audit = audit_logger or AuditLogger()
        self._notifier = notifier
        self._dependents = dependents
        self._auto_refresh = auto_refresh
        self._model = ENTITY_MODELS[collection]
        self._in_flight: set[asyncio.Task] = set()
        # Settled writes by projection id while others are still in flight
        self._confirmed: dict[str, Optional[StoredRecord]] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def submit(self, intent: Any) -> PendingMutation:
        """
        Apply an intent optimistically and start the remote write.

        Raises:
            ValidationFailed: The payload or transition is invalid
            AuthenticationRequired: No active session
            NotFoundError: Update/delete targets an id not held locally
        """
        intent = parse_intent(intent)
        owner_id = require_owner(self._owner_provider())
        correlation_id = create_correlation_id()

        if isinstance(intent, CreateIntent):
            draft = validate_create(self.collection, intent.payload)
            entity_id = f"{TEMP_ID_PREFIX}{uuid4()}"
            optimistic = self._model.model_validate({
                **draft.model_dump(),
                "id": entity_id,
                "owner_id": owner_id,
            })
            values = draft.model_dump(mode="json")
        else:
            current = self._current(intent.id)
            entity_id = intent.id
            if isinstance(intent, UpdateIntent):
                optimistic = validate_update(
                    self.collection, current, intent.changes, automatic=intent.automatic
                )
                dumped = optimistic.model_dump(mode="json")
                values = {field: dumped[field] for field in intent.changes}
            else:
                optimistic = None
                values = {}

        self._projection.cancel_refresh(self.collection)
        before = self._projection.snapshot(self.collection)
        self._projection.replace(self.collection, self._apply(before, intent.action, entity_id, optimistic))

        self._audit.log(AuditEventBuilder.mutation_submitted(
            self.collection.value, intent.action, entity_id, correlation_id
        ))

        task = asyncio.get_running_loop().create_task(
            self._settle(intent.action, entity_id, owner_id, values, before, correlation_id)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return PendingMutation(task, entity_id, correlation_id)

    async def drain(self) -> None:
        """Wait for every in-flight mutation to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _others_in_flight(self) -> bool:
        current = asyncio.current_task()
        return any(task is not current and not task.done() for task in self._in_flight)

    def _current(self, entity_id: str) -> StoredRecord:
        if is_temporary_id(entity_id):
            raise NotFoundError(f"{self.collection.value} record is still being saved: {entity_id}")
        current = self._projection.find(self.collection, entity_id)
        if current is None:
            raise NotFoundError(f"{self.collection.value} record not found: {entity_id}")
        return current

    @staticmethod
    def _apply(
        items: tuple[StoredRecord, ...],
        action: str,
        entity_id: str,
        entity: Optional[StoredRecord],
    ) -> tuple[StoredRecord, ...]:
        if action == "create":
            return (entity, *items)
        if action == "update":
            return tuple(entity if e.id == entity_id else e for e in items)
        return tuple(e for e in items if e.id != entity_id)

    async def _remote(self, action: str, entity_id: str, owner_id: str, values: dict) -> Optional[StoredRecord]:
        if action == "create":
            row = await self._store.insert(self.collection, owner_id, values)
        elif action == "update":
            row = await self._store.update(self.collection, owner_id, entity_id, values)
        else:
            await self._store.delete(self.collection, owner_id, entity_id)
            return None
        return self._model.model_validate(row)

    async def _settle(
        self,
        action: str,
        entity_id: str,
        owner_id: str,
        values: dict,
        before: tuple[StoredRecord, ...],
        correlation_id: UUID,
    ) -> MutationOutcome:
        outcome = MutationOutcome(
            collection=self.collection,
            action=action,
            entity_id=entity_id,
            correlation_id=correlation_id,
        )
        try:
            try:
                canonical = await self._remote(action, entity_id, owner_id, values)
            except Exception as e:
                outcome.error = RemoteWriteFailed(self.collection, action, entity_id, e)
                self._rollback(before, outcome)
            else:
                outcome.entity = canonical
                self._confirmed[entity_id] = canonical
                self._reconcile(action, entity_id, canonical)
                self._audit.log(AuditEventBuilder.mutation_confirmed(
                    self.collection.value, action, canonical.id if canonical else entity_id, correlation_id
                ))
        finally:
            self._projection.invalidate(self.collection, *self._dependents)

        if not self._others_in_flight():
            self._confirmed.clear()
            if self._auto_refresh:
                self._projection.schedule_refresh(self.collection)

        if not outcome.succeeded:
            return outcome

        await self._events.publish(DomainEvent(
            name=event_name(self.collection, action),
            collection=self.collection,
            entity_id=canonical.id if canonical else entity_id,
            entity=canonical,
            correlation_id=correlation_id,
        ))
        return outcome

    def _reconcile(self, action: str, entity_id: str, canonical: Optional[StoredRecord]) -> None:
        items = self._projection.items(self.collection)
        if action == "delete":
            if any(e.id == entity_id for e in items):
                self._projection.replace(self.collection, (e for e in items if e.id != entity_id))
            return

        if any(e.id == entity_id for e in items):
            self._projection.replace(
                self.collection,
                (canonical if e.id == entity_id else e for e in items),
            )
        elif action == "create":
            # The temp entry was dropped by another mutation's rollback
            self._projection.replace(self.collection, (canonical, *items))

    def _restorable(self, before: tuple[StoredRecord, ...]) -> tuple[StoredRecord, ...]:
        """
        The snapshot with writes that confirmed since it was taken kept.

        Confirmed creates replace their temp entry (or are put back first
        when the snapshot predates them), confirmed updates keep their
        canonical row and confirmed deletes stay deleted.
        """
        if not self._confirmed:
            return before
        items = [self._confirmed.get(e.id, e) for e in before]
        items = [e for e in items if e is not None]
        present = {e.id for e in items}
        created = [
            entity for key, entity in self._confirmed.items()
            if is_temporary_id(key) and entity is not None and entity.id not in present
        ]
        return (*created, *items)

    def _rollback(self, before: tuple[StoredRecord, ...], outcome: MutationOutcome) -> None:
        self._projection.replace(self.collection, self._restorable(before))
        error = outcome.error
        self._audit.log(AuditEventBuilder.mutation_rolled_back(
            self.collection.value,
            outcome.action,
            outcome.entity_id,
            str(error.cause),
            outcome.correlation_id,
        ))
        logger.warning(
            "mutation_rolled_back",
            collection=self.collection.value,
            action=outcome.action,
            entity_id=outcome.entity_id,
            error=str(error.cause),
        )
        if self._notifier is not None:
            self._notifier.notify(Notification(
                title=f"Could not {outcome.action} {self.collection.value[:-1]}",
                message=str(error.cause),
                level=NotificationLevel.ERROR,
            ))
