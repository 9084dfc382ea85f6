"""
Tests for the optimistic write pipeline.

Covers optimistic visibility, reconciliation to a single canonical record,
exact rollback on remote failure and the checks made before any network
call.
"""

import pytest
from decimal import Decimal

from src.models.records import Collection, InvoiceStatus
from src.services.notifications import NotificationLevel
from src.services.storage import AuthenticationRequired, NotFoundError
from src.sync import (
    CALENDAR,
    DASHBOARD_STATS,
    CreateIntent,
    EventBus,
    LocalProjection,
    MutationCoordinator,
    RemoteWriteFailed,
    is_temporary_id,
)
from src.validation import ValidationFailed


def expense(description="Lunch", amount="12.50", day="2024-03-05"):
    return {"amount": amount, "description": description, "date": day}


class TestOptimisticCreate:
    """Creates show up at once and settle to the canonical row."""

    @pytest.mark.asyncio
    async def test_create_is_visible_before_confirmation(self, session, store):
        """The temp record is placed first while the store is still working."""
        store.hold()
        pending = session.create(Collection.EXPENSES, expense())

        items = session.projection.items(Collection.EXPENSES)
        assert len(items) == 1
        assert items[0].id == pending.entity_id
        assert is_temporary_id(pending.entity_id)
        assert not pending.done()

        store.release()
        outcome = await pending
        assert outcome.succeeded

    @pytest.mark.asyncio
    async def test_confirmation_leaves_one_canonical_record(self, session):
        """No duplicate and no leftover temp record after success."""
        outcome = await session.create(Collection.EXPENSES, expense())
        await session.projection.wait_for_refreshes()

        items = session.projection.items(Collection.EXPENSES)
        assert len(items) == 1
        assert items[0].id == outcome.entity.id
        assert not is_temporary_id(items[0].id)
        assert items[0].amount == Decimal("12.50")

    @pytest.mark.asyncio
    async def test_success_publishes_domain_event(self, session):
        received = []
        session.events.subscribe("expense_created", received.append)

        outcome = await session.create(Collection.EXPENSES, expense())

        assert len(received) == 1
        assert received[0].entity_id == outcome.entity.id
        assert received[0].correlation_id == outcome.correlation_id

    @pytest.mark.asyncio
    async def test_intent_accepted_as_dict(self, session):
        coordinator = session.coordinator(Collection.CLIENTS)
        outcome = await coordinator.submit({"action": "create", "payload": {"name": "ACME"}})
        assert outcome.succeeded
        assert outcome.entity.name == "ACME"


class TestRollback:
    """A failed remote write leaves local state exactly as it was."""

    @pytest.mark.asyncio
    async def test_failed_create_restores_snapshot(self, session, store, seed, notifier):
        await seed(Collection.EXPENSES, amount="10", description="Taxi", date="2024-03-01")
        await session.projection.refresh(Collection.EXPENSES)
        before = session.projection.snapshot(Collection.EXPENSES)

        store.fail_next("insert")
        pending = session.create(Collection.EXPENSES, expense())
        assert len(session.projection.items(Collection.EXPENSES)) == 2

        outcome = await pending

        assert not outcome.succeeded
        assert isinstance(outcome.error, RemoteWriteFailed)
        after = session.projection.snapshot(Collection.EXPENSES)
        assert after == before
        assert [e.model_dump() for e in after] == [e.model_dump() for e in before]

    @pytest.mark.asyncio
    async def test_failure_notifies_once(self, session, store, notifier):
        store.fail_next("insert")
        await session.create(Collection.EXPENSES, expense())

        assert len(notifier.notifications) == 1
        assert notifier.notifications[0].level == NotificationLevel.ERROR

    @pytest.mark.asyncio
    async def test_failed_update_restores_previous_values(self, session, store, seed):
        row = await seed(Collection.CLIENTS, name="Old Name")
        await session.projection.refresh(Collection.CLIENTS)
        before = session.projection.snapshot(Collection.CLIENTS)

        store.fail_next("update")
        pending = session.update(Collection.CLIENTS, row["id"], {"name": "New Name"})
        assert session.projection.find(Collection.CLIENTS, row["id"]).name == "New Name"

        outcome = await pending
        assert not outcome.succeeded
        assert session.projection.snapshot(Collection.CLIENTS) == before
        assert session.projection.find(Collection.CLIENTS, row["id"]).name == "Old Name"

    @pytest.mark.asyncio
    async def test_failed_delete_brings_record_back(self, session, store, seed):
        row = await seed(Collection.CLIENTS, name="Keep Me")
        await session.projection.refresh(Collection.CLIENTS)
        before = session.projection.snapshot(Collection.CLIENTS)

        store.fail_next("delete")
        pending = session.delete(Collection.CLIENTS, row["id"])
        assert session.projection.items(Collection.CLIENTS) == ()

        outcome = await pending
        assert not outcome.succeeded
        assert session.projection.snapshot(Collection.CLIENTS) == before

    @pytest.mark.asyncio
    async def test_concurrent_creates_roll_back_independently(self, session, store):
        """The first create fails, the second one still lands exactly once."""
        store.hold()
        store.fail_next("insert")
        first = session.create(Collection.EXPENSES, expense("First"))
        second = session.create(Collection.EXPENSES, expense("Second"))
        store.release()

        first_outcome = await first
        second_outcome = await second
        await session.projection.wait_for_refreshes()

        assert not first_outcome.succeeded
        assert second_outcome.succeeded
        items = session.projection.items(Collection.EXPENSES)
        assert [e.description for e in items] == ["Second"]
        assert not any(is_temporary_id(e.id) for e in items)

    @pytest.mark.asyncio
    async def test_later_failure_keeps_earlier_confirmed_create(self, session, store):
        """The first create lands, the second fails afterwards; no temp record survives."""
        store.fail_next("insert", when={"description": "Second"}, delay=0.05)
        first = session.create(Collection.EXPENSES, expense("First"))
        second = session.create(Collection.EXPENSES, expense("Second"))

        first_outcome = await first
        second_outcome = await second

        assert first_outcome.succeeded
        assert not second_outcome.succeeded
        items = session.projection.items(Collection.EXPENSES)
        assert [e.id for e in items] == [first_outcome.entity.id]

        await session.settle()
        items = session.projection.items(Collection.EXPENSES)
        assert [e.description for e in items] == ["First"]
        assert not any(is_temporary_id(e.id) for e in items)

    @pytest.mark.asyncio
    async def test_later_failure_keeps_earlier_confirmed_delete(self, session, store, seed):
        row = await seed(Collection.EXPENSES, amount="10", description="Old", date="2024-03-01")
        await session.projection.refresh(Collection.EXPENSES)

        store.fail_next("insert", when={"description": "New"}, delay=0.05)
        created = session.create(Collection.EXPENSES, expense("New"))
        deleted = session.delete(Collection.EXPENSES, row["id"])

        assert (await deleted).succeeded
        assert not (await created).succeeded
        assert session.projection.items(Collection.EXPENSES) == ()

        await session.settle()
        assert session.projection.items(Collection.EXPENSES) == ()


class TestPreflightChecks:
    """Problems found before the network call are raised from submit()."""

    def test_invalid_payload_raises_without_calling_store(self, session, store):
        with pytest.raises(ValidationFailed) as exc_info:
            session.create(Collection.EXPENSES, {"amount": "-5", "description": "", "date": "2024-03-01"})

        fields = {issue.field for issue in exc_info.value.issues}
        assert {"amount", "description"} <= fields
        assert store.calls == []
        assert session.projection.items(Collection.EXPENSES) == ()

    def test_no_session_raises_authentication_required(self, session, store):
        session.user = None
        with pytest.raises(AuthenticationRequired):
            session.create(Collection.EXPENSES, expense())
        assert store.calls == []

    def test_unknown_id_raises_not_found(self, session):
        with pytest.raises(NotFoundError):
            session.update(Collection.CLIENTS, "missing", {"name": "X"})
        with pytest.raises(NotFoundError):
            session.delete(Collection.CLIENTS, "missing")

    @pytest.mark.asyncio
    async def test_temporary_record_cannot_be_edited(self, session, store):
        store.hold()
        pending = session.create(Collection.CLIENTS, {"name": "ACME"})

        with pytest.raises(NotFoundError):
            session.update(Collection.CLIENTS, pending.entity_id, {"name": "Other"})

        store.release()
        await pending

    @pytest.mark.asyncio
    async def test_manual_overdue_is_rejected(self, session, seed):
        row = await seed(
            Collection.INVOICES,
            client_id="c1", amount="100", due_date="2024-03-10", status="pending",
        )
        await session.projection.refresh(Collection.INVOICES)

        with pytest.raises(ValidationFailed):
            session.update(Collection.INVOICES, row["id"], {"status": InvoiceStatus.OVERDUE.value})


class TestInvalidation:
    """Settled writes mark the collection and its dependents stale."""

    @pytest.mark.asyncio
    async def test_invoice_write_invalidates_dashboard_and_calendar(self, store):
        projection = LocalProjection(store, lambda: "user-1")
        coordinator = MutationCoordinator(
            Collection.INVOICES,
            store,
            projection,
            lambda: "user-1",
            event_bus=EventBus(),
            dependents=(DASHBOARD_STATS, CALENDAR),
            auto_refresh=False,
        )

        outcome = await coordinator.submit(CreateIntent(payload={
            "client_id": "c1",
            "amount": "300",
            "due_date": "2024-04-01",
        }))

        assert outcome.succeeded
        assert projection.is_stale(Collection.INVOICES)
        assert projection.is_stale(DASHBOARD_STATS)
        assert projection.is_stale(CALENDAR)
        assert projection.items(Collection.INVOICES)[0].id == outcome.entity.id
