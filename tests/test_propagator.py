"""
Tests for derived invoices and the overdue sweep.
"""

import pytest
from datetime import date
from decimal import Decimal

from src.models.audit import AuditEventType
from src.models.records import Collection, IncomeStatus, InvoiceStatus
from src.sync import INCOME_CREATED, DomainEvent


async def invoices_in_store(store, owner="user-1"):
    return await store.select(Collection.INVOICES, owner)


class TestDerivedInvoice:
    """A pending income with a client spawns exactly one invoice."""

    @pytest.mark.asyncio
    async def test_pending_client_income_creates_invoice(self, session, store, seed):
        client = await seed(Collection.CLIENTS, name="C1")

        outcome = await session.create(Collection.INCOMES, {
            "amount": "1000",
            "description": "Website project",
            "status": "pending",
            "client_id": client["id"],
            "date": "2024-03-10",
        })
        await session.settle()

        invoices = await invoices_in_store(store)
        assert len(invoices) == 1
        invoice = invoices[0]
        assert invoice["client_id"] == client["id"]
        assert Decimal(invoice["amount"]) == Decimal("1000")
        assert invoice["due_date"] == "2024-03-10"
        assert invoice["status"] == InvoiceStatus.PENDING.value
        assert invoice["source_income_id"] == outcome.entity.id

    @pytest.mark.asyncio
    async def test_derived_invoice_reaches_projection_and_calendar(self, session, seed):
        client = await seed(Collection.CLIENTS, name="C1")

        await session.create(Collection.INCOMES, {
            "amount": "250", "description": "Logo", "client_id": client["id"], "date": "2024-05-20",
        })
        await session.settle()
        await session.projection.wait_for_refreshes()

        invoices = session.projection.items(Collection.INVOICES)
        assert len(invoices) == 1
        assert {e.date for e in session.calendar.events} == {date(2024, 5, 20), date(2024, 5, 17)}

    @pytest.mark.asyncio
    async def test_paid_income_creates_no_invoice(self, session, store, seed):
        client = await seed(Collection.CLIENTS, name="C1")

        await session.create(Collection.INCOMES, {
            "amount": "500", "description": "Paid job", "status": "paid",
            "client_id": client["id"], "date": "2024-03-10",
        })
        await session.settle()

        assert await invoices_in_store(store) == []

    @pytest.mark.asyncio
    async def test_income_without_client_creates_no_invoice(self, session, store):
        await session.create(Collection.INCOMES, {
            "amount": "500", "description": "Walk-in sale", "date": "2024-03-10",
        })
        await session.settle()

        assert await invoices_in_store(store) == []

    @pytest.mark.asyncio
    async def test_repeated_event_creates_one_invoice(self, session, store, seed):
        """Delivering income_created twice still yields a single invoice."""
        client = await seed(Collection.CLIENTS, name="C1")
        outcome = await session.create(Collection.INCOMES, {
            "amount": "80", "description": "Consulting", "client_id": client["id"], "date": "2024-03-10",
        })

        await session.events.publish(DomainEvent(
            name=INCOME_CREATED,
            collection=Collection.INCOMES,
            entity_id=outcome.entity.id,
            entity=outcome.entity,
        ))
        await session.settle()

        assert len(await invoices_in_store(store)) == 1

    @pytest.mark.asyncio
    async def test_existing_invoice_at_store_is_respected(self, session, store, seed):
        client = await seed(Collection.CLIENTS, name="C1")
        outcome = await session.create(Collection.INCOMES, {
            "amount": "80", "description": "Consulting", "status": "paid",
            "client_id": client["id"], "date": "2024-03-10",
        })
        await seed(
            Collection.INVOICES,
            client_id=client["id"], amount="80", due_date="2024-03-10",
            status="pending", source_income_id=outcome.entity.id,
        )
        pending_income = outcome.entity.model_copy(update={"status": IncomeStatus.PENDING})

        session.propagator.on_income_created(DomainEvent(
            name=INCOME_CREATED,
            collection=Collection.INCOMES,
            entity_id=pending_income.id,
            entity=pending_income,
        ))
        await session.settle()

        assert len(await invoices_in_store(store)) == 1

    @pytest.mark.asyncio
    async def test_failed_derived_invoice_keeps_income(self, session, store, seed, audit_logger):
        client = await seed(Collection.CLIENTS, name="C1")
        store.fail_next("insert", Collection.INVOICES)

        outcome = await session.create(Collection.INCOMES, {
            "amount": "300", "description": "Retainer", "client_id": client["id"], "date": "2024-03-10",
        })
        await session.settle()

        assert outcome.succeeded
        assert len(await store.select(Collection.INCOMES, "user-1")) == 1
        assert await invoices_in_store(store) == []
        failures = audit_logger.recent(event_type=AuditEventType.DERIVED_INVOICE_FAILED)
        assert len(failures) == 1
        assert failures[0].entity_id == outcome.entity.id


class TestOverdueSweep:
    """Pending invoices strictly past due become overdue; nothing else moves."""

    async def _invoice(self, seed, due, status="pending", **extra):
        row = await seed(
            Collection.INVOICES,
            client_id="c1", amount="100", due_date=due, status=status, **extra,
        )
        return row["id"]

    @pytest.mark.asyncio
    async def test_sweep_boundaries(self, session, store, seed):
        past_due = await self._invoice(seed, "2024-03-09")
        due_today = await self._invoice(seed, "2024-03-10")
        future = await self._invoice(seed, "2024-03-11")
        paid = await self._invoice(seed, "2024-01-01", status="paid", payment_date="2024-01-02T10:00:00")
        cancelled = await self._invoice(seed, "2024-01-01", status="cancelled")

        transitioned = await session.sweep_overdue(today=date(2024, 3, 10))

        assert transitioned == [past_due]
        statuses = {
            row["id"]: row["status"]
            for row in await invoices_in_store(store)
        }
        assert statuses[past_due] == "overdue"
        assert statuses[due_today] == "pending"
        assert statuses[future] == "pending"
        assert statuses[paid] == "paid"
        assert statuses[cancelled] == "cancelled"

    @pytest.mark.asyncio
    async def test_sweep_updates_projection(self, session, seed):
        invoice_id = await self._invoice(seed, "2024-02-01")
        await session.projection.refresh(Collection.INVOICES)

        await session.sweep_overdue(today=date(2024, 3, 1))

        invoice = session.projection.find(Collection.INVOICES, invoice_id)
        assert invoice.status == InvoiceStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_sweep_skips_invoice_paid_locally(self, session, store, seed):
        """A paid invoice is never overwritten, even if the store lags behind."""
        invoice_id = await self._invoice(seed, "2024-02-01")
        await session.projection.refresh(Collection.INVOICES)
        store.hold()
        payment = session.set_invoice_status(invoice_id, InvoiceStatus.PAID)

        sweep = await session.sweep_overdue(today=date(2024, 3, 1))
        store.release()
        await payment

        assert sweep == []

    @pytest.mark.asyncio
    async def test_sweep_again_changes_nothing(self, session, seed):
        await self._invoice(seed, "2024-02-01")

        first = await session.sweep_overdue(today=date(2024, 3, 1))
        second = await session.sweep_overdue(today=date(2024, 3, 2))

        assert len(first) == 1
        assert second == []
