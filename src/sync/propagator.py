"""
Side-Effect Propagator

Reacts to confirmed writes and to the passage of time:

- A pending income tied to a client gets exactly one invoice derived from
  it, due on the income's date
- Pending invoices whose due date has passed are moved to overdue

Both effects go through the invoice coordinator, so they are optimistic,
audited and rolled back like any user write. A failed derived invoice is
logged and not retried; the income itself stays.
"""

import asyncio
from datetime import date
from typing import Callable, Optional

import structlog

from src.audit import AuditLogger
from src.engine.aggregation import coerce_records
from src.models.audit import AuditEventBuilder
from src.models.records import (
    Collection,
    Income,
    IncomeStatus,
    Invoice,
    InvoiceStatus,
)
from src.services.storage.interface import RecordStoreInterface, require_owner
from src.sync.coordinator import CreateIntent, MutationCoordinator, UpdateIntent
from src.sync.events import INCOME_CREATED, DomainEvent, EventBus
from src.sync.projection import LocalProjection

logger = structlog.get_logger(__name__)


class SideEffectPropagator:
    """Derived-invoice creation and the overdue sweep."""

    def __init__(
        self,
        invoices: MutationCoordinator,
        store: RecordStoreInterface,
        projection: LocalProjection,
        owner_provider: Callable[[], Optional[str]],
        event_bus: EventBus,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._invoices = invoices
        self._store = store
        self._projection = projection
        self._owner_provider = owner_provider
        self._events = event_bus
        self._audit = audit_logger or AuditLogger()
        # Income ids whose invoice is being created right now
        self._claimed: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def attach(self) -> None:
        self._events.subscribe(INCOME_CREATED, self.on_income_created)

    def detach(self) -> None:
        self._events.unsubscribe(INCOME_CREATED, self.on_income_created)

    # -------------------------------------------------------------------------
    # Derived invoices
    # -------------------------------------------------------------------------

    def on_income_created(self, event: DomainEvent) -> None:
        """
        Schedule the derived invoice for a freshly confirmed income.

        Returns without waiting: the income write settles on its own.
        """
        income = event.entity
        if not isinstance(income, Income):
            return

        if income.status != IncomeStatus.PENDING:
            self._audit.log(AuditEventBuilder.derived_invoice_skipped(income.id, "income is not pending"))
            return
        if not income.client_id:
            self._audit.log(AuditEventBuilder.derived_invoice_skipped(income.id, "income has no client"))
            return
        if income.id in self._claimed:
            self._audit.log(AuditEventBuilder.derived_invoice_skipped(income.id, "invoice already in progress"))
            return

        self._claimed.add(income.id)
        task = asyncio.get_running_loop().create_task(
            self._derive_invoice(income, event.correlation_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _derive_invoice(self, income: Income, correlation_id=None) -> Optional[Invoice]:
        try:
            if await self._already_invoiced(income.id):
                self._audit.log(AuditEventBuilder.derived_invoice_skipped(income.id, "invoice already exists"))
                return None

            outcome = await self._invoices.submit(CreateIntent(payload={
                "client_id": income.client_id,
                "description": income.description,
                "amount": income.amount,
                "due_date": income.date,
                "status": InvoiceStatus.PENDING,
                "source_income_id": income.id,
            }))
        except Exception as e:
            self._audit.log(AuditEventBuilder.derived_invoice_failed(income.id, str(e), correlation_id))
            return None
        finally:
            self._claimed.discard(income.id)

        if not outcome.succeeded:
            self._audit.log(AuditEventBuilder.derived_invoice_failed(
                income.id, str(outcome.error.cause), correlation_id
            ))
            return None

        self._audit.log(AuditEventBuilder.derived_invoice_created(
            income.id, outcome.entity.id, correlation_id
        ))
        return outcome.entity

    async def _already_invoiced(self, income_id: str) -> bool:
        for invoice in self._projection.items(Collection.INVOICES):
            if getattr(invoice, "source_income_id", None) == income_id:
                return True
        rows = await self._store.select(
            Collection.INVOICES,
            self._owner_provider(),
            source_income_id=income_id,
        )
        return bool(rows)

    async def drain(self) -> None:
        """Wait for derived invoices still being created."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Overdue sweep
    # -------------------------------------------------------------------------

    async def sweep_overdue(self, today: Optional[date] = None) -> list[str]:
        """
        Move pending invoices due before `today` to overdue.

        Reads pending invoices straight from the store, so invoices the
        projection has not loaded yet are swept as well.

        Returns:
            Ids of the invoices that were confirmed overdue
        """
        today = today or date.today()
        owner_id = require_owner(self._owner_provider())
        rows = await self._store.select(
            Collection.INVOICES, owner_id, status=InvoiceStatus.PENDING.value
        )

        pending = []
        for invoice in coerce_records(rows, Invoice):
            if invoice.status != InvoiceStatus.PENDING or invoice.due_date >= today:
                continue
            if self._projection.find(Collection.INVOICES, invoice.id) is None:
                self._projection.upsert(Collection.INVOICES, invoice)
            try:
                pending.append((invoice, self._invoices.submit(UpdateIntent(
                    id=invoice.id,
                    changes={"status": InvoiceStatus.OVERDUE.value},
                    automatic=True,
                ))))
            except Exception as e:
                # Locally paid or cancelled while the store still says pending
                logger.info("overdue_skipped", invoice_id=invoice.id, reason=str(e))

        transitioned = []
        for invoice, mutation in pending:
            outcome = await mutation
            if outcome.succeeded:
                transitioned.append(invoice.id)
                self._audit.log(AuditEventBuilder.invoice_marked_overdue(
                    invoice.id, invoice.due_date.isoformat()
                ))

        logger.info("overdue_sweep_completed", checked=len(rows), transitioned=len(transitioned))
        return transitioned
