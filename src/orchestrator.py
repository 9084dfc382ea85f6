"""
Session Orchestrator

This module ties together all the components for one signed-in user:

1. Writes (intent -> coordinator -> store -> reconcile/rollback -> event)
2. Derived state (dashboard stats, calendar, report data)
3. Background work (derived invoices, overdue sweep, reminder sweep)

DESIGN DECISION: Everything that runs on its own is owned by the session.
Periodic sweeps start in start() and are stopped in stop(); nothing keeps
running once the session is closed.
"""

import asyncio
from datetime import date, datetime
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel

from src.audit import AuditLogger
from src.backup import BackupService
from src.calendar import CalendarSync
from src.config import EngineSettings, get_settings
from src.engine import CategoryClassifier, aggregate, build_report_data
from src.engine.reports import ReportData, ReportSections
from src.models.derived import DashboardStats
from src.models.records import Client, Collection, Invoice, InvoiceStatus
from src.services.notifications import LogNotifier, Notifier
from src.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
    require_owner,
)
from src.sync import (
    CALENDAR,
    DASHBOARD_STATS,
    CreateIntent,
    DeleteIntent,
    EventBus,
    LocalProjection,
    MutationCoordinator,
    PendingMutation,
    SessionScheduler,
    SideEffectPropagator,
    UpdateIntent,
)
from src.validation import invoice_status_changes

logger = structlog.get_logger(__name__)


class UserIdentity(BaseModel):
    """The signed-in user. Every row they write carries user_id as owner."""

    user_id: str
    email: Optional[str] = None


class FinanceSession:
    """
    One user's engine.

    Usage:
        async with FinanceSession(store, user) as session:
            pending = session.create(Collection.INCOMES, {...})
            outcome = await pending
            stats = session.dashboard_stats()
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        user: Optional[UserIdentity] = None,
        notifier: Optional[Notifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        classifier: Optional[CategoryClassifier] = None,
    ):
        self.user = user
        self.store = store
        self.settings = settings or get_settings().engine
        self.notifier = notifier or LogNotifier()
        self.audit_logger = audit_logger or AuditLogger()
        self.events = EventBus()
        self.projection = LocalProjection(store, self.owner_id)

        self.coordinators: dict[Collection, MutationCoordinator] = {
            collection: MutationCoordinator(
                collection,
                store,
                self.projection,
                self.owner_id,
                event_bus=self.events,
                audit_logger=self.audit_logger,
                notifier=self.notifier,
                dependents=(DASHBOARD_STATS, CALENDAR)
                if collection == Collection.INVOICES
                else (DASHBOARD_STATS,),
            )
            for collection in Collection
        }

        self.calendar = CalendarSync(self.notifier, self.audit_logger, self.settings)
        self.projection.on_change(Collection.INVOICES, self._on_invoices_changed)

        self.propagator = SideEffectPropagator(
            self.coordinators[Collection.INVOICES],
            store,
            self.projection,
            self.owner_id,
            self.events,
            self.audit_logger,
        )
        self.propagator.attach()

        self.classifier = classifier or CategoryClassifier(
            max_keywords_per_category=self.settings.max_keywords_per_category,
            tokens_per_learn=self.settings.learn_tokens_per_call,
        )
        self.backups = BackupService(
            store,
            self.projection,
            self.owner_id,
            audit_logger=self.audit_logger,
            notifier=self.notifier,
            settings=self.settings,
        )

        self.scheduler = SessionScheduler(self.audit_logger)
        self.scheduler.add_job(
            "overdue_sweep",
            self.settings.overdue_sweep_interval_seconds,
            self.sweep_overdue,
        )
        self.scheduler.add_job(
            "reminder_sweep",
            self.settings.reminder_sweep_interval_seconds,
            self.calendar.reminder_sweep,
        )

        self._stats: Optional[DashboardStats] = None
        self._stats_inputs: Optional[tuple] = None

    def owner_id(self) -> Optional[str]:
        return self.user.user_id if self.user else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Load every collection and start the periodic sweeps.

        Raises:
            AuthenticationRequired: No user is signed in
        """
        require_owner(self.owner_id())
        await asyncio.gather(*(self.projection.refresh(c) for c in Collection))
        self.scheduler.start()
        logger.info("session_started", user_id=self.owner_id())

    async def stop(self) -> None:
        """Stop the sweeps, let in-flight writes settle and drop pending refreshes."""
        await self.scheduler.stop()
        await self.settle()
        await self.projection.close()
        logger.info("session_stopped", user_id=self.owner_id())

    async def close(self) -> None:
        await self.stop()
        self.propagator.detach()
        self.projection.remove_listener(Collection.INVOICES, self._on_invoices_changed)

    async def __aenter__(self) -> "FinanceSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def settle(self) -> None:
        """Wait until no write, derived write or refresh is in flight."""
        while self._busy():
            for coordinator in self.coordinators.values():
                await coordinator.drain()
            await self.propagator.drain()
        await self.projection.wait_for_refreshes()

    def _busy(self) -> bool:
        return self.propagator.pending > 0 or any(
            c.in_flight for c in self.coordinators.values()
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def coordinator(self, collection: Union[Collection, str]) -> MutationCoordinator:
        return self.coordinators[Collection(collection)]

    def create(self, collection: Union[Collection, str], payload: Any) -> PendingMutation:
        return self.coordinator(collection).submit(CreateIntent(payload=payload))

    def update(
        self,
        collection: Union[Collection, str],
        entity_id: str,
        changes: dict[str, Any],
    ) -> PendingMutation:
        return self.coordinator(collection).submit(UpdateIntent(id=entity_id, changes=changes))

    def delete(self, collection: Union[Collection, str], entity_id: str) -> PendingMutation:
        return self.coordinator(collection).submit(DeleteIntent(id=entity_id))

    def set_invoice_status(
        self,
        invoice_id: str,
        status: Union[InvoiceStatus, str],
        now: Optional[datetime] = None,
    ) -> PendingMutation:
        """Mark an invoice paid, pending or cancelled (payment date handled)."""
        invoice = self.projection.find(Collection.INVOICES, invoice_id)
        if invoice is None:
            raise NotFoundError(f"invoices record not found: {invoice_id}")
        return self.update(
            Collection.INVOICES,
            invoice_id,
            invoice_status_changes(invoice, status, now),
        )

    async def sweep_overdue(self, today: Optional[date] = None) -> list[str]:
        return await self.propagator.sweep_overdue(today)

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    def dashboard_stats(self, now: Optional[Union[date, datetime]] = None) -> DashboardStats:
        """Statistics for the month of `now`, recomputed only when inputs change."""
        now = now or datetime.now()
        inputs = (now.year, now.month) + tuple(
            self.projection.items(c) for c in Collection
        )
        cached = (
            self._stats is not None
            and not self.projection.is_stale(DASHBOARD_STATS)
            and self._stats_inputs is not None
            and self._stats_inputs[:2] == inputs[:2]
            and all(a is b for a, b in zip(self._stats_inputs[2:], inputs[2:]))
        )
        if not cached:
            self._stats = aggregate(
                *inputs[2:],
                now=now,
                recent_limit=self.settings.recent_transactions_limit,
            )
            self._stats_inputs = inputs
            self.projection.mark_fresh(DASHBOARD_STATS)
        return self._stats

    def report_data(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        sections: Optional[ReportSections] = None,
    ) -> ReportData:
        return build_report_data(
            *(self.projection.items(c) for c in Collection),
            start=start,
            end=end,
            sections=sections,
        )

    def client_for(self, invoice: Invoice) -> Optional[Client]:
        return self.projection.find(Collection.CLIENTS, invoice.client_id)

    def invoices_with_clients(self) -> list[tuple[Invoice, Optional[Client]]]:
        """Invoices paired with their client (None when the client is gone)."""
        return [
            (invoice, self.client_for(invoice))
            for invoice in self.projection.items(Collection.INVOICES)
        ]

    def _on_invoices_changed(self, collection, invoices) -> None:
        self.calendar.sync_invoices(invoices)
        self.projection.mark_fresh(CALENDAR)


def create_store(backend: Optional[str] = None) -> RecordStoreInterface:
    """
    Build the configured remote store.

    Falls back to the in-memory store when Google Sheets is selected but
    not configured.
    """
    backend = backend or get_settings().app.store_backend
    if backend == "google_sheets":
        try:
            client = GoogleSheetsClient()
            client.get_spreadsheet()
            return GoogleSheetsRecordStore(client)
        except Exception as e:
            logger.warning("store_not_configured", backend=backend, error=str(e))
    return InMemoryRecordStore()


def create_session_components(
    user: Optional[UserIdentity] = None,
    notifier: Optional[Notifier] = None,
    backend: Optional[str] = None,
) -> FinanceSession:
    """
    Factory function to create a session with all its components.

    Args:
        user: Signed-in user (sessions without one refuse every write)
        notifier: Where user-facing messages go (structured log by default)
        backend: "memory" or "google_sheets" (defaults to configuration)
    """
    return FinanceSession(create_store(backend), user=user, notifier=notifier)
