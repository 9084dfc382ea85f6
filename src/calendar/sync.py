"""
Calendar and Reminder Sync

Projects invoices into calendar entries and fires time-based reminders.

Derivation rules (full recompute on every invoice change):
- Due event on the invoice's due date, high priority, colored by status
- Reminder event `reminder_lead_days` before the due date, medium priority
- One notification reminder at `reminder_time` on the reminder event's date

Invoice-derived entries are identified by id prefix. Entries the user
added by hand (custom events, manual and automatic reminders) survive
every recompute. A reminder that has fired keeps its fired flag across
recomputes, so it is never fired twice.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Iterable, Optional, Union
from uuid import uuid4

import structlog

from src.audit import AuditLogger
from src.calendar.export import (
    ExportFormat,
    parse_json_snapshot,
    to_ics,
    to_json,
)
from src.config import EngineSettings, get_settings
from src.engine.aggregation import coerce_records
from src.models.audit import AuditEventBuilder
from src.models.derived import (
    CalendarEvent,
    EventKind,
    EventPriority,
    Reminder,
    ReminderKind,
)
from src.models.records import Invoice, InvoiceStatus
from src.services.notifications import Notification, NotificationLevel, Notifier
from src.services.storage.interface import NotFoundError
from src.validation import ImportFormatInvalid

logger = structlog.get_logger(__name__)

INVOICE_PREFIX = "invoice-"
DUE_EVENT_PREFIX = "invoice-due-"
REMINDER_EVENT_PREFIX = "invoice-reminder-"
INVOICE_NOTICE_PREFIX = "invoice-notice-"

STATUS_COLORS = {
    InvoiceStatus.PENDING: "#ef4444",
    InvoiceStatus.PAID: "#10b981",
    InvoiceStatus.OVERDUE: "#b91c1c",
    InvoiceStatus.CANCELLED: "#6b7280",
}
REMINDER_COLOR = "#f59e0b"
CUSTOM_COLOR = "#3b82f6"

WEEKLY_BACKUP_ID = "backup-semanal"
MONTHLY_REVIEW_ID = "revisao-mensal"


def derive_invoice_entries(
    invoices: Iterable[Invoice],
    lead_days: int = 3,
    reminder_time: time = time(9, 0),
) -> tuple[list[CalendarEvent], list[Reminder]]:
    """Calendar events and notification reminders for a set of invoices."""
    events: list[CalendarEvent] = []
    reminders: list[Reminder] = []

    for invoice in invoices:
        label = invoice.description or "Invoice"
        remind_on = invoice.due_date - timedelta(days=lead_days)
        open_invoice = invoice.status in (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)

        events.append(CalendarEvent(
            id=f"{DUE_EVENT_PREFIX}{invoice.id}",
            title=f"Due: {label}",
            description=f"Invoice of {invoice.amount:.2f} due today",
            date=invoice.due_date,
            kind=EventKind.DUE,
            color=STATUS_COLORS[invoice.status],
            priority=EventPriority.HIGH,
            source_invoice_id=invoice.id,
        ))
        events.append(CalendarEvent(
            id=f"{REMINDER_EVENT_PREFIX}{invoice.id}",
            title=f"Reminder: {label}",
            description=f"Invoice due in {lead_days} days",
            date=remind_on,
            kind=EventKind.REMINDER,
            color=REMINDER_COLOR,
            priority=EventPriority.MEDIUM,
            source_invoice_id=invoice.id,
        ))
        reminders.append(Reminder(
            id=f"{INVOICE_NOTICE_PREFIX}{invoice.id}",
            title=f"Invoice due soon: {label}",
            description=f"{invoice.amount:.2f} due on {invoice.due_date.isoformat()}",
            scheduled_for=datetime.combine(remind_on, reminder_time),
            kind=ReminderKind.INVOICE,
            active=open_invoice,
            source_invoice_id=invoice.id,
        ))

    return events, reminders


class CalendarSync:
    """
    Holds the calendar for one session.

    Wire `on_invoices_changed` to the projection so the calendar follows
    the invoice collection, and run `fire_due_reminders` periodically.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._notifier = notifier
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().engine
        self._events: list[CalendarEvent] = []
        self._reminders: list[Reminder] = []

    @property
    def events(self) -> tuple[CalendarEvent, ...]:
        return tuple(self._events)

    @property
    def reminders(self) -> tuple[Reminder, ...]:
        return tuple(self._reminders)

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    def sync_invoices(self, invoices: Optional[Iterable[Any]]) -> list[CalendarEvent]:
        """Replace every invoice-derived entry with a fresh derivation."""
        derived_events, derived_reminders = derive_invoice_entries(
            coerce_records(invoices, Invoice),
            lead_days=self._settings.reminder_lead_days,
            reminder_time=self._settings.reminder_time,
        )

        fired = {r.id for r in self._reminders if r.fired}
        for reminder in derived_reminders:
            if reminder.id in fired:
                reminder.fired = True

        self._events = [
            e for e in self._events if not e.id.startswith(INVOICE_PREFIX)
        ] + derived_events
        self._reminders = [
            r for r in self._reminders if not r.id.startswith(INVOICE_PREFIX)
        ] + derived_reminders

        logger.debug("calendar_synced", events=len(self._events), reminders=len(self._reminders))
        return derived_events

    def on_invoices_changed(self, collection, invoices) -> None:
        self.sync_invoices(invoices)

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------

    def pending_reminders(self, now: Optional[datetime] = None) -> list[Reminder]:
        """Active, unfired reminders whose time has come."""
        now = now or datetime.now()
        return [
            r for r in self._reminders
            if r.active and not r.fired and r.scheduled_for <= now
        ]

    def fire_due_reminders(self, now: Optional[datetime] = None) -> list[Reminder]:
        """Notify once for each pending reminder and mark it fired."""
        fired = []
        for reminder in self.pending_reminders(now):
            reminder.fired = True
            fired.append(reminder)
            self._audit.log(AuditEventBuilder.reminder_fired(reminder.id, reminder.title))
            if self._notifier is not None:
                self._notifier.notify(Notification(
                    title=reminder.title,
                    message=reminder.description,
                    level=NotificationLevel.INFO,
                ))
        return fired

    async def reminder_sweep(self) -> list[Reminder]:
        """Scheduler job wrapper around fire_due_reminders."""
        return self.fire_due_reminders()

    def add_reminder(
        self,
        title: str,
        scheduled_for: datetime,
        description: str = "",
        kind: ReminderKind = ReminderKind.PAYMENT,
        reminder_id: Optional[str] = None,
    ) -> Reminder:
        reminder = Reminder(
            id=reminder_id or str(uuid4()),
            title=title,
            description=description,
            scheduled_for=scheduled_for,
            kind=kind,
        )
        self._reminders.append(reminder)
        return reminder

    def schedule_automatic_reminders(self, now: Optional[datetime] = None) -> list[Reminder]:
        """
        Add the weekly backup and monthly review reminders.

        Reminders already present are left alone, so repeated calls add
        nothing new.
        """
        now = now or datetime.now()
        existing = {r.id for r in self._reminders}
        planned = [
            (WEEKLY_BACKUP_ID, "Weekly backup", "Back up your financial data",
             now.date() + timedelta(days=7), time(10, 0), ReminderKind.REPORT),
            (MONTHLY_REVIEW_ID, "Monthly review", "Review your goals and financial plan",
             now.date() + timedelta(days=30), time(14, 0), ReminderKind.GOAL),
        ]

        added = []
        for reminder_id, title, description, day, at, kind in planned:
            if reminder_id in existing:
                continue
            added.append(self.add_reminder(
                title,
                datetime.combine(day, at),
                description=description,
                kind=kind,
                reminder_id=reminder_id,
            ))
        return added

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def events_on(self, day: date) -> list[CalendarEvent]:
        return [e for e in self._events if e.date == day and e.active]

    def events_in_month(self, month: int, year: int) -> list[CalendarEvent]:
        """Active events in a month (1-12)."""
        return [
            e for e in self._events
            if e.date.month == month and e.date.year == year and e.active
        ]

    def add_event(
        self,
        title: str,
        day: date,
        description: str = "",
        priority: EventPriority = EventPriority.MEDIUM,
        color: str = CUSTOM_COLOR,
    ) -> CalendarEvent:
        event = CalendarEvent(
            id=str(uuid4()),
            title=title,
            description=description,
            date=day,
            kind=EventKind.CUSTOM,
            color=color,
            priority=priority,
        )
        self._events.append(event)
        return event

    def update_event(self, event_id: str, **changes: Any) -> CalendarEvent:
        """
        Edit an event in place.

        Raises:
            NotFoundError: No event with that id
        """
        for index, event in enumerate(self._events):
            if event.id == event_id:
                updated = CalendarEvent.model_validate({
                    **event.model_dump(),
                    **changes,
                    "id": event_id,
                })
                self._events[index] = updated
                return updated
        raise NotFoundError(f"Calendar event not found: {event_id}")

    def remove_event(self, event_id: str) -> None:
        remaining = [e for e in self._events if e.id != event_id]
        if len(remaining) == len(self._events):
            raise NotFoundError(f"Calendar event not found: {event_id}")
        self._events = remaining

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    def export(self, export_format: Union[ExportFormat, str]) -> str:
        if ExportFormat(export_format) is ExportFormat.ICS:
            return to_ics(self._events, self._settings.calendar_product_id)
        return to_json(self._events, self._reminders)

    async def write_export(self, path: Union[str, Path], export_format: Union[ExportFormat, str]) -> Path:
        """Write an export to disk without blocking the event loop."""
        export_format = ExportFormat(export_format)
        content = self.export(export_format)
        path = Path(path)
        try:
            await asyncio.to_thread(path.write_text, content, encoding="utf-8", newline="")
        except OSError as e:
            logger.error("calendar_export_failed", path=str(path), error=str(e))
            self._notify(
                "Calendar export failed",
                str(e),
                NotificationLevel.ERROR,
            )
            raise

        self._notify(
            "Calendar exported",
            f"Calendar exported as {export_format.value.upper()}",
            NotificationLevel.SUCCESS,
        )
        return path

    def import_snapshot(self, content: Union[str, bytes, dict]) -> None:
        """
        Replace events and reminders with a JSON snapshot.

        Raises:
            ImportFormatInvalid: The snapshot is malformed; nothing changes
        """
        try:
            events, reminders = parse_json_snapshot(content)
        except ImportFormatInvalid as e:
            self._audit.log(AuditEventBuilder.import_rejected("calendar", str(e)))
            self._notify("Calendar import failed", str(e), NotificationLevel.ERROR)
            raise
        self._events = events
        self._reminders = reminders

    def _notify(self, title: str, message: str, level: NotificationLevel) -> None:
        if self._notifier is not None:
            self._notifier.notify(Notification(title=title, message=message, level=level))
