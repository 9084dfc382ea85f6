"""
Tests for the invoice calendar, reminders and calendar export.
"""

import json
import pytest
from datetime import date, datetime, time

from src.calendar import (
    REMINDER_COLOR,
    STATUS_COLORS,
    CalendarSync,
    ExportFormat,
    export_filename,
    parse_json_snapshot,
)
from src.config import EngineSettings
from src.models.derived import EventKind, EventPriority
from src.models.records import Invoice, InvoiceStatus
from src.services.notifications import CollectingNotifier
from src.validation import ImportFormatInvalid


def make_invoice(invoice_id="inv-1", due=date(2024, 3, 13), status=InvoiceStatus.PENDING, **extra):
    values = {
        "id": invoice_id,
        "owner_id": "user-1",
        "client_id": "c1",
        "description": "Website",
        "amount": "1500",
        "due_date": due,
        "status": status,
    }
    if status == InvoiceStatus.PAID:
        values["payment_date"] = datetime(2024, 3, 1, 12, 0)
    values.update(extra)
    return Invoice.model_validate(values)


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def calendar(notifier):
    return CalendarSync(notifier=notifier, settings=EngineSettings())


class TestInvoiceDerivation:
    """Each invoice yields a due event and a reminder event."""

    def test_two_entries_per_invoice(self, calendar):
        invoices = [
            make_invoice("a", due=date(2024, 3, 13)),
            make_invoice("b", due=date(2024, 4, 2)),
        ]
        calendar.sync_invoices(invoices)

        for invoice in invoices:
            entries = [e for e in calendar.events if e.source_invoice_id == invoice.id]
            assert len(entries) == 2
            assert sorted(e.date for e in entries) == [
                date.fromordinal(invoice.due_date.toordinal() - 3),
                invoice.due_date,
            ]

    def test_reminder_crosses_month_boundary(self, calendar):
        calendar.sync_invoices([make_invoice(due=date(2024, 3, 1))])
        reminder = next(e for e in calendar.events if e.kind == EventKind.REMINDER)
        assert reminder.date == date(2024, 2, 27)

    def test_priority_and_color(self, calendar):
        calendar.sync_invoices([make_invoice(status=InvoiceStatus.PAID)])

        due = next(e for e in calendar.events if e.kind == EventKind.DUE)
        heads_up = next(e for e in calendar.events if e.kind == EventKind.REMINDER)
        assert due.priority == EventPriority.HIGH
        assert due.color == STATUS_COLORS[InvoiceStatus.PAID]
        assert heads_up.priority == EventPriority.MEDIUM
        assert heads_up.color == REMINDER_COLOR

    def test_full_recompute_drops_removed_invoices(self, calendar):
        calendar.sync_invoices([make_invoice("a"), make_invoice("b")])
        calendar.sync_invoices([make_invoice("b")])

        assert {e.source_invoice_id for e in calendar.events} == {"b"}
        assert len(calendar.events) == 2

    def test_custom_events_survive_recompute(self, calendar):
        custom = calendar.add_event("Tax meeting", date(2024, 3, 20))
        calendar.sync_invoices([make_invoice()])
        calendar.sync_invoices([])

        assert [e.id for e in calendar.events] == [custom.id]

    def test_malformed_rows_are_skipped(self, calendar):
        calendar.sync_invoices([make_invoice(), {"id": "broken"}, None])
        assert len(calendar.events) == 2


class TestReminders:
    """Reminders fire once and stay fired."""

    def test_reminder_fires_exactly_once(self, calendar, notifier):
        calendar.add_reminder("Pay supplier", datetime(2024, 3, 10, 9, 0))

        fired = calendar.fire_due_reminders(datetime(2024, 3, 10, 10, 0))
        again = calendar.fire_due_reminders(datetime(2024, 3, 10, 10, 1))

        assert len(fired) == 1
        assert again == []
        assert notifier.titles() == ["Pay supplier"]

    def test_reminder_not_fired_early(self, calendar, notifier):
        calendar.add_reminder("Pay supplier", datetime(2024, 3, 10, 9, 0))

        assert calendar.fire_due_reminders(datetime(2024, 3, 10, 8, 59)) == []
        assert notifier.notifications == []

    def test_invoice_reminder_scheduled_at_configured_time(self, calendar):
        calendar.sync_invoices([make_invoice(due=date(2024, 3, 13))])

        [reminder] = calendar.reminders
        assert reminder.scheduled_for == datetime.combine(date(2024, 3, 10), time(9, 0))

    def test_fired_state_survives_regeneration(self, calendar, notifier):
        invoice = make_invoice(due=date(2024, 3, 13))
        calendar.sync_invoices([invoice])
        calendar.fire_due_reminders(datetime(2024, 3, 10, 10, 0))

        calendar.sync_invoices([invoice.model_copy(update={"amount": 1600})])
        calendar.fire_due_reminders(datetime(2024, 3, 11, 10, 0))

        assert len(notifier.notifications) == 1
        assert calendar.reminders[0].fired

    def test_closed_invoices_do_not_remind(self, calendar, notifier):
        calendar.sync_invoices([
            make_invoice("paid", status=InvoiceStatus.PAID),
            make_invoice("cancelled", status=InvoiceStatus.CANCELLED),
        ])

        assert calendar.fire_due_reminders(datetime(2024, 12, 31)) == []

    def test_pending_reminders(self, calendar):
        early = calendar.add_reminder("Early", datetime(2024, 3, 1, 8, 0))
        calendar.add_reminder("Later", datetime(2024, 4, 1, 8, 0))

        assert calendar.pending_reminders(datetime(2024, 3, 15)) == [early]

    def test_automatic_reminders_are_idempotent(self, calendar):
        now = datetime(2024, 3, 1, 8, 0)
        first = calendar.schedule_automatic_reminders(now)
        second = calendar.schedule_automatic_reminders(now)

        assert [r.scheduled_for for r in first] == [
            datetime(2024, 3, 8, 10, 0),
            datetime(2024, 3, 31, 14, 0),
        ]
        assert second == []
        assert len(calendar.reminders) == 2


class TestEventQueries:

    def test_events_on_and_in_month(self, calendar):
        calendar.sync_invoices([make_invoice(due=date(2024, 3, 13))])
        calendar.add_event("Hidden", date(2024, 3, 13))
        hidden = calendar.events[-1]
        calendar.update_event(hidden.id, active=False)

        assert len(calendar.events_on(date(2024, 3, 13))) == 1
        assert len(calendar.events_in_month(3, 2024)) == 2
        assert calendar.events_in_month(4, 2024) == []

    def test_update_and_remove_unknown_event(self, calendar):
        from src.services.storage import NotFoundError

        with pytest.raises(NotFoundError):
            calendar.update_event("nope", title="X")
        with pytest.raises(NotFoundError):
            calendar.remove_event("nope")


class TestExport:

    def test_ics_format(self, calendar):
        calendar.sync_invoices([make_invoice(due=date(2024, 3, 13))])
        text = calendar.export(ExportFormat.ICS)
        lines = text.split("\r\n")

        assert lines[:3] == ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//FinanceAI//Calendario//PT"]
        assert lines[-1] == "END:VCALENDAR"
        assert "DTSTART:20240313" in lines
        assert "DTSTART:20240310" in lines
        assert "PRIORITY:1" in lines
        assert "PRIORITY:5" in lines
        assert lines.count("BEGIN:VEVENT") == 2
        assert "\n" not in text.replace("\r\n", "")

    def test_json_round_trip(self, calendar):
        calendar.sync_invoices([make_invoice()])
        calendar.add_reminder("Pay supplier", datetime(2024, 3, 10, 9, 0))
        data = json.loads(calendar.export("json"))

        assert set(data) == {"eventos", "lembretes"}
        events, reminders = parse_json_snapshot(data)
        assert len(events) == 2
        assert len(reminders) == 2

    def test_json_import_rejects_missing_keys(self, calendar, notifier):
        with pytest.raises(ImportFormatInvalid) as exc_info:
            calendar.import_snapshot(json.dumps({"eventos": []}))

        assert exc_info.value.missing_keys == ["lembretes"]
        assert calendar.events == ()
        assert len(notifier.notifications) == 1

    def test_json_import_rejects_garbage(self, calendar):
        with pytest.raises(ImportFormatInvalid):
            calendar.import_snapshot("not json")

    @pytest.mark.asyncio
    async def test_write_export(self, calendar, tmp_path):
        calendar.sync_invoices([make_invoice()])
        path = tmp_path / export_filename(ExportFormat.ICS, date(2024, 3, 1))

        written = await calendar.write_export(path, ExportFormat.ICS)

        assert written.name == "calendario-financeiro-2024-03-01.ics"
        assert written.read_bytes().startswith(b"BEGIN:VCALENDAR\r\nVERSION:2.0\r\n")
