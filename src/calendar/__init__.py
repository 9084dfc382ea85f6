"""Invoice calendar, reminders and calendar export."""

from src.calendar.export import (
    ExportFormat,
    export_filename,
    parse_json_snapshot,
    to_ics,
    to_json,
)
from src.calendar.sync import (
    REMINDER_COLOR,
    STATUS_COLORS,
    CalendarSync,
    derive_invoice_entries,
)

__all__ = [
    "ExportFormat",
    "export_filename",
    "parse_json_snapshot",
    "to_ics",
    "to_json",
    "REMINDER_COLOR",
    "STATUS_COLORS",
    "CalendarSync",
    "derive_invoice_entries",
]
