"""
Calendar Export Formats

Two formats are produced:
- An iCalendar subset (events only), CRLF line endings
- A JSON snapshot {"eventos": [...], "lembretes": [...]} that can be
  imported back
"""

import json
from datetime import date
from enum import Enum
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from src.config import get_settings
from src.models.derived import CalendarEvent, Reminder
from src.validation import ImportFormatInvalid, require_keys

EVENTS_KEY = "eventos"
REMINDERS_KEY = "lembretes"


class ExportFormat(str, Enum):
    ICS = "ics"
    JSON = "json"


def _ics_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def to_ics(events: Iterable[CalendarEvent], product_id: Optional[str] = None) -> str:
    """Render events as VCALENDAR text."""
    product_id = product_id or get_settings().engine.calendar_product_id
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", f"PRODID:{product_id}"]
    for event in events:
        lines.extend([
            "BEGIN:VEVENT",
            f"UID:{event.id}",
            f"DTSTART:{event.date.strftime('%Y%m%d')}",
            f"SUMMARY:{_ics_text(event.title)}",
            f"DESCRIPTION:{_ics_text(event.description)}",
            f"PRIORITY:{event.priority.ical_value}",
            "END:VEVENT",
        ])
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines)


def to_json(events: Iterable[CalendarEvent], reminders: Iterable[Reminder]) -> str:
    return json.dumps(
        {
            EVENTS_KEY: [e.model_dump(mode="json") for e in events],
            REMINDERS_KEY: [r.model_dump(mode="json") for r in reminders],
        },
        indent=2,
        ensure_ascii=False,
    )


def parse_json_snapshot(content: Union[str, bytes, dict[str, Any]]) -> tuple[list[CalendarEvent], list[Reminder]]:
    """
    Read a JSON snapshot back into events and reminders.

    Raises:
        ImportFormatInvalid: Not JSON, keys missing, or entries malformed
    """
    if isinstance(content, (str, bytes)):
        try:
            content = json.loads(content)
        except ValueError as e:
            raise ImportFormatInvalid("calendar", reason=f"not valid JSON: {e}")

    data = require_keys("calendar", content, (EVENTS_KEY, REMINDERS_KEY))
    try:
        events = [CalendarEvent.model_validate(e) for e in data[EVENTS_KEY]]
        reminders = [Reminder.model_validate(r) for r in data[REMINDERS_KEY]]
    except (ValidationError, TypeError) as e:
        raise ImportFormatInvalid("calendar", reason=f"malformed entry: {e}")
    return events, reminders


def export_filename(export_format: ExportFormat, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"calendario-financeiro-{today.isoformat()}.{ExportFormat(export_format).value}"
