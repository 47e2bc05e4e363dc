"""iCalendar export of a study schedule."""

from datetime import datetime, time, timedelta
from typing import Iterable, Optional

from app.core.config import settings
from app.core.time_utils import utcnow
from app.models.schedule import ScheduleTask

PRODID = "-//UPSC PrepX-AI//Study Schedule//EN"
DAY_START = time(9, 0)


def _format_utc(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    """Escape a TEXT property value (backslash, semicolon, comma, newline)."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def build_calendar(tasks: Iterable[ScheduleTask], now: Optional[datetime] = None) -> str:
    """
    Render tasks as a VCALENDAR document with CRLF line endings.

    Each task becomes one VEVENT starting at 09:00 UTC on its date.

    Args:
        tasks: Schedule tasks, in the order they should appear
        now: DTSTAMP for every event (defaults to utcnow)

    Returns:
        The calendar text
    """
    stamp = _format_utc(now or utcnow())
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for task in tasks:
        start = datetime.combine(task.task_date, DAY_START)
        end = start + timedelta(minutes=task.duration_minutes)
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:{task.id}@{settings.CALENDAR_UID_DOMAIN}",
                f"DTSTAMP:{stamp}",
                f"DTSTART:{_format_utc(start)}",
                f"DTEND:{_format_utc(end)}",
                f"SUMMARY:{escape_text(f'{task.task_type.upper()}: {task.topic}')}",
                f"DESCRIPTION:{escape_text(task.description or '')}",
                f"STATUS:{'COMPLETED' if task.is_completed else 'CONFIRMED'}",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"
