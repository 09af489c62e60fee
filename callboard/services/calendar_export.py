"""iCalendar (RFC 5545) export for a single event.

Instants are written in UTC ("Z" form) so calendar clients place them in the
reader's own zone.  Performers get the show's call time as the start, since
that is when they need to be there.
"""
import re
from datetime import datetime, timezone
from typing import Optional

from callboard.models.event import Event, EventType
from callboard.services.timezone_service import as_utc

PRODID = "-//Callboard//Events//EN"
PERFORMER_ROLE = "Performer"

# Content lines are folded at 75 characters; continuations start with a space
_LINE_LIMIT = 75


def _ics_instant(value: datetime) -> str:
    return as_utc(value).strftime("%Y%m%dT%H%M%SZ")


def _escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    if len(line) <= _LINE_LIMIT:
        return line
    parts = [line[:_LINE_LIMIT]]
    rest = line[_LINE_LIMIT:]
    while rest:
        parts.append(" " + rest[:_LINE_LIMIT - 1])
        rest = rest[_LINE_LIMIT - 1:]
    return "\r\n".join(parts)


def event_start_for_role(event: Event, role: Optional[str]) -> datetime:
    if role == PERFORMER_ROLE and event.event_type == EventType.show and event.call_time is not None:
        return event.call_time
    return event.start_time


def event_to_ics(event: Event, role: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Render ``event`` as a one-event VCALENDAR document with CRLF line endings."""
    stamp = now or datetime.now(timezone.utc)
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{event.event_id}@callboard",
        f"DTSTAMP:{_ics_instant(stamp)}",
        f"DTSTART:{_ics_instant(event_start_for_role(event, role))}",
        f"DTEND:{_ics_instant(event.end_time)}",
        f"SUMMARY:{_escape(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{_escape(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{_escape(event.location)}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"


def ics_filename(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", title) + ".ics"
