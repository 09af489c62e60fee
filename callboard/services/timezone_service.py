"""Wall-clock ⇄ UTC conversion and timezone-aware display formatting.

Times are stored as UTC instants but entered and displayed as wall-clock
time in a user's IANA zone.  ``local_to_utc`` cannot be solved with a single
offset lookup: the zone's UTC offset depends on the very instant being
computed.  It therefore iterates to a fixed point instead: reinterpret the
current UTC guess in the zone, compare with the requested wall-clock time,
shift by the difference, repeat.

All functions here are pure and safe to call concurrently.
"""
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple, Optional, Union

import pytz

from callboard.errors import InvalidTimeZoneError, ValidationError

# At most one DST shift separates the seed from the answer, so the loop
# converges in two steps; the third is margin.
MAX_ITERATIONS = 3

# How far back to look for a second (earlier) reading of an ambiguous time.
_AMBIGUITY_LOOKBACK = timedelta(hours=6)


class LocalParts(NamedTuple):
    date: str  # "YYYY-MM-DD"
    time: str  # "HH:MM"


def resolve_zone(zone: str):
    """Return the pytz zone for an IANA identifier or raise InvalidTimeZoneError."""
    try:
        return pytz.timezone(zone)
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidTimeZoneError(zone) from exc


def _parse_wall_clock(date_str: str, time_str: str) -> datetime:
    try:
        return datetime.strptime(f"{date_str} {time_str}", "%Y-%m-%d %H:%M")
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid date/time: {date_str!r} {time_str!r}") from exc


def _wall_clock(naive_utc: datetime, tz) -> datetime:
    """Wall-clock reading (naive, minute precision) of a naive-UTC instant in ``tz``."""
    local = naive_utc.replace(tzinfo=timezone.utc).astimezone(tz)
    return local.replace(tzinfo=None, second=0, microsecond=0)


def _earliest_reading(guess: datetime, target: datetime, tz) -> datetime:
    """Prefer the earlier UTC instant when ``target`` occurs twice (fall back)."""
    offset_at_guess = guess.replace(tzinfo=timezone.utc).astimezone(tz).utcoffset()
    offset_before = (guess - _AMBIGUITY_LOOKBACK).replace(tzinfo=timezone.utc).astimezone(tz).utcoffset()
    if offset_before > offset_at_guess:
        candidate = guess - (offset_before - offset_at_guess)
        if _wall_clock(candidate, tz) == target:
            return candidate
    return guess


def local_to_utc(date_str: str, time_str: str, zone: Optional[str]) -> datetime:
    """Convert a wall-clock ``date_str`` (YYYY-MM-DD) + ``time_str`` (HH:MM) in
    ``zone`` to an aware UTC datetime.

    An empty or missing ``zone`` means the pair is already UTC wall-clock
    (legacy rows saved before users had a zone).

    Nonexistent local times (inside a spring-forward gap) return the last
    guess once the iteration bound is hit; ambiguous ones (fall back) return
    the earlier of the two instants.
    """
    target = _parse_wall_clock(date_str, time_str)
    if not zone:
        return target.replace(tzinfo=timezone.utc)

    tz = resolve_zone(zone)
    guess = target
    for _ in range(MAX_ITERATIONS):
        reading = _wall_clock(guess, tz)
        if reading == target:
            return _earliest_reading(guess, target, tz).replace(tzinfo=timezone.utc)
        guess += target - reading
    return guess.replace(tzinfo=timezone.utc)


def as_utc(instant: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_storage(instant: Optional[datetime]) -> Optional[datetime]:
    """UTC form of an instant for a DateTime column. SQLite keeps the wall clock and drops any offset."""
    return as_utc(instant) if instant is not None else None


def _in_zone(instant: datetime, zone: Optional[str]) -> datetime:
    instant = as_utc(instant)
    if not zone:
        return instant.astimezone(timezone.utc)
    return instant.astimezone(resolve_zone(zone))


def utc_to_local_parts(instant: datetime, zone: Optional[str] = None) -> LocalParts:
    """Render a UTC instant as wall-clock date/time strings for edit forms.

    Without a zone the platform's default zone is used.
    """
    instant = as_utc(instant)
    local = instant.astimezone(resolve_zone(zone)) if zone else instant.astimezone()
    return LocalParts(date=local.strftime("%Y-%m-%d"), time=local.strftime("%H:%M"))


# --- Display formatting (UTC when no zone is given) ---


def _clock(local: datetime) -> str:
    hour12 = local.hour % 12 or 12
    period = "PM" if local.hour >= 12 else "AM"
    return f"{hour12}:{local.minute:02d} {period}"


def format_time(instant: datetime, zone: Optional[str] = None) -> str:
    """Format as "7:00 PM"."""
    return _clock(_in_zone(instant, zone))


def format_date(instant: datetime, zone: Optional[str] = None) -> str:
    """Format as "Wed, Mar 4, 2026"."""
    local = _in_zone(instant, zone)
    return f"{local:%a, %b} {local.day}, {local.year}"


def format_date_time(instant: datetime, zone: Optional[str] = None) -> str:
    """Format as "Wed, Mar 4 · 7:00 PM"."""
    local = _in_zone(instant, zone)
    return f"{local:%a, %b} {local.day} · {_clock(local)}"


def format_event_time(start: datetime, end: datetime, zone: Optional[str] = None) -> str:
    """Format as "Wed, Mar 4 · 7:00 PM – 9:00 PM" (the date is the start's local date)."""
    local_start = _in_zone(start, zone)
    local_end = _in_zone(end, zone)
    return f"{local_start:%a, %b} {local_start.day} · {_clock(local_start)} – {_clock(local_end)}"


def _local_date(value: Union[date, datetime], zone: Optional[str]) -> date:
    if isinstance(value, datetime):
        return _in_zone(value, zone).date()
    return value


def format_date_range(
    start: Union[date, datetime], end: Union[date, datetime], zone: Optional[str] = None,
) -> str:
    """Format as "Mar 1 – Mar 28, 2026"; the year is repeated only when the years differ."""
    s = _local_date(start, zone)
    e = _local_date(end, zone)
    end_str = f"{e:%b} {e.day}, {e.year}"
    if s.year == e.year:
        return f"{s:%b} {s.day} – {end_str}"
    return f"{s:%b} {s.day}, {s.year} – {end_str}"


def format_time_range(start_time: Optional[str], end_time: Optional[str]) -> str:
    """Format "HH:MM" bounds as "7:00 PM – 9:00 PM", or "All day" without times."""
    if not start_time or not end_time:
        return "All day"

    def _fmt(hhmm: str) -> str:
        hour, minute = (int(part) for part in hhmm.split(":"))
        return f"{hour % 12 or 12}:{minute:02d} {'PM' if hour >= 12 else 'AM'}"

    return f"{_fmt(start_time)} – {_fmt(end_time)}"
