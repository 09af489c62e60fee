"""Core event service: event invariants, reminder reset and assignments.

Responsibilities:
- Time invariants: end after start, call time before start
- Clearing ``reminder_sent_at`` when an edit moves the start time, so the
  reminder job evaluates the event afresh
- Creating events from dates picked off an availability request, converting
  the organizer's wall-clock times to UTC
- Assignment status transitions (pending → confirmed/declined)
- Group and per-member upcoming event listings
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Any

from sqlalchemy.orm import Session

from callboard.config import settings
from callboard.errors import NotFoundError, ValidationError
from callboard.models.assignment import AssignmentStatus, EventAssignment
from callboard.models.availability import AvailabilityResponse, ResponseValue
from callboard.models.event import Event, EventType
from callboard.models.group import Group, GroupMember
from callboard.schemas.event import EventOut, PickedDate, UpcomingEventOut
from callboard.services import notification_service
from callboard.services.email_sender import EmailSender
from callboard.services.timezone_service import as_utc, format_event_time, local_to_utc, to_storage

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "description", "event_type", "start_time", "end_time", "location", "call_time")
_TIME_FIELDS = ("start_time", "end_time", "call_time")


def _check_times(start: datetime, end: datetime, call_time: Optional[datetime]) -> None:
    if as_utc(end) <= as_utc(start):
        raise ValidationError("Event end time must be after its start time")
    if call_time is not None and as_utc(call_time) >= as_utc(start):
        raise ValidationError("Call time must be before the event start time")


def get_event(db: Session, event_id: str) -> Event:
    event = db.query(Event).filter(Event.event_id == event_id).first()
    if not event:
        raise NotFoundError("Event not found")
    return event


def create_event(
    db: Session,
    group_id: str,
    title: str,
    start_time: datetime,
    end_time: datetime,
    created_by_id: str,
    event_type: EventType = EventType.other,
    description: Optional[str] = None,
    location: Optional[str] = None,
    call_time: Optional[datetime] = None,
    created_from_request_id: Optional[str] = None,
    commit: bool = True,
) -> Event:
    """Create an event after checking its time invariants."""
    _check_times(start_time, end_time, call_time)
    event = Event(
        group_id=group_id,
        title=title.strip(),
        description=(description or "").strip() or None,
        event_type=EventType(event_type),
        start_time=to_storage(start_time),
        end_time=to_storage(end_time),
        location=(location or "").strip() or None,
        call_time=to_storage(call_time),
        created_by_id=created_by_id,
        created_from_request_id=created_from_request_id,
    )
    db.add(event)
    db.flush()
    if commit:
        db.commit()
        db.refresh(event)
    logger.info("Created event '%s' (%s) in group %s", event.title, event.event_id, group_id)
    return event


def update_event(db: Session, event_id: str, updates: dict[str, Any]) -> Event:
    """Apply field updates. Moving the start time re-arms the reminder."""
    event = get_event(db, event_id)
    previous_start = as_utc(event.start_time)

    for field, value in updates.items():
        if field not in _EDITABLE_FIELDS:
            continue
        if field in ("description", "location") and isinstance(value, str):
            value = value.strip() or None
        elif field == "title" and isinstance(value, str):
            value = value.strip()
        elif field == "event_type" and value is not None:
            value = EventType(value)
        elif field in _TIME_FIELDS:
            value = to_storage(value)
        setattr(event, field, value)

    try:
        if not event.title or event.start_time is None or event.end_time is None:
            raise ValidationError("Title, start time and end time are required")
        _check_times(event.start_time, event.end_time, event.call_time)
    except ValidationError:
        db.rollback()
        raise

    if "start_time" in updates and as_utc(event.start_time) != previous_start:
        if event.reminder_sent_at is not None:
            logger.info("Start time of event %s changed; reminder re-armed", event_id)
        event.reminder_sent_at = None

    db.commit()
    db.refresh(event)
    logger.info("Updated event %s (%s)", event_id, ", ".join(sorted(updates)) or "no fields")
    return event


def delete_event(db: Session, event_id: str) -> None:
    event = get_event(db, event_id)
    db.delete(event)
    db.commit()
    logger.info("Deleted event %s", event_id)


def list_group_events(
    db: Session,
    group_id: str,
    upcoming_only: bool = False,
    event_type: Optional[EventType] = None,
    now: Optional[datetime] = None,
) -> list[Event]:
    """A group's events in start order. ``upcoming_only`` drops events that have already started."""
    query = db.query(Event).filter(Event.group_id == group_id)
    if upcoming_only:
        query = query.filter(Event.start_time >= to_storage(now or datetime.now(timezone.utc)))
    if event_type is not None:
        query = query.filter(Event.event_type == EventType(event_type))
    return query.order_by(Event.start_time).all()


def get_user_upcoming_events(
    db: Session, user_id: str, limit: int = 5, now: Optional[datetime] = None,
) -> list[UpcomingEventOut]:
    """Next events across every group the user belongs to, with the user's own assignment status."""
    cutoff = to_storage(now or datetime.now(timezone.utc))
    rows = (
        db.query(Event, Group.name, EventAssignment.status)
        .join(Group, Event.group_id == Group.group_id)
        .join(GroupMember, (GroupMember.group_id == Event.group_id) & (GroupMember.user_id == user_id))
        .outerjoin(
            EventAssignment,
            (EventAssignment.event_id == Event.event_id) & (EventAssignment.user_id == user_id),
        )
        .filter(Event.start_time >= cutoff)
        .order_by(Event.start_time)
        .limit(limit)
        .all()
    )
    return [
        UpcomingEventOut(
            **EventOut.model_validate(event).model_dump(),
            group_name=group_name,
            user_status=status.value if status else None,
        )
        for event, group_name, status in rows
    ]


# --- Assignments ---


def assign_to_event(db: Session, event_id: str, user_ids: list[str], role: Optional[str] = None) -> int:
    """Add pending assignments; users already assigned are left alone. Returns how many were added."""
    existing = {
        uid for (uid,) in db.query(EventAssignment.user_id).filter(EventAssignment.event_id == event_id).all()
    }
    added = 0
    for uid in user_ids:
        if uid in existing:
            continue
        db.add(EventAssignment(event_id=event_id, user_id=uid, role=role, status=AssignmentStatus.pending))
        existing.add(uid)
        added += 1
    db.commit()
    return added


def update_assignment_status(db: Session, event_id: str, user_id: str, status: AssignmentStatus) -> EventAssignment:
    assignment = (
        db.query(EventAssignment)
        .filter(EventAssignment.event_id == event_id, EventAssignment.user_id == user_id)
        .first()
    )
    if not assignment:
        raise NotFoundError("Assignment not found")
    if status == AssignmentStatus.pending:
        raise ValidationError("An assignment can only be confirmed or declined")
    assignment.status = status
    db.commit()
    db.refresh(assignment)
    logger.info("User %s %s event %s", user_id, status.value, event_id)
    return assignment


def remove_assignment(db: Session, event_id: str, user_id: str) -> None:
    assignment = (
        db.query(EventAssignment)
        .filter(EventAssignment.event_id == event_id, EventAssignment.user_id == user_id)
        .first()
    )
    if not assignment:
        raise NotFoundError("Assignment not found")
    db.delete(assignment)
    db.commit()
    logger.info("Removed user %s from event %s", user_id, event_id)


# --- Events from availability ---


def _available_user_ids(db: Session, request_id: str, day: str) -> list[str]:
    rows = (
        db.query(AvailabilityResponse.user_id, AvailabilityResponse.responses)
        .filter(AvailabilityResponse.request_id == request_id)
        .all()
    )
    return [uid for uid, answers in rows if (answers or {}).get(day) == ResponseValue.available.value]


def create_events_from_availability(
    db: Session,
    group_id: str,
    request_id: str,
    dates: list[PickedDate],
    title: str,
    created_by_id: str,
    event_type: EventType = EventType.other,
    location: Optional[str] = None,
    auto_assign_available: bool = False,
    timezone: Optional[str] = None,
    sender: Optional[EmailSender] = None,
) -> list[Event]:
    """Create one event per picked date.

    Wall-clock times are read in ``timezone`` (the organizer's zone; UTC when
    unset).  With ``auto_assign_available`` every member who answered
    "available" for that date is assigned, and notified when a ``sender`` is
    given.  All events are created in one transaction.
    """
    created = []
    assigned: dict[str, list[str]] = {}
    for picked in dates:
        event = create_event(
            db,
            group_id=group_id,
            title=title,
            start_time=local_to_utc(picked.date, picked.start_time, timezone),
            end_time=local_to_utc(picked.date, picked.end_time, timezone),
            created_by_id=created_by_id,
            event_type=event_type,
            location=location,
            created_from_request_id=request_id,
            commit=False,
        )
        if auto_assign_available:
            user_ids = _available_user_ids(db, request_id, picked.date)
            for uid in user_ids:
                db.add(EventAssignment(event_id=event.event_id, user_id=uid, status=AssignmentStatus.pending))
            assigned[event.event_id] = user_ids
        created.append(event)

    db.commit()
    for event in created:
        db.refresh(event)
    logger.info("Created %d events from availability request %s", len(created), request_id)

    if sender is not None:
        _notify_assignees(db, group_id, created, assigned, sender)
    return created


def _notify_assignees(
    db: Session, group_id: str, events: list[Event], assigned: dict[str, list[str]], sender: EmailSender,
) -> None:
    group_name = db.query(Group.name).filter(Group.group_id == group_id).scalar() or ""
    base_url = settings.APP_URL.rstrip("/")
    for event in events:
        user_ids = assigned.get(event.event_id)
        if not user_ids:
            continue
        for recipient in notification_service.load_group_recipients(db, group_id, user_ids=user_ids):
            notification_service.send_event_assignment_notification(
                sender,
                event_title=event.title,
                event_type=event.event_type.value,
                date_time=format_event_time(event.start_time, event.end_time, recipient.timezone),
                group_name=group_name,
                recipient=recipient,
                event_url=f"{base_url}/groups/{group_id}/events/{event.event_id}",
            )
