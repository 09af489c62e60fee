"""Event API routes: delegates to event_service for invariant enforcement."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from callboard.database import get_db
from callboard.models.event import EventType
from callboard.schemas.event import (
    AssignmentOut, AssignmentStatusUpdate, EventOut, EventUpdate, EventsFromAvailabilityCreate, UpcomingEventOut,
)
from callboard.services import calendar_export, event_service

logger = logging.getLogger(__name__)
router = APIRouter()


def get_email_sender(request: Request):
    return request.app.state.email_sender


@router.get("/", response_model=list[EventOut])
def list_events(
    group_id: str = Query(...),
    upcoming: bool = Query(False),
    event_type: Optional[EventType] = Query(None),
    db: Session = Depends(get_db),
):
    """List a group's events in start order."""
    return event_service.list_group_events(db, group_id, upcoming_only=upcoming, event_type=event_type)


@router.get("/upcoming", response_model=list[UpcomingEventOut])
def list_user_upcoming(
    user_id: str = Query(...),
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
):
    """A member's next events across all of their groups."""
    return event_service.get_user_upcoming_events(db, user_id, limit=limit)


@router.post("/from-availability", response_model=list[EventOut], status_code=status.HTTP_201_CREATED)
def create_from_availability(
    payload: EventsFromAvailabilityCreate,
    db: Session = Depends(get_db),
    sender=Depends(get_email_sender),
):
    """Create events for dates picked from an availability request."""
    events = event_service.create_events_from_availability(
        db,
        group_id=payload.group_id,
        request_id=payload.request_id,
        dates=payload.dates,
        title=payload.title,
        created_by_id=payload.created_by_id,
        event_type=payload.event_type,
        location=payload.location,
        auto_assign_available=payload.auto_assign_available,
        timezone=payload.timezone,
        sender=sender,
    )
    logger.info(
        "User %s scheduled %d dates from availability request %s",
        payload.created_by_id, len(events), payload.request_id,
    )
    return events


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return event_service.get_event(db, event_id)


@router.patch("/{event_id}", response_model=EventOut)
def update_event(event_id: str, payload: EventUpdate, db: Session = Depends(get_db)):
    """Update an event. Changing the start time re-arms its reminder."""
    return event_service.update_event(db, event_id, payload.model_dump(exclude_unset=True))


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(event_id: str, db: Session = Depends(get_db)):
    event_service.delete_event(db, event_id)


@router.get("/{event_id}/calendar.ics")
def export_event(event_id: str, role: Optional[str] = Query(None), db: Session = Depends(get_db)):
    """Download the event as an iCalendar file. Performers at shows start at call time."""
    event = event_service.get_event(db, event_id)
    return Response(
        content=calendar_export.event_to_ics(event, role=role),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{calendar_export.ics_filename(event.title)}"'},
    )


@router.post("/{event_id}/assignments/{user_id}/status", response_model=AssignmentOut)
def set_assignment_status(
    event_id: str, user_id: str, payload: AssignmentStatusUpdate, db: Session = Depends(get_db),
):
    """Confirm or decline an assignment."""
    return event_service.update_assignment_status(db, event_id, user_id, payload.status)


@router.delete("/{event_id}/assignments/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_assignment(event_id: str, user_id: str, db: Session = Depends(get_db)):
    event_service.remove_assignment(db, event_id, user_id)
