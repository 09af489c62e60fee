"""Pydantic schemas for Events and assignments."""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from callboard.models.event import EventType
from callboard.models.assignment import AssignmentStatus


class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    event_type: Optional[EventType] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    call_time: Optional[datetime] = None


class EventOut(BaseModel):
    event_id: str
    group_id: str
    title: str
    description: Optional[str] = None
    event_type: str
    start_time: datetime
    end_time: datetime
    location: Optional[str] = None
    call_time: Optional[datetime] = None
    created_by_id: str
    created_from_request_id: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None
    assignments: list[AssignmentOut] = []

    model_config = {"from_attributes": True}


class AssignmentOut(BaseModel):
    user_id: str
    role: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}


class PickedDate(BaseModel):
    date: str        # "YYYY-MM-DD"
    start_time: str  # "HH:MM" local
    end_time: str


class EventsFromAvailabilityCreate(BaseModel):
    group_id: str
    request_id: str
    dates: list[PickedDate]
    title: str
    event_type: EventType = EventType.other
    location: Optional[str] = None
    created_by_id: str
    auto_assign_available: bool = False
    timezone: Optional[str] = None


class AssignmentStatusUpdate(BaseModel):
    status: AssignmentStatus


# Rebuild EventOut now that AssignmentOut is defined
EventOut.model_rebuild()


class UpcomingEventOut(EventOut):
    """An event on a member's dashboard, across all of their groups."""

    group_name: str
    user_status: Optional[str] = None
