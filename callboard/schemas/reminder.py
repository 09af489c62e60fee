"""Read models passed between the reminder store, scheduler and notifier."""
from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class DueEvent(BaseModel):
    event_id: str
    group_id: str
    group_name: str
    title: str
    event_type: str
    start_time: datetime
    end_time: datetime
    location: Optional[str] = None
    call_time: Optional[datetime] = None


class Recipient(BaseModel):
    user_id: str
    email: str
    name: str
    timezone: Optional[str] = None
    notification_preferences: Optional[dict[str, Any]] = None


class ReminderRunResult(BaseModel):
    """Outcome of one reminder tick."""

    acquired: bool
    events_processed: int = 0
    notifications_dispatched: int = 0
    deadline_hit: bool = False
