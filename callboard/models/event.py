"""Event ORM model."""
import uuid
import enum
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from callboard.database import Base


class EventType(str, enum.Enum):
    rehearsal = "rehearsal"
    show = "show"
    other = "other"


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (Index("ix_events_reminder_pending", "reminder_sent_at", "start_time"),)

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id = Column(String(36), ForeignKey("groups.group_id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(SAEnum(EventType), nullable=False, default=EventType.other)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(500), nullable=True)
    # Arrival time for performers; only meaningful for shows
    call_time = Column(DateTime(timezone=True), nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    created_from_request_id = Column(
        String(36), ForeignKey("availability_requests.request_id", ondelete="SET NULL"), nullable=True,
    )
    # Idempotence marker for the reminder job: NULL = pending, set = sent
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    assignments = relationship("EventAssignment", back_populates="event", cascade="all, delete-orphan")
