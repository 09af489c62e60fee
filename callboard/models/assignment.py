"""EventAssignment ORM model."""
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from callboard.database import Base


class AssignmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    declined = "declined"


class EventAssignment(Base):
    __tablename__ = "event_assignments"

    event_id = Column(String(36), ForeignKey("events.event_id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    role = Column(String(100), nullable=True)  # free text, e.g. "Performer"
    status = Column(SAEnum(AssignmentStatus), nullable=False, default=AssignmentStatus.pending)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="assignments")
