"""AvailabilityRequest and AvailabilityResponse ORM models."""
import uuid
import enum
from sqlalchemy import (
    Column, String, Text, Date, DateTime, JSON, ForeignKey, UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from callboard.database import Base


class RequestStatus(str, enum.Enum):
    open = "open"
    closed = "closed"


class ResponseValue(str, enum.Enum):
    available = "available"
    maybe = "maybe"
    not_available = "not_available"


class AvailabilityRequest(Base):
    __tablename__ = "availability_requests"

    request_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id = Column(String(36), ForeignKey("groups.group_id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    date_range_start = Column(Date, nullable=False)
    date_range_end = Column(Date, nullable=False)
    requested_dates = Column(JSON, nullable=False)  # ordered list of "YYYY-MM-DD"
    requested_start_time = Column(String(5), nullable=True)  # "HH:MM"
    requested_end_time = Column(String(5), nullable=True)
    status = Column(SAEnum(RequestStatus), nullable=False, default=RequestStatus.open)
    created_by_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)

    responses = relationship(
        "AvailabilityResponse", back_populates="request", cascade="all, delete-orphan",
    )


class AvailabilityResponse(Base):
    __tablename__ = "availability_responses"
    __table_args__ = (UniqueConstraint("request_id", "user_id", name="uq_availability_responses_request_user"),)

    response_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(
        String(36), ForeignKey("availability_requests.request_id", ondelete="CASCADE"), nullable=False,
    )
    user_id = Column(String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    responses = Column(JSON, nullable=False)  # {"YYYY-MM-DD": ResponseValue}
    responded_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    request = relationship("AvailabilityRequest", back_populates="responses")
