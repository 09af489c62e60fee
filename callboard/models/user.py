"""User ORM model."""
import uuid
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from callboard.database import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(100), nullable=True)  # IANA tz, None = not set
    created_at = Column(DateTime(timezone=True), server_default=func.now())
