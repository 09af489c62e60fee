"""JobLock ORM model: lease row backing the reminder job lock on stores
without transaction-scoped advisory locks (e.g. SQLite)."""
from sqlalchemy import Column, String, DateTime
from callboard.database import Base


class JobLock(Base):
    __tablename__ = "job_locks"

    name = Column(String(100), primary_key=True)
    holder = Column(String(36), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
