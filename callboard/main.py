"""FastAPI application entry point and composition root.

The reminder scheduler is built once here and kept on ``app.state``; it is
the only handle to the job's timer.
"""
import logging
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from callboard.config import settings
from callboard.database import Base, SessionLocal, engine
from callboard.errors import register_exception_handlers
from callboard.services.email_sender import build_email_sender
from callboard.services.reminder_service import ReminderScheduler
from callboard.services.reminder_store import SqlAlchemyReminderStore

# Import routers
from callboard.routers import availability, events, notifications

# Import all models so Base.metadata knows about them
from callboard.models.user import User                    # noqa: F401
from callboard.models.group import Group, GroupMember      # noqa: F401
from callboard.models.availability import AvailabilityRequest, AvailabilityResponse  # noqa: F401
from callboard.models.event import Event                  # noqa: F401
from callboard.models.assignment import EventAssignment   # noqa: F401
from callboard.models.job_lock import JobLock             # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Callboard",
    description="Group scheduling: availability aggregation and event reminders",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Register routers
app.include_router(availability.router, prefix="/api/availability", tags=["Availability"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(notifications.router, prefix="/api/groups", tags=["Notifications"])

app.state.email_sender = build_email_sender(settings)
app.state.reminder_scheduler = ReminderScheduler(
    SqlAlchemyReminderStore(SessionLocal, lease_ttl=timedelta(seconds=settings.REMINDER_LOCK_TTL_SECONDS)),
    app.state.email_sender,
)


@app.on_event("startup")
def on_startup():
    """Create tables in SQLite dev mode and start the reminder job."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    app.state.reminder_scheduler.start()


@app.on_event("shutdown")
def on_shutdown():
    app.state.reminder_scheduler.shutdown(wait=False)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "reminders": app.state.reminder_scheduler.running}
