"""Pytest fixtures: file-backed SQLite database per test, seeding helpers, fake email sender."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from callboard.database import Base, get_db
from callboard.main import app

# Import all models so they register with Base.metadata
from callboard.models.user import User                                   # noqa: F401
from callboard.models.group import Group, GroupMember, GroupRole         # noqa: F401
from callboard.models.availability import AvailabilityRequest, AvailabilityResponse  # noqa: F401
from callboard.models.event import Event, EventType                      # noqa: F401
from callboard.models.assignment import EventAssignment, AssignmentStatus  # noqa: F401
from callboard.models.job_lock import JobLock                            # noqa: F401


class FakeEmailSender:
    """Records every message; addresses in ``fail_for`` report failure."""

    def __init__(self, fail_for: tuple = ()):
        self.fail_for = set(fail_for)
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return to not in self.fail_for

    @property
    def recipients(self) -> list[str]:
        return [m["to"] for m in self.sent]


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})

    # Enable WAL mode so a second connection can read while another writes
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture(scope="function")
def client(session_factory, email_sender):
    """FastAPI TestClient with the database dependency overridden to use SQLite."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    original_sender = app.state.email_sender
    app.state.email_sender = email_sender
    with TestClient(app) as c:
        yield c
    app.state.email_sender = original_sender
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers: write rows straight through the ORM
# ---------------------------------------------------------------------------
def make_user(db, name: str = "Test User", email: Optional[str] = None, tz: Optional[str] = None) -> User:
    user = User(name=name, email=email or f"{name.lower().replace(' ', '.')}@example.com", timezone=tz)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_group(db, creator: User, name: str = "Test Group") -> Group:
    group = Group(name=name, created_by=creator.user_id)
    db.add(group)
    db.flush()
    db.add(GroupMember(group_id=group.group_id, user_id=creator.user_id, role=GroupRole.admin))
    db.commit()
    db.refresh(group)
    return group


def add_member(db, group: Group, user: User, preferences: Optional[dict] = None) -> GroupMember:
    member = GroupMember(
        group_id=group.group_id, user_id=user.user_id, role=GroupRole.member,
        notification_preferences=preferences,
    )
    db.add(member)
    db.commit()
    return member


def make_event(
    db,
    group: Group,
    creator: User,
    start: datetime,
    end: Optional[datetime] = None,
    title: str = "Show Night",
    event_type: EventType = EventType.show,
    call_time: Optional[datetime] = None,
    reminder_sent_at: Optional[datetime] = None,
    location: Optional[str] = "Main Stage",
) -> Event:
    ev = Event(
        group_id=group.group_id,
        title=title,
        event_type=event_type,
        start_time=start,
        end_time=end or start + timedelta(hours=2),
        call_time=call_time,
        location=location,
        created_by_id=creator.user_id,
        reminder_sent_at=reminder_sent_at,
    )
    db.add(ev)
    db.commit()
    db.refresh(ev)
    return ev


def assign(db, ev: Event, user: User, status: AssignmentStatus = AssignmentStatus.confirmed) -> EventAssignment:
    row = EventAssignment(event_id=ev.event_id, user_id=user.user_id, role="Performer", status=status)
    db.add(row)
    db.commit()
    return row


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
