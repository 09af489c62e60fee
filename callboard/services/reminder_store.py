"""Persistence operations used by the reminder job.

All operations run inside ``ReminderStore.transaction()``; the job lock taken
there is released when that transaction ends, whether it commits or rolls
back.

On PostgreSQL the lock is a transaction-scoped advisory lock.  Other
dialects get a lease row in ``job_locks`` claimed on its own autocommit
connection so the attempt never waits on another replica; the lease is
cleared when the transaction ends and expires on its own if the process dies
first.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import ContextManager, Iterator, Optional, Protocol

from sqlalchemy import Connection, func, insert, or_, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from callboard.models.assignment import AssignmentStatus, EventAssignment
from callboard.models.event import Event
from callboard.models.group import Group, GroupMember
from callboard.models.job_lock import JobLock
from callboard.models.user import User
from callboard.schemas.reminder import DueEvent, Recipient

logger = logging.getLogger(__name__)


@contextmanager
def _no_busy_wait(conn: Connection) -> Iterator[None]:
    """Make SQLite report a held write lock at once instead of retrying until its busy timeout."""
    if conn.dialect.name != "sqlite":
        yield
        return
    cursor = conn.connection.dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA busy_timeout")
        previous = int(cursor.fetchone()[0])
        cursor.execute("PRAGMA busy_timeout = 0")
        try:
            yield
        finally:
            # The connection goes back to the pool; other sessions expect the usual wait
            cursor.execute(f"PRAGMA busy_timeout = {previous}")
    finally:
        cursor.close()


def _is_lock_contention(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return "locked" in message or "busy" in message


class ReminderTransaction(Protocol):
    def try_acquire_job_lock(self, key: str) -> bool:
        ...

    def find_due_events(self, now: datetime, horizon: datetime) -> list[DueEvent]:
        ...

    def find_confirmed_attendees(self, event_id: str) -> list[Recipient]:
        ...

    def mark_reminded(self, event_id: str, at: datetime) -> None:
        ...


class ReminderStore(Protocol):
    def transaction(self) -> ContextManager[ReminderTransaction]:
        ...


class SqlAlchemyReminderTransaction:
    """Reminder queries bound to one open session."""

    def __init__(self, session: Session, lease_ttl: timedelta) -> None:
        self.session = session
        self.lease_ttl = lease_ttl
        self._lease: Optional[tuple[str, str]] = None

    @property
    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def try_acquire_job_lock(self, key: str) -> bool:
        """Non-blocking attempt at the named job lock."""
        if self._dialect == "postgresql":
            return bool(self.session.execute(
                text("SELECT pg_try_advisory_xact_lock(hashtext(:key))"), {"key": key},
            ).scalar())
        return self._claim_lease(key)

    def _claim_lease(self, key: str) -> bool:
        if self._lease is not None:
            return self._lease[0] == key
        now = datetime.now(timezone.utc)
        token = str(uuid.uuid4())
        table = JobLock.__table__
        values = {"holder": token, "expires_at": now + self.lease_ttl}
        try:
            with self.session.get_bind().connect() as conn, _no_busy_wait(conn), conn.begin():
                claimed = conn.execute(
                    update(table)
                    .where(table.c.name == key, or_(table.c.expires_at.is_(None), table.c.expires_at < now))
                    .values(**values)
                ).rowcount
                if not claimed:
                    conn.execute(insert(table).values(name=key, **values))
        except IntegrityError:
            # Row exists and its lease is still live
            return False
        except OperationalError as exc:
            if not _is_lock_contention(exc):
                raise
            # Another replica is mid-write; it holds or is taking the lease
            logger.debug("Job lock %s busy: %s", key, exc.orig)
            return False
        self._lease = (key, token)
        return True

    def release(self) -> None:
        if self._lease is None:
            return
        key, token = self._lease
        table = JobLock.__table__
        with self.session.get_bind().begin() as conn:
            conn.execute(
                update(table)
                .where(table.c.name == key, table.c.holder == token)
                .values(holder=None, expires_at=None)
            )
        self._lease = None

    def find_due_events(self, now: datetime, horizon: datetime) -> list[DueEvent]:
        """Unreminded events whose call time (or start time) falls in [now, horizon], earliest first."""
        effective = func.coalesce(Event.call_time, Event.start_time)
        rows = (
            self.session.query(Event, Group.name)
            .join(Group, Event.group_id == Group.group_id)
            .filter(
                Event.reminder_sent_at.is_(None),
                effective >= now,
                effective <= horizon,
            )
            .order_by(effective)
            .all()
        )
        return [
            DueEvent(
                event_id=event.event_id,
                group_id=event.group_id,
                group_name=group_name,
                title=event.title,
                event_type=event.event_type.value,
                start_time=event.start_time,
                end_time=event.end_time,
                location=event.location,
                call_time=event.call_time,
            )
            for event, group_name in rows
        ]

    def find_confirmed_attendees(self, event_id: str) -> list[Recipient]:
        """Confirmed assignees with their contact details and group preferences."""
        rows = (
            self.session.query(
                User.user_id, User.email, User.name, User.timezone, GroupMember.notification_preferences,
            )
            .select_from(EventAssignment)
            .join(Event, EventAssignment.event_id == Event.event_id)
            .join(User, EventAssignment.user_id == User.user_id)
            .join(
                GroupMember,
                (GroupMember.group_id == Event.group_id) & (GroupMember.user_id == EventAssignment.user_id),
            )
            .filter(
                EventAssignment.event_id == event_id,
                EventAssignment.status == AssignmentStatus.confirmed,
            )
            .all()
        )
        return [
            Recipient(
                user_id=user_id,
                email=email,
                name=name,
                timezone=tz,
                notification_preferences=prefs,
            )
            for user_id, email, name, tz, prefs in rows
        ]

    def mark_reminded(self, event_id: str, at: datetime) -> None:
        self.session.query(Event).filter(Event.event_id == event_id).update(
            {Event.reminder_sent_at: at}, synchronize_session=False,
        )


class SqlAlchemyReminderStore:
    """ReminderStore over a SQLAlchemy session factory. Each transaction gets its own session."""

    def __init__(self, session_factory: sessionmaker, lease_ttl: timedelta = timedelta(minutes=15)) -> None:
        self.session_factory = session_factory
        self.lease_ttl = lease_ttl

    @contextmanager
    def transaction(self) -> Iterator[SqlAlchemyReminderTransaction]:
        session = self.session_factory()
        tx = SqlAlchemyReminderTransaction(session, self.lease_ttl)
        try:
            yield tx
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            try:
                tx.release()
            finally:
                session.close()
