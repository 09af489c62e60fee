"""Reminder job: emails confirmed attendees ahead of upcoming events.

Every ``REMINDER_INTERVAL_MINUTES`` each replica runs one tick:

1. open a transaction and try the job lock without waiting; a replica that
   loses the race does nothing this tick,
2. find events with no reminder yet whose call time (or start time) falls
   within the next ``REMINDER_HORIZON_HOURS``,
3. dispatch a reminder to every confirmed attendee, rendered in the
   attendee's own time zone (opt-outs are enforced by the notifier),
4. stamp ``reminder_sent_at`` on the event whatever the send outcomes were,
5. commit, which makes the stamps visible and drops the lock together.

A store failure anywhere rolls the whole tick back; the next tick retries.
"""
import functools
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from callboard.config import Settings, settings
from callboard.schemas.reminder import Recipient, ReminderRunResult
from callboard.services import notification_service
from callboard.services.email_sender import EmailSender
from callboard.services.notification_service import FormattedEvent
from callboard.services.reminder_store import ReminderStore
from callboard.services.timezone_service import as_utc

logger = logging.getLogger(__name__)

Notify = Callable[[Recipient, FormattedEvent], bool]


def process_reminders(
    store: ReminderStore,
    notify: Notify,
    now: Optional[datetime] = None,
    config: Settings = settings,
    clock: Callable[[], float] = time.monotonic,
) -> ReminderRunResult:
    """Run a single reminder tick. Store errors propagate after rollback."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    horizon = now + timedelta(hours=config.REMINDER_HORIZON_HOURS)
    deadline = None
    if config.REMINDER_TICK_DEADLINE_SECONDS > 0:
        deadline = clock() + config.REMINDER_TICK_DEADLINE_SECONDS

    with store.transaction() as tx:
        if not tx.try_acquire_job_lock(config.REMINDER_LOCK_KEY):
            logger.debug("Reminder job skipped, another instance holds the lock")
            return ReminderRunResult(acquired=False)

        due = tx.find_due_events(now, horizon)
        result = ReminderRunResult(acquired=True)
        if not due:
            logger.debug("No events needing reminders")
            return result

        logger.info("Processing reminders for %d events", len(due))
        for event in due:
            if deadline is not None and clock() > deadline:
                # Unmarked events stay pending and are picked up next tick
                result.deadline_hit = True
                logger.warning(
                    "Reminder tick deadline reached, %d events deferred",
                    len(due) - result.events_processed,
                )
                break

            attendees = tx.find_confirmed_attendees(event.event_id)
            for attendee in attendees:
                formatted = notification_service.format_event_for_recipient(
                    event, attendee.timezone, config.APP_URL,
                )
                notify(attendee, formatted)
                result.notifications_dispatched += 1

            tx.mark_reminded(event.event_id, now)
            result.events_processed += 1
            logger.info("Reminders dispatched for event %s (%d attendees)", event.event_id, len(attendees))

    return result


class ReminderScheduler:
    """Periodic driver for ``process_reminders``.

    Owned by the application's composition root; ``start`` is a no-op when
    the job is already running, so reloads cannot stack timers.
    """

    JOB_ID = "event_reminders"

    def __init__(self, store: ReminderStore, sender: EmailSender, config: Settings = settings) -> None:
        self.store = store
        self.config = config
        self.notify: Notify = functools.partial(notification_service.send_event_reminder_notification, sender)
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def run_once(self) -> Optional[ReminderRunResult]:
        """One tick; failures are logged and left for the next tick."""
        try:
            return process_reminders(self.store, self.notify, config=self.config)
        except Exception:
            logger.exception("Reminder job failed")
            return None

    def start(self) -> bool:
        if not self.config.ENABLE_REMINDERS:
            logger.info("Reminder job disabled (ENABLE_REMINDERS is false)")
            return False
        if self.running:
            logger.debug("Reminder job already running")
            return False

        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self.config.REMINDER_INTERVAL_MINUTES),
            id=self.JOB_ID,
            name="Event reminder emails",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Reminder job started (every %d minutes)", self.config.REMINDER_INTERVAL_MINUTES)
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Reminder job stopped")
        self._scheduler = None
