"""Notification preferences and email notifications.

Preferences are opt-out: every category defaults to enabled and stored data
is merged over the defaults.  Each sender here checks the recipient's merged
preferences itself, so callers may dispatch to every recipient
unconditionally.  Senders never raise; transport failures are logged and
reported as ``False``.
"""
import copy
import logging
from html import escape
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from callboard.errors import NotFoundError
from callboard.models.group import GroupMember
from callboard.models.user import User
from callboard.schemas.reminder import DueEvent, Recipient
from callboard.services.email_sender import EmailSender
from callboard.services import timezone_service

logger = logging.getLogger(__name__)

AVAILABILITY_REQUESTS = "availability_requests"
EVENT_NOTIFICATIONS = "event_notifications"
SHOW_REMINDERS = "show_reminders"

DEFAULT_NOTIFICATION_PREFERENCES: dict[str, dict[str, bool]] = {
    AVAILABILITY_REQUESTS: {"email": True},
    EVENT_NOTIFICATIONS: {"email": True},
    SHOW_REMINDERS: {"email": True},
}

_TYPE_EMOJI = {"show": "🎭", "rehearsal": "🎯"}
_TYPE_LABEL = {"show": "Show", "rehearsal": "Rehearsal"}


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


def merge_with_defaults(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Fill missing categories and channels from the defaults.

    Unknown categories and channels in ``stored`` are kept as-is so data
    written by newer code survives a round trip through older code.
    """
    merged: dict[str, Any] = copy.deepcopy(DEFAULT_NOTIFICATION_PREFERENCES)
    for category, channels in (stored or {}).items():
        if isinstance(channels, dict):
            merged[category] = {**merged.get(category, {}), **channels}
        elif category not in merged:
            merged[category] = channels
    return merged


def wants_email(preferences: Optional[dict[str, Any]], category: str) -> bool:
    return bool(merge_with_defaults(preferences).get(category, {}).get("email", True))


def _get_membership(db: Session, group_id: str, user_id: str) -> GroupMember:
    member = (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .first()
    )
    if not member:
        raise NotFoundError("Group membership not found")
    return member


def load_group_recipients(
    db: Session, group_id: str, user_ids: Optional[list[str]] = None, exclude_user_id: Optional[str] = None,
) -> list[Recipient]:
    """Group members (optionally a subset) with contact details and stored preferences."""
    query = (
        db.query(User.user_id, User.email, User.name, User.timezone, GroupMember.notification_preferences)
        .join(GroupMember, GroupMember.user_id == User.user_id)
        .filter(GroupMember.group_id == group_id)
    )
    if user_ids is not None:
        query = query.filter(User.user_id.in_(user_ids))
    if exclude_user_id is not None:
        query = query.filter(User.user_id != exclude_user_id)
    return [
        Recipient(user_id=uid, email=email, name=name, timezone=tz, notification_preferences=prefs)
        for uid, email, name, tz, prefs in query.order_by(User.name).all()
    ]


def get_notification_preferences(db: Session, group_id: str, user_id: str) -> dict[str, Any]:
    return merge_with_defaults(_get_membership(db, group_id, user_id).notification_preferences)


def update_notification_preferences(
    db: Session, group_id: str, user_id: str, updates: dict[str, Any],
) -> dict[str, Any]:
    """Merge ``updates`` into the stored preferences and return the merged result."""
    member = _get_membership(db, group_id, user_id)
    current = merge_with_defaults(member.notification_preferences)
    for category, channels in updates.items():
        if isinstance(channels, dict) and isinstance(current.get(category), dict):
            current[category] = {**current[category], **channels}
        else:
            current[category] = channels
    # Reassign so the JSON column is flagged dirty
    member.notification_preferences = current
    db.commit()
    logger.info("Updated notification preferences for user %s in group %s", user_id, group_id)
    return current


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _layout(content: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0;padding:0;background-color:#f8fafc;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
<table width="100%" cellpadding="0" cellspacing="0" style="background-color:#f8fafc;padding:32px 16px;">
<tr><td align="center">
<table width="100%" cellpadding="0" cellspacing="0" style="max-width:560px;background-color:#ffffff;border-radius:12px;border:1px solid #e2e8f0;">
<tr><td style="background-color:#059669;padding:24px 32px;">
<span style="font-size:20px;font-weight:700;color:#ffffff;">Callboard</span>
</td></tr>
<tr><td style="padding:32px;">
{content}
</td></tr>
<tr><td style="padding:16px 32px 24px;border-top:1px solid #e2e8f0;">
<p style="margin:0;font-size:12px;color:#94a3b8;text-align:center;">
You're receiving this because you're a member of a Callboard group.<br>
To manage notifications, visit your group settings.
</p>
</td></tr>
</table>
</td></tr>
</table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    return (
        '<table cellpadding="0" cellspacing="0" style="margin:24px 0;">'
        '<tr><td style="background-color:#059669;border-radius:8px;padding:12px 24px;">'
        f'<a href="{escape(url)}" style="color:#ffffff;text-decoration:none;font-size:14px;font-weight:600;">'
        f"{escape(label)}</a></td></tr></table>"
    )


def _card(heading: str, *lines: str) -> str:
    body = "".join(
        f'<p style="margin:0 0 4px;font-size:13px;color:#64748b;">{escape(line)}</p>' for line in lines if line
    )
    return (
        '<table cellpadding="0" cellspacing="0" width="100%" '
        'style="background-color:#f0fdf4;border-radius:8px;padding:16px;margin-bottom:8px;"><tr><td>'
        f'<p style="margin:0 0 4px;font-size:16px;font-weight:600;color:#0f172a;">{escape(heading)}</p>'
        f"{body}</td></tr></table>"
    )


def _deliver(sender: EmailSender, to: str, subject: str, html: str, text: str) -> bool:
    try:
        return sender.send(to, subject, html, text)
    except Exception:
        # A transport bug must not escape into the caller's transaction
        logger.exception("Email sender raised while sending to %s", to)
        return False


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class FormattedEvent(BaseModel):
    """Event details rendered for one recipient's time zone."""

    title: str
    event_type: str
    date_time: str
    location: Optional[str] = None
    call_time: Optional[str] = None
    group_name: str
    event_url: str
    preferences_url: str


def format_event_for_recipient(event: DueEvent, zone: Optional[str], app_url: str) -> FormattedEvent:
    """Render ``event`` in ``zone``. An unknown zone raises InvalidTimeZoneError."""
    base = app_url.rstrip("/")
    return FormattedEvent(
        title=event.title,
        event_type=event.event_type,
        date_time=timezone_service.format_event_time(event.start_time, event.end_time, zone),
        location=event.location,
        call_time=timezone_service.format_time(event.call_time, zone) if event.call_time else None,
        group_name=event.group_name,
        event_url=f"{base}/groups/{event.group_id}/events/{event.event_id}",
        preferences_url=f"{base}/groups/{event.group_id}/settings",
    )


def send_event_reminder_notification(
    sender: EmailSender, recipient: Recipient, event: FormattedEvent,
) -> bool:
    """Email an upcoming-event reminder unless the recipient opted out.

    Returns True when the email was sent, False when skipped or failed.
    """
    if not wants_email(recipient.notification_preferences, SHOW_REMINDERS):
        logger.debug("Skipping reminder for %s (show reminders disabled)", recipient.email)
        return False

    emoji = _TYPE_EMOJI.get(event.event_type, "📅")
    lines = [f"{event.group_name} · {event.date_time}"]
    if event.call_time:
        lines.append(f"Call time: {event.call_time}")
    if event.location:
        lines.append(f"📍 {event.location}")

    html = _layout(
        '<h1 style="margin:0 0 8px;font-size:20px;color:#0f172a;">Coming Up Tomorrow</h1>'
        f'<p style="margin:0 0 20px;font-size:14px;color:#64748b;">Hi {escape(recipient.name)}, '
        "here's a reminder about your upcoming event.</p>"
        + _card(f"{emoji} {event.title}", *lines)
        + _button(event.event_url, "View Event Details →")
        + f'<p style="margin:0;font-size:12px;color:#94a3b8;"><a href="{escape(event.preferences_url)}">'
        "Manage notification preferences</a></p>"
    )
    text = f'Reminder: "{event.title}" ({event.group_name}). {event.date_time}.'
    if event.call_time:
        text += f" Call time: {event.call_time}."
    if event.location:
        text += f" Location: {event.location}."
    text += f" View: {event.event_url}"

    ok = _deliver(sender, recipient.email, f'{emoji} Reminder: "{event.title}"', html, text)
    if not ok:
        logger.error("Reminder email to %s for '%s' failed", recipient.email, event.title)
    return ok


# ---------------------------------------------------------------------------
# Availability requests and event announcements
# ---------------------------------------------------------------------------


def send_availability_request_notification(
    sender: EmailSender,
    request_title: str,
    group_name: str,
    date_range: str,
    created_by_name: str,
    recipients: list[Recipient],
    request_url: str,
) -> int:
    """Ask members for their availability. Returns how many emails went out."""
    sent = 0
    for recipient in recipients:
        if not wants_email(recipient.notification_preferences, AVAILABILITY_REQUESTS):
            continue
        html = _layout(
            '<h1 style="margin:0 0 8px;font-size:20px;color:#0f172a;">New Availability Request</h1>'
            f'<p style="margin:0 0 20px;font-size:14px;color:#64748b;">{escape(created_by_name)} '
            "is asking when you're free.</p>"
            + _card(request_title, f"{group_name} · {date_range}")
            + _button(request_url, "Submit Your Availability →")
            + f'<p style="margin:0;font-size:13px;color:#94a3b8;">Hi {escape(recipient.name)}, please respond '
            "so your group can plan around everyone's schedule.</p>"
        )
        text = (
            f'New availability request: "{request_title}" from {created_by_name} ({group_name}). '
            f"Date range: {date_range}. Respond at: {request_url}"
        )
        if _deliver(sender, recipient.email, f'📋 "{request_title}" — submit your availability', html, text):
            sent += 1
    return sent


def send_event_created_notification(
    sender: EmailSender,
    event_title: str,
    event_type: str,
    date_time: str,
    group_name: str,
    recipients: list[Recipient],
    event_url: str,
    location: Optional[str] = None,
) -> int:
    sent = 0
    emoji = _TYPE_EMOJI.get(event_type, "📅")
    for recipient in recipients:
        if not wants_email(recipient.notification_preferences, EVENT_NOTIFICATIONS):
            continue
        html = _layout(
            '<h1 style="margin:0 0 8px;font-size:20px;color:#0f172a;">New Event Created</h1>'
            '<p style="margin:0 0 20px;font-size:14px;color:#64748b;">You\'ve been assigned to an upcoming event.</p>'
            + _card(f"{emoji} {event_title}", f"{group_name} · {date_time}", f"📍 {location}" if location else "")
            + _button(event_url, "View Event Details →")
            + f'<p style="margin:0;font-size:13px;color:#94a3b8;">Hi {escape(recipient.name)}, '
            "please confirm your attendance.</p>"
        )
        where = f" at {location}" if location else ""
        text = f'New event: "{event_title}" ({group_name}). {date_time}{where}. View: {event_url}'
        if _deliver(sender, recipient.email, f'{emoji} "{event_title}" — you\'re assigned', html, text):
            sent += 1
    return sent


def send_event_assignment_notification(
    sender: EmailSender,
    event_title: str,
    event_type: str,
    date_time: str,
    group_name: str,
    recipient: Recipient,
    event_url: str,
) -> bool:
    if not wants_email(recipient.notification_preferences, EVENT_NOTIFICATIONS):
        return False
    emoji = _TYPE_EMOJI.get(event_type, "📅")
    label = _TYPE_LABEL.get(event_type, "Event")
    html = _layout(
        f'<h1 style="margin:0 0 8px;font-size:20px;color:#0f172a;">You\'ve Been Added to a {label}</h1>'
        f'<p style="margin:0 0 20px;font-size:14px;color:#64748b;">Hi {escape(recipient.name)}, '
        "you've been assigned to an event.</p>"
        + _card(f"{emoji} {event_title}", f"{group_name} · {date_time}")
        + _button(event_url, "Confirm Attendance →")
    )
    text = f'You\'ve been added to "{event_title}" ({group_name}). {date_time}. Respond at: {event_url}'
    return _deliver(sender, recipient.email, f'{emoji} You\'ve been added to "{event_title}"', html, text)
