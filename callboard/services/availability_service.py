"""Availability service: response collection and per-date aggregation.

``aggregate`` is the scoring core behind the results heatmap and must stay a
pure function: no I/O, no shared state.  The store-backed helpers below feed
it from the database.
"""
import logging
import re
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from callboard.config import settings
from callboard.errors import NotFoundError, ValidationError
from callboard.models.availability import (
    AvailabilityRequest, AvailabilityResponse, RequestStatus, ResponseValue,
)
from callboard.models.event import Event
from callboard.models.group import Group, GroupMember
from callboard.models.user import User
from callboard.schemas.availability import (
    AggregatedDateResult, AggregatedResults, AvailabilityRequestSummary, MemberResponse, Respondent,
)
from callboard.services import notification_service, timezone_service
from callboard.services.email_sender import EmailSender

logger = logging.getLogger(__name__)

AVAILABLE_WEIGHT = 2
MAYBE_WEIGHT = 1

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def score(available: int, maybe: int) -> int:
    """Ranking key for a date: an "available" counts twice a "maybe"."""
    return available * AVAILABLE_WEIGHT + maybe * MAYBE_WEIGHT


def aggregate(
    dates: Sequence[str],
    responses: Sequence[MemberResponse],
    total_members: int,
) -> list[AggregatedDateResult]:
    """Tally responses per date, one result per input date in input order.

    A response without an entry for a date counts as no response for it.
    ``no_response`` is derived from ``total_members`` and is deliberately not
    clamped: a negative value means membership data is stale.
    """
    results = []
    for day in dates:
        counts = {status: 0 for status in ResponseValue}
        respondents = []
        for resp in responses:
            raw = resp.responses.get(day)
            if not raw:
                continue
            try:
                status = ResponseValue(raw)
            except ValueError:
                continue
            counts[status] += 1
            respondents.append(Respondent(name=resp.user_name, status=status.value))

        available = counts[ResponseValue.available]
        maybe = counts[ResponseValue.maybe]
        not_available = counts[ResponseValue.not_available]
        results.append(AggregatedDateResult(
            date=day,
            available=available,
            maybe=maybe,
            not_available=not_available,
            no_response=total_members - available - maybe - not_available,
            total=total_members,
            score=score(available, maybe),
            respondents=respondents,
        ))
    return results


def rank_dates(results: Iterable[AggregatedDateResult], limit: Optional[int] = None) -> list[AggregatedDateResult]:
    """Order results best-first by score. Ties keep their input order."""
    ranked = sorted(results, key=lambda r: r.score, reverse=True)
    return ranked if limit is None else ranked[:limit]


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def create_availability_request(
    db: Session,
    group_id: str,
    title: str,
    date_range_start: date,
    date_range_end: date,
    requested_dates: list[str],
    created_by_id: str,
    description: Optional[str] = None,
    requested_start_time: Optional[str] = None,
    requested_end_time: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    sender: Optional[EmailSender] = None,
) -> AvailabilityRequest:
    """Create an open availability request after checking its invariants.

    With a ``sender``, the other group members are asked for their availability.
    """
    if date_range_end < date_range_start:
        raise ValidationError("Date range end must not precede its start")
    if not requested_dates:
        raise ValidationError("At least one date must be requested")
    for day in requested_dates:
        if not date_range_start <= _parse_date(day) <= date_range_end:
            raise ValidationError(f"Requested date {day} is outside the date range")
    if len(set(requested_dates)) != len(requested_dates):
        raise ValidationError("Requested dates must be unique")

    if (requested_start_time is None) != (requested_end_time is None):
        raise ValidationError("Start and end time must be given together")
    for hhmm in (requested_start_time, requested_end_time):
        if hhmm is not None and not _HHMM.match(hhmm):
            raise ValidationError(f"Invalid time: {hhmm!r}")

    request = AvailabilityRequest(
        group_id=group_id,
        title=title.strip(),
        description=(description or "").strip() or None,
        date_range_start=date_range_start,
        date_range_end=date_range_end,
        requested_dates=list(requested_dates),
        requested_start_time=requested_start_time,
        requested_end_time=requested_end_time,
        status=RequestStatus.open,
        created_by_id=created_by_id,
        expires_at=expires_at,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info("Created availability request '%s' (%s) for group %s", request.title, request.request_id, group_id)
    if sender is not None:
        _notify_members(db, request, sender)
    return request


def _notify_members(db: Session, request: AvailabilityRequest, sender: EmailSender) -> None:
    group_name = db.query(Group.name).filter(Group.group_id == request.group_id).scalar() or ""
    creator_name = db.query(User.name).filter(User.user_id == request.created_by_id).scalar() or ""
    recipients = notification_service.load_group_recipients(
        db, request.group_id, exclude_user_id=request.created_by_id,
    )
    base_url = settings.APP_URL.rstrip("/")
    url = f"{base_url}/groups/{request.group_id}/availability/{request.request_id}"
    sent = notification_service.send_availability_request_notification(
        sender,
        request_title=request.title,
        group_name=group_name,
        date_range=timezone_service.format_date_range(request.date_range_start, request.date_range_end),
        created_by_name=creator_name,
        recipients=recipients,
        request_url=url,
    )
    logger.info("Availability request %s announced to %d of %d members", request.request_id, sent, len(recipients))


def get_availability_request(db: Session, request_id: str) -> AvailabilityRequest:
    request = db.query(AvailabilityRequest).filter(AvailabilityRequest.request_id == request_id).first()
    if not request:
        raise NotFoundError("Availability request not found")
    return request


def submit_availability_response(
    db: Session,
    request_id: str,
    user_id: str,
    responses: dict[str, str],
) -> AvailabilityResponse:
    """Upsert a member's answers. The latest submission replaces the previous one."""
    request = get_availability_request(db, request_id)
    if request.status != RequestStatus.open:
        raise ValidationError("Availability request is closed")

    requested = set(request.requested_dates)
    cleaned = {}
    for day, raw in responses.items():
        if day not in requested:
            raise ValidationError(f"Date {day} was not requested")
        try:
            cleaned[day] = ResponseValue(raw).value
        except ValueError as exc:
            raise ValidationError(f"Invalid availability status: {raw!r}") from exc

    row = (
        db.query(AvailabilityResponse)
        .filter(AvailabilityResponse.request_id == request_id, AvailabilityResponse.user_id == user_id)
        .first()
    )
    if row:
        row.responses = cleaned
    else:
        row = AvailabilityResponse(request_id=request_id, user_id=user_id, responses=cleaned)
        db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("User %s responded to availability request %s (%d dates)", user_id, request_id, len(cleaned))
    return row


def get_user_response(db: Session, request_id: str, user_id: str) -> Optional[dict[str, str]]:
    row = (
        db.query(AvailabilityResponse.responses)
        .filter(AvailabilityResponse.request_id == request_id, AvailabilityResponse.user_id == user_id)
        .first()
    )
    return row.responses if row else None


def get_request_responses(db: Session, request_id: str) -> list[MemberResponse]:
    """All answers for a request, ordered by member name."""
    rows = (
        db.query(User.name, AvailabilityResponse.responses)
        .join(User, AvailabilityResponse.user_id == User.user_id)
        .filter(AvailabilityResponse.request_id == request_id)
        .order_by(User.name)
        .all()
    )
    return [MemberResponse(user_name=name, responses=responses or {}) for name, responses in rows]


def get_aggregated_results(db: Session, request_id: str, top: int = 3) -> AggregatedResults:
    """Aggregate a request against the group's current membership."""
    request = get_availability_request(db, request_id)
    total_members = (
        db.query(func.count(GroupMember.user_id))
        .filter(GroupMember.group_id == request.group_id)
        .scalar()
    ) or 0
    responses = get_request_responses(db, request_id)

    results = aggregate(request.requested_dates, responses, total_members)
    if len(responses) > total_members:
        logger.warning(
            "Request %s has %d responses but group %s has %d members",
            request_id, len(responses), request.group_id, total_members,
        )
    best = [r.date for r in rank_dates(results, limit=top) if r.score > 0]
    return AggregatedResults(
        dates=results,
        total_members=total_members,
        total_responded=len(responses),
        best_dates=best,
    )


def _set_status(db: Session, request_id: str, status: RequestStatus) -> AvailabilityRequest:
    request = get_availability_request(db, request_id)
    request.status = status
    db.commit()
    db.refresh(request)
    logger.info("Availability request %s is now %s", request_id, status.value)
    return request


def close_availability_request(db: Session, request_id: str) -> AvailabilityRequest:
    return _set_status(db, request_id, RequestStatus.closed)


def reopen_availability_request(db: Session, request_id: str) -> AvailabilityRequest:
    return _set_status(db, request_id, RequestStatus.open)


def list_group_availability_requests(db: Session, group_id: str) -> list[AvailabilityRequestSummary]:
    """A group's requests, open ones first, newest first within each status."""
    response_count = (
        db.query(func.count(AvailabilityResponse.response_id))
        .filter(AvailabilityResponse.request_id == AvailabilityRequest.request_id)
        .correlate(AvailabilityRequest)
        .scalar_subquery()
    )
    member_count = (
        db.query(func.count(GroupMember.user_id))
        .filter(GroupMember.group_id == AvailabilityRequest.group_id)
        .correlate(AvailabilityRequest)
        .scalar_subquery()
    )
    rows = (
        db.query(AvailabilityRequest, User.name, response_count, member_count)
        .join(User, AvailabilityRequest.created_by_id == User.user_id)
        .filter(AvailabilityRequest.group_id == group_id)
        .order_by(
            case((AvailabilityRequest.status == RequestStatus.open, 0), else_=1),
            AvailabilityRequest.created_at.desc(),
        )
        .all()
    )
    return [
        AvailabilityRequestSummary(
            request_id=request.request_id,
            group_id=request.group_id,
            title=request.title,
            requested_dates=request.requested_dates,
            requested_start_time=request.requested_start_time,
            requested_end_time=request.requested_end_time,
            status=request.status.value,
            created_by_name=creator,
            response_count=responses or 0,
            member_count=members or 0,
        )
        for request, creator, responses, members in rows
    ]


def delete_availability_request(db: Session, request_id: str) -> None:
    """Delete a request and its responses. Events created from it are kept and unlinked."""
    request = get_availability_request(db, request_id)
    unlinked = (
        db.query(Event)
        .filter(Event.created_from_request_id == request_id)
        .update({Event.created_from_request_id: None}, synchronize_session=False)
    )
    db.delete(request)
    db.commit()
    logger.info("Deleted availability request %s (%d events unlinked)", request_id, unlinked)
