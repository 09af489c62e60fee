"""Availability API routes: thin plumbing over availability_service."""
import logging
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from callboard.database import get_db
from callboard.schemas.availability import (
    AggregatedResults, AvailabilityRequestOut, AvailabilityRequestSummary, AvailabilityResponseSubmit,
)
from callboard.services import availability_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=list[AvailabilityRequestSummary])
def list_requests(group_id: str = Query(...), db: Session = Depends(get_db)):
    """A group's availability requests, open ones first."""
    return availability_service.list_group_availability_requests(db, group_id)


@router.get("/{request_id}/results", response_model=AggregatedResults)
def get_results(request_id: str, db: Session = Depends(get_db)):
    """Per-date tallies and scores for the results heatmap."""
    return availability_service.get_aggregated_results(db, request_id)


@router.put("/{request_id}/responses/{user_id}")
def submit_response(
    request_id: str, user_id: str, payload: AvailabilityResponseSubmit, db: Session = Depends(get_db),
):
    """Create or replace a member's answers."""
    answers = {day: status.value for day, status in payload.responses.items()}
    row = availability_service.submit_availability_response(db, request_id, user_id, answers)
    return {"request_id": row.request_id, "user_id": row.user_id, "responses": row.responses}


@router.post("/{request_id}/close", response_model=AvailabilityRequestOut)
def close_request(request_id: str, db: Session = Depends(get_db)):
    return availability_service.close_availability_request(db, request_id)


@router.post("/{request_id}/reopen", response_model=AvailabilityRequestOut)
def reopen_request(request_id: str, db: Session = Depends(get_db)):
    return availability_service.reopen_availability_request(db, request_id)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(request_id: str, db: Session = Depends(get_db)):
    """Delete a request and its responses; events scheduled from it are kept."""
    availability_service.delete_availability_request(db, request_id)
    logger.info("Availability request %s deleted via API", request_id)
