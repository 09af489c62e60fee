"""Pydantic schemas for availability requests, responses and aggregated results."""
from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field

from callboard.models.availability import ResponseValue


class Respondent(BaseModel):
    name: str
    status: str


class AggregatedDateResult(BaseModel):
    """Per-date tally behind the results heatmap. Derived, never persisted."""

    date: str
    available: int
    maybe: int
    not_available: int
    no_response: int
    total: int
    score: int
    respondents: list[Respondent] = []


class AggregatedResults(BaseModel):
    dates: list[AggregatedDateResult]
    total_members: int
    total_responded: int
    best_dates: list[str] = []


class MemberResponse(BaseModel):
    """One member's answers, as fed to the aggregator."""

    user_name: str
    responses: dict[str, str] = Field(default_factory=dict)


class AvailabilityResponseSubmit(BaseModel):
    responses: dict[str, ResponseValue]


class AvailabilityRequestOut(BaseModel):
    request_id: str
    group_id: str
    title: str
    requested_dates: list[str]
    requested_start_time: Optional[str] = None
    requested_end_time: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}


class AvailabilityRequestSummary(AvailabilityRequestOut):
    """Row in a group's list of availability requests."""

    created_by_name: str
    response_count: int
    member_count: int
