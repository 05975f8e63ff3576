"""Pydantic request/response schemas for the Quota API."""
from __future__ import annotations

from pydantic import BaseModel, field_validator


class RankingItem(BaseModel):
    position: int
    entrepreneurship_id: int
    name: str
    owner_name: str
    email: str
    score: float
    evaluation_count: int


class EntrepreneurshipRow(BaseModel):
    id: int
    name: str
    user_id: int | None = None
    owner_name: str = ""
    score: float | None = None
    evaluation_count: int = 0
    is_beneficiary: bool = False
    assigned_tier: str | None = None
    cohort: int | None = None
    classified_tier: str | None = None
    effective_tier: str | None = None


class CohortUsage(BaseModel):
    used: int
    max: int
    available: int


class QuotaUsage(BaseModel):
    tier: str
    max_slots: int
    used: int
    available: int
    percent_used: float
    has_cohorts: bool
    cohorts: dict[str, CohortUsage] = {}


class BoardItem(BaseModel):
    id: int
    name: str
    user_id: int | None = None
    owner_name: str = ""
    score: float
    evaluation_count: int
    mentors_assigned: int = 0
    evaluations_submitted: int = 0
    assignment_id: int | None = None
    state: str | None = None
    cohort: int | None = None


class QuotaBoard(BaseModel):
    usage: QuotaUsage
    items: list[BoardItem]


class ApproveRequest(BaseModel):
    entrepreneurship_id: int
    cohort: int | None = None
    actor_id: int | None = None

    @field_validator("cohort")
    @classmethod
    def cohort_in_range(cls, v: int | None) -> int | None:
        if v is not None and v not in (1, 2):
            raise ValueError("cohort must be 1 or 2")
        return v


class RejectRequest(BaseModel):
    entrepreneurship_id: int
    actor_id: int | None = None


class AssignmentOut(BaseModel):
    id: int
    entrepreneurship_id: int
    tier: str
    cohort: int
    state: str
    approved_by: int | None = None
    assigned_at: str | None = None


class ProgressItem(BaseModel):
    entrepreneurship_id: int
    name: str
    owner_name: str
    email: str
    mentors_assigned: int
    evaluations_submitted: int
    average_score: float | None = None
    progress_percent: float


class ProgressSummary(BaseModel):
    total: int
    without_evaluations: int
    with_evaluations: int


class ProgressOut(BaseModel):
    summary: ProgressSummary
    items: list[ProgressItem]


class QuotaStatusOut(BaseModel):
    approved: bool
    tier: str | None = None
    cohort: int | None = None


class StatsOut(BaseModel):
    total: int
    evaluated: int
    beneficiaries: int
    approved_by_tier: dict[str, int]
    candidates_by_tier: dict[str, int]
