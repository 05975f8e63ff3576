from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from quota import allocator, services
from quota.config import RANKING_LIMIT, normalize_tier
from quota.db import get_session, init_db
from quota.eligibility import VIEWS
from quota.schemas import (
    ApproveRequest,
    AssignmentOut,
    EntrepreneurshipRow,
    ProgressOut,
    QuotaBoard,
    QuotaStatusOut,
    QuotaUsage,
    RankingItem,
    RejectRequest,
    StatsOut,
)
from quota.scoring import NullScores

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Quota",
    version="0.1.0",
    description=(
        "Cohort allocation API for a youth entrepreneurship program. "
        "Rank evaluated ventures, browse candidates and beneficiaries by tier, "
        "and approve or reject them into capacity-limited tiers and cohorts."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Rankings", "description": "Top-100 ranking by average evaluation score."},
        {"name": "Entrepreneurships", "description": "Candidates and beneficiaries by view and tier."},
        {"name": "Quotas", "description": "Tier/cohort capacity, allocation board, approve and reject."},
        {"name": "Progress", "description": "Review progress against assigned mentors."},
        {"name": "Stats", "description": "Aggregate statistics."},
    ],
)

# AllocationError subclass -> HTTP status
_ERROR_STATUS = {
    allocator.NotFoundError: 404,
    allocator.IneligibleError: 422,
    allocator.PendingEvaluationsError: 422,
    allocator.InvalidCohortError: 422,
    allocator.AlreadyApprovedError: 409,
    allocator.CapacityExceededError: 409,
    allocator.CohortCapacityExceededError: 409,
}


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _tier_or_400(tier: str) -> str:
    try:
        return normalize_tier(tier)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


def _allocation_http_error(exc: allocator.AllocationError) -> HTTPException:
    status = _ERROR_STATUS.get(type(exc), 409)
    return HTTPException(status, {"code": exc.code, "message": exc.message})


def _download(content: str | bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content, media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Routes: Rankings
# ---------------------------------------------------------------------------


@app.get("/api/rankings", response_model=list[RankingItem],
         tags=["Rankings"], summary="Top entrepreneurships by average evaluation score")
async def list_rankings(
    limit: int = Query(RANKING_LIMIT, ge=1, le=1000),
    null_scores: NullScores = Query(NullScores.EXCLUDE, description="exclude (default) or zero"),
    session: Session = Depends(db_session),
):
    return services.get_rankings(session, limit, null_scores)


@app.get("/api/rankings/export.csv", tags=["Rankings"], summary="Download the ranking as CSV")
async def export_rankings(
    null_scores: NullScores = Query(NullScores.EXCLUDE),
    session: Session = Depends(db_session),
):
    csv_text = services.rankings_csv(session, nulls=null_scores)
    return _download(csv_text, "text/csv", f"top_100_rankings_{date.today().isoformat()}.csv")


# ---------------------------------------------------------------------------
# Routes: Entrepreneurships
# ---------------------------------------------------------------------------


@app.get("/api/entrepreneurships", response_model=list[EntrepreneurshipRow],
         tags=["Entrepreneurships"], summary="Filter entrepreneurships by view and effective tier")
async def list_entrepreneurships(
    view: str = Query("all", description="all, beneficiaries, or candidates"),
    tier: str | None = Query(None, description="Starter, Growth, or Scale"),
    session: Session = Depends(db_session),
):
    if view not in VIEWS:
        raise HTTPException(400, f"Unknown view '{view}'")
    return services.query_entrepreneurships(session, view, _tier_or_400(tier) if tier else None)


# ---------------------------------------------------------------------------
# Routes: Quotas
# ---------------------------------------------------------------------------


@app.get("/api/quotas", response_model=list[QuotaUsage],
         tags=["Quotas"], summary="Slot usage for every tier")
async def list_quota_usage(session: Session = Depends(db_session)):
    return services.all_quota_usage(session)


@app.get("/api/quotas/{tier}", response_model=QuotaBoard,
         tags=["Quotas"], summary="Allocation board for a tier: eligible entrepreneurships and decisions")
async def get_quota_board(
    tier: str,
    sort_dir: str = Query("desc", description="asc or desc by average score"),
    session: Session = Depends(db_session),
):
    return services.quota_board(session, _tier_or_400(tier), sort_dir)


@app.post("/api/quotas/{tier}/approve", response_model=AssignmentOut,
          tags=["Quotas"], summary="Approve an entrepreneurship into a tier and cohort")
async def approve(tier: str, body: ApproveRequest, session: Session = Depends(db_session)):
    tier = _tier_or_400(tier)
    try:
        return await services.approve_quota(
            session, body.entrepreneurship_id, tier, cohort=body.cohort, actor_id=body.actor_id,
        )
    except allocator.AllocationError as exc:
        session.rollback()
        raise _allocation_http_error(exc) from exc


@app.post("/api/quotas/{tier}/reject", response_model=AssignmentOut,
          tags=["Quotas"], summary="Reject an entrepreneurship for a tier")
async def reject(tier: str, body: RejectRequest, session: Session = Depends(db_session)):
    tier = _tier_or_400(tier)
    try:
        return await services.reject_quota(session, body.entrepreneurship_id, tier, actor_id=body.actor_id)
    except allocator.AllocationError as exc:
        session.rollback()
        raise _allocation_http_error(exc) from exc


@app.get("/api/quotas/{tier}/export.csv", tags=["Quotas"], summary="Download a tier board as CSV")
async def export_board_csv(
    tier: str,
    state: str | None = Query(None, description="approved, rejected, or pending"),
    session: Session = Depends(db_session),
):
    tier = _tier_or_400(tier)
    csv_text = services.board_csv(session, tier, state)
    return _download(csv_text, "text/csv", f"{tier}_{state or 'todos'}_{date.today().isoformat()}.csv")


@app.get("/api/quotas/{tier}/export.xlsx", tags=["Quotas"], summary="Download a tier board as XLSX")
async def export_board_xlsx(
    tier: str,
    state: str | None = Query(None, description="approved, rejected, or pending"),
    session: Session = Depends(db_session),
):
    tier = _tier_or_400(tier)
    content = services.board_xlsx(session, tier, state)
    return _download(
        content,
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        f"{tier}_{state or 'todos'}_{date.today().isoformat()}.xlsx",
    )


@app.get("/api/users/{user_id}/quota-status", response_model=QuotaStatusOut,
         tags=["Quotas"], summary="Whether a user's entrepreneurship holds an approved slot")
async def get_quota_status(user_id: int, session: Session = Depends(db_session)):
    return services.quota_status(session, user_id)


# ---------------------------------------------------------------------------
# Routes: Progress & Stats
# ---------------------------------------------------------------------------


@app.get("/api/progress", response_model=ProgressOut,
         tags=["Progress"], summary="Submitted evaluations against assigned mentors")
async def get_progress(
    filter: str = Query("all", description="all or pending"),
    sort_by: str = Query("progress", description="progress, name, or score"),
    session: Session = Depends(db_session),
):
    try:
        return services.get_progress(session, filter, sort_by)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Totals, beneficiaries per tier, and candidates per classified tier")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("quota.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
