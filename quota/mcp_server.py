from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from quota import allocator, services
from quota.config import CAPACITIES, TIERS, normalize_tier
from quota.db import init_db, session_scope
from quota.scoring import NullScores, classify

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def quota_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Quota",
    instructions=(
        "Quota allocates slots in a youth entrepreneurship program. "
        "Start with get_quota_usage() for capacity, get_rankings() for the top ventures, "
        "then get_quota_board(tier) before approving or rejecting candidates."
    ),
    lifespan=quota_lifespan,
    json_response=True,
)


def _error(exc: Exception) -> dict:
    code = getattr(exc, "code", "invalid_request")
    return {"error": str(exc), "code": code}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("quota://overview")
def quota_overview() -> str:
    """Overview of Quota: tiers, capacities, and scoring rules."""
    return json.dumps({
        "system": "Quota, cohort allocation for a youth entrepreneurship program",
        "tiers": list(TIERS),
        "capacities": {
            t: {"max_slots": c.max_slots, "max_per_cohort": c.max_per_cohort}
            for t, c in CAPACITIES.items()
        },
        "classification": "score >= 70 -> Scale, 40-69.99 -> Growth, below 40 -> Starter",
        "aggregation": (
            "Average of qualifying evaluations rounded to 2 decimals. Allocation counts automatic "
            "evaluations and submitted reviewer evaluations approved by an admin; the ranking "
            "counts automatic or submitted evaluations."
        ),
        "workflow": [
            "1. get_quota_usage(): used and available slots per tier and cohort.",
            "2. get_rankings(): top ventures by average score.",
            "3. get_quota_board(tier): eligible candidates for a tier with decisions.",
            "4. approve_entrepreneurship(id, tier, cohort) / reject_entrepreneurship(id, tier).",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Reports
# ---------------------------------------------------------------------------


@mcp.tool()
def get_rankings(limit: int = 100, null_scores: str = "exclude") -> list[dict] | dict:
    """Rank entrepreneurships by average evaluation score.

    Args:
        limit: Max results (default 100).
        null_scores: "exclude" drops evaluations without a score, "zero" counts them as 0.
    """
    try:
        nulls = NullScores(null_scores)
    except ValueError as exc:
        return _error(exc)
    with session_scope() as session:
        return services.get_rankings(session, max(1, limit), nulls)


@mcp.tool()
def get_quota_usage() -> list[dict]:
    """Used and available slots for every tier and cohort."""
    with session_scope() as session:
        return services.all_quota_usage(session)


@mcp.tool()
def get_quota_board(tier: str, sort_dir: str = "desc") -> dict:
    """Eligible entrepreneurships for a tier (Starter, Growth, Scale) with their decision state."""
    try:
        tier = normalize_tier(tier)
    except ValueError as exc:
        return _error(exc)
    with session_scope() as session:
        return services.quota_board(session, tier, sort_dir)


@mcp.tool()
def list_entrepreneurships(view: str = "all", tier: str | None = None) -> list[dict] | dict:
    """List entrepreneurships for a view (all, beneficiaries, candidates), optionally at one tier."""
    with session_scope() as session:
        try:
            return services.query_entrepreneurships(session, view, tier)
        except ValueError as exc:
            return _error(exc)


@mcp.tool()
def get_progress(filter_by: str = "all", sort_by: str = "progress") -> dict:
    """Review progress: submitted evaluations against assigned mentors."""
    with session_scope() as session:
        try:
            return services.get_progress(session, filter_by, sort_by)
        except ValueError as exc:
            return _error(exc)


@mcp.tool()
def classify_score(score: float) -> dict:
    """Tier a score would classify into when no slot has been approved yet."""
    return {"score": score, "tier": classify(score)}


# ---------------------------------------------------------------------------
# Tools: Decisions
# ---------------------------------------------------------------------------


@mcp.tool()
async def approve_entrepreneurship(
    entrepreneurship_id: int, tier: str, cohort: int | None = None, actor_id: int | None = None,
) -> dict:
    """Approve an entrepreneurship into a tier. Starter and Growth need cohort 1 or 2."""
    with session_scope() as session:
        try:
            return await services.approve_quota(session, entrepreneurship_id, tier, cohort, actor_id)
        except (allocator.AllocationError, ValueError) as exc:
            session.rollback()
            return _error(exc)


@mcp.tool()
async def reject_entrepreneurship(entrepreneurship_id: int, tier: str, actor_id: int | None = None) -> dict:
    """Reject an entrepreneurship for a tier. Rejecting twice changes nothing."""
    with session_scope() as session:
        try:
            return await services.reject_quota(session, entrepreneurship_id, tier, actor_id)
        except (allocator.AllocationError, ValueError) as exc:
            session.rollback()
            return _error(exc)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Quota MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
