"""Shared business logic for the Quota API and MCP server."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from quota import allocator, exporter, notifier, repository
from quota.config import CAPACITIES, TIERS, get_capacity
from quota.eligibility import VIEW_ALL, annotate, filter_entities
from quota.models import APPROVED, REVIEWER, SUBMITTED, QuotaAssignment
from quota.progress import build_progress, summarize
from quota.ranking import build_rankings
from quota.scoring import EMPTY, NullScores, Qualification, aggregate_all, classify

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def assignment_summary(a: QuotaAssignment) -> dict[str, Any]:
    return {
        "id": a.id,
        "entrepreneurship_id": a.entrepreneurship_id,
        "tier": a.tier,
        "cohort": a.cohort,
        "state": a.state,
        "approved_by": a.approved_by,
        "assigned_at": a.assigned_at.isoformat() if isinstance(a.assigned_at, datetime) else None,
    }


def _usage(tier: str, approved: list[QuotaAssignment]) -> dict[str, Any]:
    cap = CAPACITIES[tier]
    used = len(approved)
    usage: dict[str, Any] = {
        "tier": tier,
        "max_slots": cap.max_slots,
        "used": used,
        "available": cap.max_slots - used,
        "percent_used": round(used / cap.max_slots * 100, 2),
        "has_cohorts": cap.has_cohorts,
        "cohorts": {},
    }
    if cap.has_cohorts:
        per_cohort = Counter(a.cohort for a in approved)
        usage["cohorts"] = {
            str(c): {"used": per_cohort.get(c, 0), "max": cap.max_per_cohort,
                     "available": cap.max_per_cohort - per_cohort.get(c, 0)}
            for c in (1, 2)
        }
    return usage


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def get_rankings(
    session: Session, limit: int | None = None, nulls: NullScores = NullScores.EXCLUDE,
) -> list[dict[str, Any]]:
    entities = repository.list_entrepreneurships(session)
    evaluations = repository.list_evaluations(session)
    if limit is None:
        return build_rankings(entities, evaluations, nulls=nulls)
    return build_rankings(entities, evaluations, limit=limit, nulls=nulls)


def query_entrepreneurships(session: Session, view: str = VIEW_ALL, tier: str | None = None) -> list[dict]:
    entities = repository.list_entrepreneurships(session)
    aggregates = aggregate_all(repository.list_evaluations(session))
    return filter_entities(entities, aggregates, repository.approved_by_entity(session), view, tier)


def quota_usage(session: Session, tier: str) -> dict[str, Any]:
    tier = get_capacity(tier).tier
    return _usage(tier, repository.list_assignments(session, tier, APPROVED))


def all_quota_usage(session: Session) -> list[dict[str, Any]]:
    return [quota_usage(session, tier) for tier in TIERS]


def quota_board(session: Session, tier: str, sort_dir: str = "desc") -> dict[str, Any]:
    """Eligible entrepreneurships for *tier* with their decision state, sorted by score.

    An entrepreneurship belongs to the board when its effective tier is *tier*
    (the tier of its approved assignment, else the tier its score classifies
    into), or when it already has a decision recorded for *tier*.
    """
    tier = get_capacity(tier).tier
    assignments = {a.entrepreneurship_id: a for a in repository.list_assignments(session, tier)}
    approved = repository.approved_by_entity(session)
    entities = repository.list_entrepreneurships(session)
    evaluations = repository.list_evaluations(session)
    aggregates = aggregate_all(evaluations, Qualification.STRICT)
    mentors = Counter(m.entrepreneurship_id for m in repository.list_mentor_assignments(session))
    submitted = Counter(
        ev.entrepreneurship_id for ev in evaluations if ev.kind == REVIEWER and ev.status == SUBMITTED
    )

    items = []
    for ent in entities:
        agg = aggregates.get(ent.id, EMPTY)
        if agg.count == 0:
            continue
        effective = annotate(ent, agg, approved.get(ent.id))["effective_tier"]
        assignment = assignments.get(ent.id)
        if effective != tier and assignment is None:
            continue
        items.append({
            "id": ent.id,
            "name": ent.name,
            "user_id": ent.user_id,
            "owner_name": ent.owner.full_name if ent.owner else "",
            "score": agg.score,
            "evaluation_count": agg.count,
            "mentors_assigned": mentors.get(ent.id, 0),
            "evaluations_submitted": submitted.get(ent.id, 0),
            "assignment_id": assignment.id if assignment else None,
            "state": assignment.state if assignment else None,
            "cohort": assignment.cohort if assignment else None,
        })
    items.sort(key=lambda i: i["score"], reverse=(sort_dir != "asc"))
    usage = _usage(tier, [a for a in assignments.values() if a.state == APPROVED])
    return {"usage": usage, "items": items}


def get_progress(session: Session, filter_by: str = "all", sort_by: str = "progress") -> dict[str, Any]:
    entities = repository.list_entrepreneurships(session)
    evaluations = repository.list_evaluations(session)
    mentors = repository.list_mentor_assignments(session)
    everything = build_progress(entities, evaluations, mentors)
    items = build_progress(entities, evaluations, mentors, filter_by=filter_by, sort_by=sort_by)
    return {"summary": summarize(everything), "items": items}


def quota_status(session: Session, user_id: int) -> dict[str, Any]:
    """Whether the user's entrepreneurship holds an approved slot, and where."""
    ent = repository.entrepreneurship_for_user(session, user_id)
    if ent is None:
        return {"approved": False, "tier": None, "cohort": None}
    approved = repository.approved_by_entity(session).get(ent.id)
    if approved is None:
        return {"approved": False, "tier": None, "cohort": None}
    return {"approved": True, "tier": approved.tier, "cohort": approved.cohort}


def compute_stats(session: Session) -> dict[str, Any]:
    entities = repository.list_entrepreneurships(session)
    aggregates = aggregate_all(repository.list_evaluations(session))
    approved = repository.approved_by_entity(session)
    by_classified: Counter[str] = Counter()
    for ent in entities:
        agg = aggregates.get(ent.id, EMPTY)
        if ent.id not in approved and agg.score is not None:
            by_classified[classify(agg.score)] += 1
    return {
        "total": len(entities),
        "evaluated": sum(1 for ent in entities if aggregates.get(ent.id, EMPTY).count > 0),
        "beneficiaries": len(approved),
        "approved_by_tier": dict(Counter(a.tier for a in approved.values())),
        "candidates_by_tier": dict(by_classified),
    }


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


async def _notify(session: Session, assignment: QuotaAssignment) -> None:
    ent = repository.get_entrepreneurship(session, assignment.entrepreneurship_id)
    if ent is None:
        return
    await notifier.send_decision(notifier.decision_payload(ent, assignment, ent.owner))


async def approve_quota(
    session: Session, entrepreneurship_id: int, tier: str,
    cohort: int | None = None, actor_id: int | None = None,
) -> dict[str, Any]:
    """Approve, commit, then notify. Raises ``allocator.AllocationError`` before any write."""
    assignment = allocator.approve(session, entrepreneurship_id, tier, cohort=cohort, actor_id=actor_id)
    session.commit()
    await _notify(session, assignment)
    return assignment_summary(assignment)


async def reject_quota(
    session: Session, entrepreneurship_id: int, tier: str, actor_id: int | None = None,
) -> dict[str, Any]:
    """Reject, commit, then notify. A repeated rejection sends no second notification."""
    assignment, changed = allocator.reject(session, entrepreneurship_id, tier, actor_id=actor_id)
    session.commit()
    if changed:
        await _notify(session, assignment)
    return assignment_summary(assignment)


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

EXPORT_STATES = ("approved", "rejected", exporter.PENDING)


def board_csv(session: Session, tier: str, state: str | None = None) -> str:
    board = quota_board(session, tier)
    columns = exporter.board_columns(board["usage"]["has_cohorts"])
    return exporter.to_csv(exporter.filter_by_state(board["items"], state), columns)


def board_xlsx(session: Session, tier: str, state: str | None = None) -> bytes:
    """One sheet with every row (or only *state*), followed by one sheet per decision state."""
    board = quota_board(session, tier)
    tier = board["usage"]["tier"]
    columns = exporter.board_columns(board["usage"]["has_cohorts"])
    items = board["items"]
    if state:
        sheets = {f"{tier} - {state.capitalize()}": exporter.filter_by_state(items, state)}
    else:
        sheets = {f"{tier} - Todos": items}
        sheets.update({
            f"{tier} - {s.capitalize()}": exporter.filter_by_state(items, s) for s in EXPORT_STATES
        })
    return exporter.to_xlsx(sheets, columns)


def rankings_csv(session: Session, limit: int | None = None, nulls: NullScores = NullScores.EXCLUDE) -> str:
    return exporter.to_csv(get_rankings(session, limit, nulls), exporter.RANKING_COLUMNS)
