"""Eligibility filter: which entrepreneurships are in scope for a view, and at which tier."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from quota.config import normalize_tier
from quota.models import Entrepreneurship, QuotaAssignment
from quota.scoring import EMPTY, Aggregate, classify

VIEW_ALL = "all"
VIEW_BENEFICIARIES = "beneficiaries"
VIEW_CANDIDATES = "candidates"
VIEWS = (VIEW_ALL, VIEW_BENEFICIARIES, VIEW_CANDIDATES)


def annotate(
    ent: Entrepreneurship,
    agg: Aggregate,
    approved: QuotaAssignment | None,
) -> dict[str, Any]:
    """Flatten an entrepreneurship with its aggregate and approved assignment (if any)."""
    classified = classify(agg.score) if agg.score is not None else None
    return {
        "id": ent.id,
        "name": ent.name,
        "user_id": ent.user_id,
        "owner_name": ent.owner.full_name if ent.owner else "",
        "score": agg.score,
        "evaluation_count": agg.count,
        "is_beneficiary": approved is not None,
        "assigned_tier": approved.tier if approved else None,
        "cohort": approved.cohort if approved else None,
        "classified_tier": classified,
        "effective_tier": approved.tier if approved else classified,
    }


def filter_entities(
    entities: Iterable[Entrepreneurship],
    aggregates: Mapping[int, Aggregate],
    approved: Mapping[int, QuotaAssignment],
    view: str = VIEW_ALL,
    tier: str | None = None,
) -> list[dict[str, Any]]:
    """Return the annotated entrepreneurships in scope for *view*, optionally at *tier*.

    ``approved`` maps entrepreneurship id to its approved assignment. Approved
    entrepreneurships are matched on their assigned tier; everyone else on the
    tier classified from their aggregated score, so an unscored candidate never
    matches an active tier filter.
    """
    if view not in VIEWS:
        raise ValueError(f"Unknown view '{view}' (expected one of: {', '.join(VIEWS)})")
    if tier:
        tier = normalize_tier(tier)

    rows = [annotate(ent, aggregates.get(ent.id, EMPTY), approved.get(ent.id)) for ent in entities]

    if view == VIEW_BENEFICIARIES:
        rows = [r for r in rows if r["is_beneficiary"]]
    elif view == VIEW_CANDIDATES:
        rows = [r for r in rows if not r["is_beneficiary"]]

    if tier:
        rows = [r for r in rows if r["effective_tier"] == tier]
    return rows
