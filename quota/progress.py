"""Review progress per entrepreneurship: submitted evaluations against assigned mentors."""
from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

from quota.models import SUBMITTED, Entrepreneurship, MentorAssignment
from quota.scoring import EvaluationLike, NullScores, Qualification, aggregate_all

FILTERS = ("all", "pending")
SORTS = ("progress", "name", "score")


def _submitted(evaluations: Iterable[EvaluationLike]) -> list[EvaluationLike]:
    return [ev for ev in evaluations if ev.status == SUBMITTED]


def progress_percent(submitted: int, mentors: int) -> float:
    if submitted == 0:
        return 0.0
    if mentors == 0:
        return 100.0
    return min(submitted / mentors * 100, 100.0)


def build_progress(
    entities: Iterable[Entrepreneurship],
    evaluations: Iterable[EvaluationLike],
    mentor_assignments: Iterable[MentorAssignment],
    filter_by: str = "all",
    sort_by: str = "progress",
) -> list[dict[str, Any]]:
    if filter_by not in FILTERS:
        raise ValueError(f"Unknown filter '{filter_by}' (expected one of: {', '.join(FILTERS)})")
    if sort_by not in SORTS:
        raise ValueError(f"Unknown sort '{sort_by}' (expected one of: {', '.join(SORTS)})")

    mentors = Counter(m.entrepreneurship_id for m in mentor_assignments if m.active)
    submitted = _submitted(evaluations)
    counts = Counter(ev.entrepreneurship_id for ev in submitted)
    # Every submitted record qualifies under the ranking rule
    averages = aggregate_all(submitted, Qualification.RANKING, NullScores.EXCLUDE)

    items = []
    for ent in entities:
        count = counts.get(ent.id, 0)
        owner = ent.owner
        agg = averages.get(ent.id)
        items.append({
            "entrepreneurship_id": ent.id,
            "name": ent.name,
            "owner_name": owner.full_name if owner else "",
            "email": owner.email if owner else "",
            "mentors_assigned": mentors.get(ent.id, 0),
            "evaluations_submitted": count,
            "average_score": agg.score if agg else None,
            "progress_percent": round(progress_percent(count, mentors.get(ent.id, 0)), 2),
        })

    if filter_by == "pending":
        items = [i for i in items if i["evaluations_submitted"] == 0]

    if sort_by == "progress":
        items.sort(key=lambda i: i["evaluations_submitted"])
    elif sort_by == "name":
        items.sort(key=lambda i: i["name"].casefold())
    else:
        items.sort(key=lambda i: i["average_score"] or 0, reverse=True)
    return items


def summarize(items: list[dict[str, Any]]) -> dict[str, int]:
    without = sum(1 for i in items if i["evaluations_submitted"] == 0)
    return {"total": len(items), "without_evaluations": without, "with_evaluations": len(items) - without}

