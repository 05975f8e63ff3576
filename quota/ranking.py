"""Top-N ranking of scored entrepreneurships."""
from __future__ import annotations

from typing import Any, Iterable

from quota.config import RANKING_LIMIT
from quota.models import Entrepreneurship
from quota.scoring import EvaluationLike, NullScores, Qualification, aggregate_all


def build_rankings(
    entities: Iterable[Entrepreneurship],
    evaluations: Iterable[EvaluationLike],
    limit: int = RANKING_LIMIT,
    nulls: NullScores = NullScores.EXCLUDE,
) -> list[dict[str, Any]]:
    """Rank entrepreneurships with at least one qualifying evaluation by average score.

    Uses the ranking qualification rule (automatic, or submitted regardless of
    admin approval). The sort is stable, so ties keep the order of *entities*;
    the repository returns them by ascending id.
    """
    aggregates = aggregate_all(evaluations, Qualification.RANKING, nulls)
    scored = []
    for ent in entities:
        agg = aggregates.get(ent.id)
        if agg is None or agg.count == 0:
            continue
        owner = ent.owner
        scored.append({
            "entrepreneurship_id": ent.id,
            "name": ent.name,
            "owner_name": owner.full_name if owner else "",
            "email": owner.email if owner else "",
            "score": agg.score,
            "evaluation_count": agg.count,
        })
    scored.sort(key=lambda item: item["score"], reverse=True)
    return [{"position": idx + 1, **item} for idx, item in enumerate(scored[:max(limit, 0)])]
