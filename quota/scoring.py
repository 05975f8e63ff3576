"""Evaluation aggregation and level classification.

Aggregation
-----------
An entrepreneurship's representative score is the mean of its *qualifying*
evaluation records, rounded to two decimals. Which records qualify depends on
the call site:

- ``Qualification.STRICT``: automatic evaluations, plus reviewer evaluations
  that are submitted **and** approved by an administrator. Used for
  allocation eligibility and the eligibility filter.
- ``Qualification.RANKING``: automatic evaluations, plus anything submitted,
  regardless of administrator approval. Used for the public ranking.

Records with a null score are either dropped (``NullScores.EXCLUDE``, the
default) or counted as zero (``NullScores.AS_ZERO``).

An entrepreneurship with no qualifying records has no score: ``score`` is
``None`` and ``count`` is 0.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

from quota.config import GROWTH, GROWTH_THRESHOLD, SCALE, SCALE_THRESHOLD, STARTER
from quota.models import AUTOMATIC, REVIEWER, SUBMITTED


class EvaluationLike(Protocol):
    entrepreneurship_id: int
    score: float | None
    kind: str
    status: str
    admin_approved: bool | None


class Qualification(str, Enum):
    STRICT = "strict"
    RANKING = "ranking"


class NullScores(str, Enum):
    EXCLUDE = "exclude"
    AS_ZERO = "zero"


@dataclass(frozen=True)
class Aggregate:
    score: float | None
    count: int


EMPTY = Aggregate(score=None, count=0)


def qualifies(ev: EvaluationLike, rule: Qualification = Qualification.STRICT) -> bool:
    if ev.kind == AUTOMATIC:
        return True
    if rule is Qualification.RANKING:
        return ev.status == SUBMITTED
    return ev.kind == REVIEWER and ev.status == SUBMITTED and ev.admin_approved is True


def _reduce(
    evaluations: Iterable[EvaluationLike], rule: Qualification, nulls: NullScores,
) -> Aggregate:
    scores: list[float] = []
    for ev in evaluations:
        if not qualifies(ev, rule):
            continue
        if ev.score is None:
            if nulls is NullScores.EXCLUDE:
                continue
            scores.append(0.0)
        else:
            scores.append(float(ev.score))
    if not scores:
        return EMPTY
    return Aggregate(score=round(sum(scores) / len(scores), 2), count=len(scores))


def aggregate(
    evaluations: Iterable[EvaluationLike],
    entrepreneurship_id: int,
    rule: Qualification = Qualification.STRICT,
    nulls: NullScores = NullScores.EXCLUDE,
) -> Aggregate:
    """Aggregate the qualifying records of one entrepreneurship out of an unfiltered list."""
    return _reduce(
        (ev for ev in evaluations if ev.entrepreneurship_id == entrepreneurship_id), rule, nulls,
    )


def aggregate_all(
    evaluations: Iterable[EvaluationLike],
    rule: Qualification = Qualification.STRICT,
    nulls: NullScores = NullScores.EXCLUDE,
) -> dict[int, Aggregate]:
    """Aggregate every entrepreneurship present in *evaluations* in one pass.

    Entrepreneurships absent from the result have no records at all; callers
    should fall back to ``EMPTY``.
    """
    grouped: dict[int, list[EvaluationLike]] = defaultdict(list)
    for ev in evaluations:
        grouped[ev.entrepreneurship_id].append(ev)
    return {eid: _reduce(evs, rule, nulls) for eid, evs in grouped.items()}


def classify(score: float) -> str:
    """Map a score to a tier. Scores outside 0-100 are not validated."""
    if score >= SCALE_THRESHOLD:
        return SCALE
    if score >= GROWTH_THRESHOLD:
        return GROWTH
    return STARTER
