"""Quota allocation: approve or reject an entrepreneurship into a tier and cohort.

Per (entrepreneurship, tier) the decision moves freely between ``approved``
and ``rejected``; there is no terminal state. Approval is bounded by the tier
ceiling and, for Starter and Growth, by the per-cohort ceiling.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Iterable

from sqlalchemy.orm import Session

from quota import repository
from quota.config import COHORTS, TierCapacity, get_capacity
from quota.models import APPROVED, REJECTED, REVIEWER, SUBMITTED, Entrepreneurship, QuotaAssignment
from quota.scoring import Qualification, aggregate

log = logging.getLogger(__name__)


class AllocationError(Exception):
    """An approve/reject request that cannot be carried out. Nothing was written."""
    code = "allocation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AllocationError):
    code = "not_found"


class IneligibleError(AllocationError):
    code = "ineligible"


class PendingEvaluationsError(AllocationError):
    code = "pending_evaluations"


class InvalidCohortError(AllocationError):
    code = "invalid_cohort"


class AlreadyApprovedError(AllocationError):
    code = "already_approved"


class CapacityExceededError(AllocationError):
    code = "capacity_exceeded"


class CohortCapacityExceededError(AllocationError):
    code = "cohort_capacity_exceeded"


# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------


def resolve_cohort(capacity: TierCapacity, cohort: int | None) -> int:
    """Validate the requested cohort. Tiers without cohorts ignore it and always store 1."""
    if not capacity.has_cohorts:
        return 1
    if cohort not in COHORTS:
        raise InvalidCohortError(f"Cohort must be one of {COHORTS} for {capacity.tier}, got {cohort}")
    return cohort


def check_capacity(
    capacity: TierCapacity,
    approved: Iterable[QuotaAssignment],
    cohort: int,
    entrepreneurship_id: int | None = None,
) -> None:
    """Raise if approving into (tier, cohort) would exceed a ceiling.

    *approved* are the currently approved assignments of the tier; the
    entrepreneurship's own assignment, if present, does not take a slot from
    itself.
    """
    others = [
        a for a in approved
        if a.tier == capacity.tier and a.state == APPROVED and a.entrepreneurship_id != entrepreneurship_id
    ]
    if len(others) >= capacity.max_slots:
        raise CapacityExceededError(
            f"All {capacity.max_slots} slots for {capacity.tier} have already been assigned"
        )
    if capacity.has_cohorts:
        in_cohort = sum(1 for a in others if a.cohort == cohort)
        if in_cohort >= capacity.max_per_cohort:
            raise CohortCapacityExceededError(
                f"All {capacity.max_per_cohort} slots of {capacity.tier} cohort {cohort} have already been assigned"
            )


def _require_eligible(session: Session, ent: Entrepreneurship) -> None:
    evaluations = repository.list_evaluations(session, [ent.id])
    if aggregate(evaluations, ent.id, Qualification.STRICT).count == 0:
        log.warning("Decision for %s refused: no qualifying evaluations", ent.name)
        raise IneligibleError(f"{ent.name} has no qualifying evaluations")


def _require_reviews_complete(session: Session, ent: Entrepreneurship) -> None:
    mentors = len(repository.list_mentor_assignments(session, [ent.id]))
    submitted = sum(
        1 for ev in repository.list_evaluations(session, [ent.id])
        if ev.kind == REVIEWER and ev.status == SUBMITTED
    )
    if mentors > submitted:
        raise PendingEvaluationsError(
            f"{ent.name} has {mentors} assigned mentor(s) but only {submitted} submitted evaluation(s)"
        )


def _get_entrepreneurship(session: Session, entrepreneurship_id: int) -> Entrepreneurship:
    ent = repository.get_entrepreneurship(session, entrepreneurship_id)
    if ent is None:
        raise NotFoundError(f"Entrepreneurship {entrepreneurship_id} not found")
    return ent


def _require_not_approved_elsewhere(session: Session, ent: Entrepreneurship, tier: str) -> None:
    other = repository.approved_elsewhere(session, ent.id, tier)
    if other is not None:
        raise AlreadyApprovedError(f"{ent.name} already holds an approved slot in {other.tier}")


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def approve(
    session: Session,
    entrepreneurship_id: int,
    tier: str,
    cohort: int | None = None,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> QuotaAssignment:
    """Approve an entrepreneurship into *tier* (and *cohort*). Caller must commit.

    Raises an ``AllocationError`` subclass, without writing anything, when the
    entrepreneurship is unknown or ineligible, reviews are still pending, it
    already holds a slot in another tier, or a ceiling has been reached.
    """
    capacity = get_capacity(tier)
    tier = capacity.tier
    ent = _get_entrepreneurship(session, entrepreneurship_id)
    _require_eligible(session, ent)
    _require_reviews_complete(session, ent)
    cohort = resolve_cohort(capacity, cohort)
    _require_not_approved_elsewhere(session, ent, tier)

    now = now or datetime.now(UTC)
    written = repository.conditional_approve(
        session, entrepreneurship_id=ent.id, capacity=capacity,
        cohort=cohort, actor_id=actor_id, now=now,
    )
    if not written:
        # Lost the race: report what blocked the write from a fresh read
        try:
            _require_not_approved_elsewhere(session, ent, tier)
            check_capacity(capacity, repository.list_assignments(session, tier, APPROVED), cohort, ent.id)
        except AllocationError as exc:
            log.warning("Approval of %s into %s/%d refused: %s", ent.name, tier, cohort, exc)
            raise
        raise CapacityExceededError(f"No slot available for {tier} cohort {cohort}")

    repository.reveal_evaluations(session, ent.id)
    ent.tier = tier
    session.flush()
    assignment = repository.get_assignment(session, ent.id, tier)
    log.info("Approved %s into %s cohort %d (actor=%s)", ent.name, tier, cohort, actor_id)
    return assignment  # type: ignore[return-value]


def reject(
    session: Session,
    entrepreneurship_id: int,
    tier: str,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> tuple[QuotaAssignment, bool]:
    """Reject an entrepreneurship for *tier*. Caller must commit.

    Returns the assignment and whether anything changed: rejecting an
    already-rejected pair is a no-op and returns ``False``.
    """
    tier = get_capacity(tier).tier
    ent = _get_entrepreneurship(session, entrepreneurship_id)
    _require_eligible(session, ent)
    existing = repository.get_assignment(session, ent.id, tier)
    if existing is not None and existing.state == REJECTED:
        return existing, False
    assignment = repository.upsert_rejection(
        session, entrepreneurship_id=ent.id, tier=tier,
        actor_id=actor_id, now=now or datetime.now(UTC),
    )
    if ent.tier == tier:
        ent.tier = None
        session.flush()
    log.info("Rejected %s for %s (actor=%s)", ent.name, tier, actor_id)
    return assignment, True
