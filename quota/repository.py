"""Store access for the allocation core.

Everything the core reads or writes goes through these functions, so the pure
modules (``scoring``, ``eligibility``, ``ranking``, ``progress``) only ever see
plain lists and mappings.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import DateTime, Integer, String, func, insert, literal, select, update
from sqlalchemy.orm import Session, aliased, selectinload

from quota.config import TierCapacity
from quota.models import (
    APPROVED, REJECTED, Entrepreneurship, Evaluation, MentorAssignment, QuotaAssignment, User,
)

# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_entrepreneurship(session: Session, entrepreneurship_id: int) -> Entrepreneurship | None:
    return session.execute(
        select(Entrepreneurship)
        .options(selectinload(Entrepreneurship.owner))
        .where(Entrepreneurship.id == entrepreneurship_id)
    ).scalars().first()


def list_entrepreneurships(session: Session, tier: str | None = None) -> list[Entrepreneurship]:
    """All entrepreneurships ordered by id, optionally only those with an explicit *tier*."""
    query = select(Entrepreneurship).options(selectinload(Entrepreneurship.owner))
    if tier is not None:
        query = query.where(Entrepreneurship.tier == tier)
    return list(session.execute(query.order_by(Entrepreneurship.id)).scalars().all())


def list_evaluations(session: Session, entrepreneurship_ids: Iterable[int] | None = None) -> list[Evaluation]:
    query = select(Evaluation)
    if entrepreneurship_ids is not None:
        query = query.where(Evaluation.entrepreneurship_id.in_(list(entrepreneurship_ids)))
    return list(session.execute(query.order_by(Evaluation.id)).scalars().all())


def list_assignments(
    session: Session, tier: str | None = None, state: str | None = None,
) -> list[QuotaAssignment]:
    query = select(QuotaAssignment)
    if tier is not None:
        query = query.where(QuotaAssignment.tier == tier)
    if state is not None:
        query = query.where(QuotaAssignment.state == state)
    return list(session.execute(query.order_by(QuotaAssignment.id)).scalars().all())


def approved_by_entity(session: Session) -> dict[int, QuotaAssignment]:
    return {a.entrepreneurship_id: a for a in list_assignments(session, state=APPROVED)}


def list_mentor_assignments(
    session: Session, entrepreneurship_ids: Iterable[int] | None = None,
) -> list[MentorAssignment]:
    query = select(MentorAssignment).where(MentorAssignment.active.is_(True))
    if entrepreneurship_ids is not None:
        query = query.where(MentorAssignment.entrepreneurship_id.in_(list(entrepreneurship_ids)))
    return list(session.execute(query).scalars().all())


def get_assignment(session: Session, entrepreneurship_id: int, tier: str) -> QuotaAssignment | None:
    return session.execute(
        select(QuotaAssignment).where(
            QuotaAssignment.entrepreneurship_id == entrepreneurship_id,
            QuotaAssignment.tier == tier,
        )
    ).scalars().first()


def get_user(session: Session, user_id: int) -> User | None:
    return session.execute(select(User).where(User.id == user_id)).scalars().first()


def entrepreneurship_for_user(session: Session, user_id: int) -> Entrepreneurship | None:
    return session.execute(
        select(Entrepreneurship).where(Entrepreneurship.user_id == user_id).order_by(Entrepreneurship.id)
    ).scalars().first()


def approved_elsewhere(session: Session, entrepreneurship_id: int, tier: str) -> QuotaAssignment | None:
    """The approved assignment this entrepreneurship holds in a tier other than *tier*, if any."""
    return session.execute(
        select(QuotaAssignment).where(
            QuotaAssignment.entrepreneurship_id == entrepreneurship_id,
            QuotaAssignment.tier != tier,
            QuotaAssignment.state == APPROVED,
        )
    ).scalars().first()


def _approved_count_query(tier: str, cohort: int | None = None, exclude_entity: int | None = None):
    qa = aliased(QuotaAssignment)
    query = select(func.count(qa.id)).where(qa.tier == tier, qa.state == APPROVED)
    if cohort is not None:
        query = query.where(qa.cohort == cohort)
    if exclude_entity is not None:
        query = query.where(qa.entrepreneurship_id != exclude_entity)
    return query


def count_approved(
    session: Session, tier: str, cohort: int | None = None, exclude_entity: int | None = None,
) -> int:
    return session.execute(_approved_count_query(tier, cohort, exclude_entity)).scalar() or 0


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def conditional_approve(
    session: Session,
    *,
    entrepreneurship_id: int,
    capacity: TierCapacity,
    cohort: int,
    actor_id: int | None,
    now: datetime,
) -> bool:
    """Approve (entrepreneurship, tier) only if the tier and cohort still have room.

    The ceiling checks, and the check that no other tier already holds an
    approved slot for this entrepreneurship, are part of the write statement
    itself, so two sessions racing for the last slot (or for two tiers) cannot
    both succeed. Counts exclude the entrepreneurship's own row, which makes
    re-approving or moving cohorts inside the same tier safe. Returns False
    (and writes nothing) when a guard fails. Caller must commit.
    """
    tier = capacity.tier
    other = aliased(QuotaAssignment)
    guards = [
        ~select(other.id).where(
            other.entrepreneurship_id == entrepreneurship_id,
            other.tier != tier,
            other.state == APPROVED,
        ).exists(),
        _approved_count_query(tier, exclude_entity=entrepreneurship_id).scalar_subquery()
        < capacity.max_slots,
    ]
    if capacity.has_cohorts:
        guards.append(
            _approved_count_query(tier, cohort=cohort, exclude_entity=entrepreneurship_id).scalar_subquery()
            < capacity.max_per_cohort
        )

    table = QuotaAssignment.__table__
    existing = get_assignment(session, entrepreneurship_id, tier)
    if existing is not None:
        stmt = (
            update(table)
            .where(table.c.id == existing.id, *guards)
            .values(state=APPROVED, cohort=cohort, approved_by=actor_id, assigned_at=now)
        )
    else:
        rows = select(
            literal(entrepreneurship_id, Integer),
            literal(tier, String),
            literal(cohort, Integer),
            literal(APPROVED, String),
            literal(actor_id, Integer),
            literal(now, DateTime),
        ).where(*guards)
        stmt = insert(table).from_select(
            ["entrepreneurship_id", "tier", "cohort", "state", "approved_by", "assigned_at"], rows,
        )
    result = session.execute(stmt)
    session.expire_all()
    return result.rowcount == 1


def upsert_rejection(
    session: Session,
    *,
    entrepreneurship_id: int,
    tier: str,
    actor_id: int | None,
    now: datetime,
) -> QuotaAssignment:
    """Mark (entrepreneurship, tier) rejected. A fresh row gets cohort 1. Caller must commit."""
    existing = get_assignment(session, entrepreneurship_id, tier)
    if existing is None:
        existing = QuotaAssignment(
            entrepreneurship_id=entrepreneurship_id, tier=tier, cohort=1,
            state=REJECTED, approved_by=actor_id, assigned_at=now,
        )
        session.add(existing)
    elif existing.state != REJECTED:
        existing.state = REJECTED
        existing.approved_by = actor_id
        existing.assigned_at = now
    session.flush()
    return existing


def reveal_evaluations(session: Session, entrepreneurship_id: int) -> None:
    session.execute(
        update(Evaluation.__table__)
        .where(Evaluation.__table__.c.entrepreneurship_id == entrepreneurship_id)
        .values(visible_to_user=True)
    )
    session.expire_all()
