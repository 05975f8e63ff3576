from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Evaluation.kind
AUTOMATIC = "automatic"
REVIEWER = "reviewer"

# Evaluation.status
DRAFT = "draft"
SUBMITTED = "submitted"

# QuotaAssignment.state
APPROVED = "approved"
REJECTED = "rejected"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(200), default="")
    last_name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Entrepreneurship(Base):
    __tablename__ = "entrepreneurships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    tier: Mapped[str | None] = mapped_column(String(20), nullable=True)  # Starter | Growth | Scale
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    owner: Mapped[User | None] = relationship("User")
    evaluations: Mapped[list[Evaluation]] = relationship("Evaluation", back_populates="entrepreneurship")
    assignments: Mapped[list[QuotaAssignment]] = relationship("QuotaAssignment", back_populates="entrepreneurship")


class Evaluation(Base):
    __tablename__ = "evaluations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entrepreneurship_id: Mapped[int] = mapped_column(Integer, ForeignKey("entrepreneurships.id"), nullable=False)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    kind: Mapped[str] = mapped_column(String(20), default=REVIEWER)  # automatic | reviewer
    status: Mapped[str] = mapped_column(String(20), default=DRAFT)  # draft | submitted
    admin_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)  # None = pending
    reviewer_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    visible_to_user: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    entrepreneurship: Mapped[Entrepreneurship] = relationship("Entrepreneurship", back_populates="evaluations")


class MentorAssignment(Base):
    __tablename__ = "mentor_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entrepreneurship_id: Mapped[int] = mapped_column(Integer, ForeignKey("entrepreneurships.id"), nullable=False)
    mentor_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuotaAssignment(Base):
    __tablename__ = "quota_assignments"
    __table_args__ = (UniqueConstraint("entrepreneurship_id", "tier", name="uq_assignment_entity_tier"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entrepreneurship_id: Mapped[int] = mapped_column(Integer, ForeignKey("entrepreneurships.id"), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    cohort: Mapped[int] = mapped_column(Integer, default=1)
    state: Mapped[str] = mapped_column(String(20), nullable=False)  # approved | rejected
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    entrepreneurship: Mapped[Entrepreneurship] = relationship("Entrepreneurship", back_populates="assignments")
