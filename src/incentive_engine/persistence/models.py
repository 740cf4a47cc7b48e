"""SQLAlchemy ORM rows for plans, organization lookups and calculations."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

ACTIVE_CALCULATION_FILTER = "status NOT IN ('rejected', 'voided')"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=True),
    }

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class TimestampMixin:
    """Mixin for models with created_at timestamp."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# ===== Organization =====


class DepartmentRow(Base, TimestampMixin):
    """Department node; only manager and parent matter to the core."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    manager_id: Mapped[UUID | None] = mapped_column(nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"), nullable=True
    )


class EmployeeRow(Base, TimestampMixin):
    """Employee snapshot used for calculation and routing."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    department_id: Mapped[UUID] = mapped_column(
        ForeignKey("department.department_id"), nullable=False
    )
    manager_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    date_of_joining: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_of_leaving: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'probation', 'on_leave', 'terminated')",
            name="employee_status_check",
        ),
    )


# ===== Plans =====


class IncentivePlanRow(Base, TimestampMixin):
    """Plan with its target embedded."""

    __tablename__ = "incentive_plan"

    plan_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date] = mapped_column(Date, nullable=False)
    target_value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    minimum_threshold: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    achievement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    metric_unit: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payout_basis: Mapped[str] = mapped_column(String(20), nullable=False)
    maximum_payout: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    minimum_payout: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    payout_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    minimum_tenure_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    slabs: Mapped[list[SlabRow]] = relationship(
        back_populates="plan", order_by="SlabRow.from_value", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("effective_from < effective_to", name="incentive_plan_period_check"),
        CheckConstraint(
            "status IN ('draft', 'active', 'suspended', 'cancelled')",
            name="incentive_plan_status_check",
        ),
    )


class SlabRow(Base):
    """One payout band of a plan."""

    __tablename__ = "plan_slab"

    slab_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("incentive_plan.plan_id", ondelete="CASCADE"), nullable=False
    )
    tier_index: Mapped[int] = mapped_column(Integer, nullable=False)
    from_value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    to_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(9, 4), nullable=True)
    fixed_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    plan: Mapped[IncentivePlanRow] = relationship(back_populates="slabs")

    __table_args__ = (
        CheckConstraint(
            "(rate IS NULL) <> (fixed_amount IS NULL)", name="plan_slab_payout_check"
        ),
    )


# ===== Calculations =====


class CalculationRow(Base, TimestampMixin):
    """Persisted Calculation aggregate root."""

    __tablename__ = "incentive_calculation"

    calculation_id: Mapped[UUID] = mapped_column(primary_key=True)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"), nullable=False, index=True
    )
    plan_id: Mapped[UUID] = mapped_column(ForeignKey("incentive_plan.plan_id"), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    target_value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    actual_value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    applied_slab_id: Mapped[UUID | None] = mapped_column(nullable=True)
    gross_incentive: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_incentive: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    prorata_input: Mapped[Decimal | None] = mapped_column(Numeric(12, 8), nullable=True)
    maximum_payout: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    minimum_payout: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    below_threshold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    capped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    adjustment_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_revision_id: Mapped[UUID | None] = mapped_column(nullable=True)

    approvals: Mapped[list[ApprovalRow]] = relationship(
        back_populates="calculation",
        order_by=lambda: [ApprovalRow.approval_level, ApprovalRow.created_at],
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("period_start < period_end", name="incentive_calculation_period_check"),
        CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', 'rejected', 'paid', 'voided')",
            name="incentive_calculation_status_check",
        ),
        # At most one active calculation per (employee, plan, period)
        Index(
            "incentive_calculation_active_triple",
            "employee_id",
            "plan_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text(ACTIVE_CALCULATION_FILTER),
            sqlite_where=text(ACTIVE_CALCULATION_FILTER),
        ),
    )


class ApprovalRow(Base):
    """One approval step; never deleted."""

    __tablename__ = "incentive_approval"

    approval_id: Mapped[UUID] = mapped_column(primary_key=True)
    calculation_id: Mapped[UUID] = mapped_column(
        ForeignKey("incentive_calculation.calculation_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[UUID] = mapped_column(nullable=False)
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)
    acted_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_to_id: Mapped[UUID | None] = mapped_column(nullable=True)
    # Calculation revision the approval cycle belongs to
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    calculation: Mapped[CalculationRow] = relationship(back_populates="approvals")

    __table_args__ = (
        CheckConstraint("approval_level >= 1", name="incentive_approval_level_check"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'delegated', "
            "'expired', 'escalated', 'cancelled')",
            name="incentive_approval_status_check",
        ),
    )
