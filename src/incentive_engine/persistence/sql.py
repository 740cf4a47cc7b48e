"""SQLAlchemy async repositories and unit of work.

Calculation writes are version-checked:

    UPDATE incentive_calculation SET ..., version = :expected + 1
    WHERE calculation_id = :id AND version = :expected

Zero affected rows means another writer got there first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from types import TracebackType
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from incentive_engine.domain.calculation import Approval, ApprovalStatus, Calculation
from incentive_engine.domain.organization import Department, Employee, EmployeeStatus
from incentive_engine.domain.plan import (
    AchievementType,
    IncentivePlan,
    PayoutBasis,
    PlanStatus,
    Slab,
    Target,
)
from incentive_engine.domain.results import ConcurrencyConflictError, DuplicateCalculationError
from incentive_engine.domain.values import DateRange, Money, Percentage
from incentive_engine.persistence.models import (
    ApprovalRow,
    CalculationRow,
    DepartmentRow,
    EmployeeRow,
    IncentivePlanRow,
    SlabRow,
)
from incentive_engine.services.state_machine import CalculationStateMachine, CalculationStatus

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ===== Row <-> domain mapping =====


def department_from_row(row: DepartmentRow) -> Department:
    return Department(
        code=row.code,
        name=row.name,
        manager_id=row.manager_id,
        parent_id=row.parent_id,
        department_id=row.department_id,
    )


def employee_from_row(row: EmployeeRow) -> Employee:
    return Employee(
        employee_code=row.employee_code,
        base_salary=Money(row.base_salary, row.currency),
        department_id=row.department_id,
        status=EmployeeStatus(row.status),
        manager_id=row.manager_id,
        date_of_joining=row.date_of_joining,
        date_of_leaving=row.date_of_leaving,
        employee_id=row.employee_id,
    )


def plan_from_row(row: IncentivePlanRow) -> IncentivePlan:
    currency = row.payout_currency
    return IncentivePlan(
        code=row.code,
        name=row.name,
        effective_period=DateRange(row.effective_from, row.effective_to),
        target=Target(
            target_value=row.target_value,
            minimum_threshold=row.minimum_threshold,
            achievement_type=AchievementType(row.achievement_type),
            metric_unit=row.metric_unit,
        ),
        payout_basis=PayoutBasis(row.payout_basis),
        slabs=[
            Slab(
                tier_index=s.tier_index,
                from_value=s.from_value,
                to_value=s.to_value,
                rate=s.rate,
                fixed_amount=s.fixed_amount,
                slab_id=s.slab_id,
                description=s.description,
            )
            for s in row.slabs
        ],
        maximum_payout=Money(row.maximum_payout, currency) if row.maximum_payout is not None else None,
        minimum_payout=Money(row.minimum_payout, currency) if row.minimum_payout is not None else None,
        status=PlanStatus(row.status),
        minimum_tenure_days=row.minimum_tenure_days,
        plan_id=row.plan_id,
    )


def plan_to_row(plan: IncentivePlan) -> IncentivePlanRow:
    """Build rows for seeding plans; plan maintenance itself lives elsewhere."""
    limit = plan.maximum_payout or plan.minimum_payout
    return IncentivePlanRow(
        plan_id=plan.plan_id,
        code=plan.code,
        name=plan.name,
        effective_from=plan.effective_period.start,
        effective_to=plan.effective_period.end,
        target_value=plan.target.target_value,
        minimum_threshold=plan.target.minimum_threshold,
        achievement_type=plan.target.achievement_type.value,
        metric_unit=plan.target.metric_unit,
        payout_basis=plan.payout_basis.value,
        maximum_payout=plan.maximum_payout.amount if plan.maximum_payout else None,
        minimum_payout=plan.minimum_payout.amount if plan.minimum_payout else None,
        payout_currency=limit.currency if limit else None,
        minimum_tenure_days=plan.minimum_tenure_days,
        status=plan.status.value,
        slabs=[
            SlabRow(
                slab_id=s.slab_id,
                tier_index=s.tier_index,
                from_value=s.from_value,
                to_value=s.to_value,
                rate=s.rate,
                fixed_amount=s.fixed_amount,
                description=s.description,
            )
            for s in plan.slabs
        ],
    )


def approval_from_row(row: ApprovalRow) -> Approval:
    return Approval(
        calculation_id=row.calculation_id,
        approver_id=row.approver_id,
        approval_level=row.approval_level,
        status=ApprovalStatus(row.status),
        created_at=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
        action_date=_aware(row.action_date),
        acted_by=row.acted_by,
        comments=row.comments,
        delegated_to_id=row.delegated_to_id,
        revision=row.revision,
        approval_id=row.approval_id,
    )


def approval_values(approval: Approval) -> dict[str, Any]:
    return {
        "approval_id": approval.approval_id,
        "calculation_id": approval.calculation_id,
        "approver_id": approval.approver_id,
        "approval_level": approval.approval_level,
        "status": approval.status.value,
        "created_at": approval.created_at,
        "expires_at": approval.expires_at,
        "action_date": approval.action_date,
        "acted_by": approval.acted_by,
        "comments": approval.comments,
        "delegated_to_id": approval.delegated_to_id,
        "revision": approval.revision,
    }


def calculation_from_row(row: CalculationRow, with_approvals: bool = True) -> Calculation:
    currency = row.currency

    def money(amount):
        return Money(amount, currency) if amount is not None else None

    return Calculation(
        calculation_id=row.calculation_id,
        employee_id=row.employee_id,
        plan_id=row.plan_id,
        period=DateRange(row.period_start, row.period_end),
        target_value=row.target_value,
        actual_value=row.actual_value,
        base_salary=Money(row.base_salary, currency),
        status=CalculationStatus(row.status),
        applied_slab_id=row.applied_slab_id,
        gross_incentive=money(row.gross_incentive),
        net_incentive=money(row.net_incentive),
        prorata_input=Percentage(row.prorata_input) if row.prorata_input is not None else None,
        maximum_payout=money(row.maximum_payout),
        minimum_payout=money(row.minimum_payout),
        below_threshold=row.below_threshold,
        capped=row.capped,
        calculated_at=_aware(row.calculated_at),
        submitted_by=row.submitted_by,
        submitted_at=_aware(row.submitted_at),
        approved_by=row.approved_by,
        approved_at=_aware(row.approved_at),
        rejected_by=row.rejected_by,
        rejection_reason=row.rejection_reason,
        voided_by=row.voided_by,
        void_reason=row.void_reason,
        paid_by=row.paid_by,
        paid_at=_aware(row.paid_at),
        payment_reference=row.payment_reference,
        adjustment_reason=row.adjustment_reason,
        notes=row.notes,
        version=row.version,
        revision=row.revision,
        previous_revision_id=row.previous_revision_id,
        approvals=[approval_from_row(a) for a in row.approvals] if with_approvals else None,
    )


def calculation_values(calculation: Calculation) -> dict[str, Any]:
    """Mutable columns of a calculation row."""
    return {
        "target_value": calculation.target_value,
        "actual_value": calculation.actual_value,
        "base_salary": calculation.base_salary.amount,
        "applied_slab_id": calculation.applied_slab_id,
        "gross_incentive": calculation.gross_incentive.amount,
        "net_incentive": calculation.net_incentive.amount,
        "prorata_input": calculation.prorata_input.value if calculation.prorata_input else None,
        "maximum_payout": calculation.maximum_payout.amount if calculation.maximum_payout else None,
        "minimum_payout": calculation.minimum_payout.amount if calculation.minimum_payout else None,
        "below_threshold": calculation.below_threshold,
        "capped": calculation.capped,
        "status": calculation.status.value,
        "calculated_at": calculation.calculated_at,
        "submitted_by": calculation.submitted_by,
        "submitted_at": calculation.submitted_at,
        "approved_by": calculation.approved_by,
        "approved_at": calculation.approved_at,
        "rejected_by": calculation.rejected_by,
        "rejection_reason": calculation.rejection_reason,
        "voided_by": calculation.voided_by,
        "void_reason": calculation.void_reason,
        "paid_by": calculation.paid_by,
        "paid_at": calculation.paid_at,
        "payment_reference": calculation.payment_reference,
        "adjustment_reason": calculation.adjustment_reason,
        "notes": calculation.notes,
        "revision": calculation.revision,
    }


# ===== Repositories =====


class SqlEmployeeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, employee_id: UUID) -> Employee | None:
        row = await self.session.get(EmployeeRow, employee_id)
        return employee_from_row(row) if row else None

    async def get_many(self, employee_ids: list[UUID]) -> dict[UUID, Employee]:
        result = await self.session.execute(
            select(EmployeeRow).where(EmployeeRow.employee_id.in_(employee_ids))
        )
        return {row.employee_id: employee_from_row(row) for row in result.scalars()}


class SqlPlanRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_with_slabs(self, plan_id: UUID) -> IncentivePlan | None:
        result = await self.session.execute(
            select(IncentivePlanRow)
            .where(IncentivePlanRow.plan_id == plan_id)
            .options(selectinload(IncentivePlanRow.slabs))
        )
        row = result.scalar_one_or_none()
        return plan_from_row(row) if row else None


class SqlDepartmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, department_id: UUID) -> Department | None:
        row = await self.session.get(DepartmentRow, department_id)
        return department_from_row(row) if row else None

    async def get_hierarchy(self, department_id: UUID) -> list[Department]:
        chain: list[Department] = []
        seen: set[UUID] = set()
        next_id: UUID | None = department_id
        while next_id is not None and next_id not in seen:
            department = await self.get(next_id)
            if department is None:
                break
            chain.append(department)
            seen.add(next_id)
            next_id = department.parent_id
        return chain


class SqlDepartmentDirectory:
    """Department lookups for the approval workflow, one short session each.

    The workflow resolves approvers outside any unit of work; wrap this in
    a CachedDepartmentDirectory to avoid a round trip per lookup.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, department_id: UUID) -> Department | None:
        async with self._session_factory() as session:
            return await SqlDepartmentRepository(session).get(department_id)

    async def get_hierarchy(self, department_id: UUID) -> list[Department]:
        async with self._session_factory() as session:
            return await SqlDepartmentRepository(session).get_hierarchy(department_id)


class SqlCalculationRepository:
    """Calculation persistence with version-checked saves."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, calculation: Calculation) -> None:
        active = await self._find(
            calculation.employee_id, calculation.plan_id, calculation.period, active_only=True
        )
        if active is not None:
            raise DuplicateCalculationError(
                calculation.employee_id, calculation.plan_id, calculation.period
            )

        row = CalculationRow(
            calculation_id=calculation.calculation_id,
            employee_id=calculation.employee_id,
            plan_id=calculation.plan_id,
            period_start=calculation.period.start,
            period_end=calculation.period.end,
            currency=calculation.currency,
            version=1,
            previous_revision_id=calculation.previous_revision_id,
            **calculation_values(calculation),
        )
        row.approvals = [ApprovalRow(**approval_values(a)) for a in calculation.approvals]
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Lost a race against the active-triple unique index
            raise DuplicateCalculationError(
                calculation.employee_id, calculation.plan_id, calculation.period
            ) from e
        calculation.mark_saved(1)

    async def get(self, calculation_id: UUID) -> Calculation | None:
        row = await self.session.get(CalculationRow, calculation_id)
        return calculation_from_row(row, with_approvals=False) if row else None

    async def get_with_approvals(self, calculation_id: UUID) -> Calculation | None:
        result = await self.session.execute(
            select(CalculationRow)
            .where(CalculationRow.calculation_id == calculation_id)
            .options(selectinload(CalculationRow.approvals))
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return calculation_from_row(row) if row else None

    async def find_latest(
        self, employee_id: UUID, plan_id: UUID, period: DateRange
    ) -> Calculation | None:
        return await self._find(employee_id, plan_id, period)

    async def save(self, calculation: Calculation) -> None:
        expected = calculation.version
        result = await self.session.execute(
            update(CalculationRow)
            .where(
                CalculationRow.calculation_id == calculation.calculation_id,
                CalculationRow.version == expected,
            )
            .values(version=expected + 1, **calculation_values(calculation))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrencyConflictError(calculation.calculation_id, expected)

        await self._save_approvals(calculation)
        calculation.mark_saved(expected + 1)
        logger.debug(
            "Saved calculation %s at version %d", calculation.calculation_id, expected + 1
        )

    async def list_pending_approvals(self) -> list[Calculation]:
        result = await self.session.execute(
            select(CalculationRow)
            .where(CalculationRow.status == CalculationStatus.PENDING_APPROVAL.value)
            .options(selectinload(CalculationRow.approvals))
        )
        return [calculation_from_row(row) for row in result.scalars()]

    async def _save_approvals(self, calculation: Calculation) -> None:
        result = await self.session.execute(
            select(ApprovalRow.approval_id).where(
                ApprovalRow.calculation_id == calculation.calculation_id
            )
        )
        stored = set(result.scalars())
        for approval in calculation.approvals:
            values = approval_values(approval)
            if approval.approval_id in stored:
                await self.session.execute(
                    update(ApprovalRow)
                    .where(ApprovalRow.approval_id == approval.approval_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            else:
                self.session.add(ApprovalRow(**values))
        await self.session.flush()

    async def _find(
        self,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
        active_only: bool = False,
    ) -> Calculation | None:
        stmt = (
            select(CalculationRow)
            .where(
                CalculationRow.employee_id == employee_id,
                CalculationRow.plan_id == plan_id,
                CalculationRow.period_start == period.start,
                CalculationRow.period_end == period.end,
            )
            .options(selectinload(CalculationRow.approvals))
            .order_by(CalculationRow.revision.desc(), CalculationRow.created_at.desc())
        )
        if active_only:
            stmt = stmt.where(CalculationRow.status.not_in([s.value for s in CalculationStateMachine.INACTIVE]))
        result = await self.session.execute(stmt.limit(1))
        row = result.scalar_one_or_none()
        return calculation_from_row(row) if row else None


# ===== Unit of work =====


class SqlAlchemyUnitOfWork:
    """Unit of work over one AsyncSession.

    Exiting without ``commit()`` rolls the session back, which also covers
    cancellation before the commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._committed = False

    async def __aenter__(self) -> SqlAlchemyUnitOfWork:
        self.session = self._session_factory()
        self.employees = SqlEmployeeRepository(self.session)
        self.plans = SqlPlanRepository(self.session)
        self.departments = SqlDepartmentRepository(self.session)
        self.calculations = SqlCalculationRepository(self.session)
        self._committed = False
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if not self._committed:
                await self.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()


def sql_unit_of_work_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Callable producing a fresh unit of work per handler call."""

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return factory
