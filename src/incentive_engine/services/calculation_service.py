"""Calculation service - orchestrates the engine, workflow and persistence.

Each handler:
1) Opens one unit of work
2) Loads the aggregate and its collaborators
3) Calls the calculation engine / approval workflow
4) Invokes one transition on the Calculation aggregate
5) Saves with a version check and commits
6) Emits the aggregate's queued events after the commit

Expected failures come back as Outcomes. Leaving the unit of work without
committing (failure outcome, exception or cancellation) rolls back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from uuid import UUID

from incentive_engine.calculators.engine import CalculationResult, IncentiveCalculationEngine
from incentive_engine.domain.calculation import SYSTEM_ACTOR, ApproverAssignment, Calculation
from incentive_engine.domain.plan import IncentivePlan
from incentive_engine.domain.results import (
    ConcurrencyConflictError,
    DuplicateCalculationError,
    ErrorCode,
    NotFoundError,
    Outcome,
)
from incentive_engine.domain.values import Money
from incentive_engine.events.emitter import EventEmitter
from incentive_engine.services.approval_workflow import ApprovalWorkflowEngine
from incentive_engine.services.commands import (
    AdjustCommand,
    ApproveCommand,
    BatchCalculationCommand,
    DelegateCommand,
    EscalateCommand,
    MarkPaidCommand,
    RecalculateCommand,
    RejectCommand,
    RunCalculationCommand,
    SubmitCommand,
    VoidCommand,
)
from incentive_engine.services.protocols import (
    CurrentUserProvider,
    StaticUser,
    UnitOfWork,
    UnitOfWorkFactory,
)
from incentive_engine.services.state_machine import CalculationStatus

logger = logging.getLogger(__name__)

Change = Callable[[UnitOfWork, Calculation], Awaitable[Outcome]]


@dataclass
class BatchResult:
    """Outcome of a batch calculation run."""

    created: list[Calculation] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)  # employees with an active calculation
    failed: dict[UUID, Outcome] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.skipped) + len(self.failed)


@dataclass
class SweepResult:
    """Outcome of an SLA sweep over pending approvals."""

    escalated: list[UUID] = field(default_factory=list)
    unroutable: list[UUID] = field(default_factory=list)
    conflicts: list[UUID] = field(default_factory=list)


class CalculationService:
    """Service for the calculation and approval lifecycle.

    Operations:
    - run_calculation / run_batch: compute and create DRAFT calculations
    - recalculate / adjust: change figures of an existing calculation
    - submit_for_approval / approve / reject / delegate / escalate
    - expire_overdue_approvals: escalate approvals past their SLA
    - void / mark_paid: terminal transitions
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        workflow: ApprovalWorkflowEngine,
        engine: IncentiveCalculationEngine | None = None,
        emitter: EventEmitter | None = None,
        user: CurrentUserProvider | None = None,
    ):
        self.uow_factory = uow_factory
        self.workflow = workflow
        self.engine = engine or IncentiveCalculationEngine()
        self.emitter = emitter or EventEmitter()
        self.user = user or StaticUser()

    @property
    def actor(self) -> str:
        return self.user.actor_identity() or SYSTEM_ACTOR

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    async def run_calculation(self, command: RunCalculationCommand) -> Outcome[Calculation]:
        """Calculate and create a DRAFT calculation for one employee."""
        period = command.period
        try:
            async with self.uow_factory() as uow:
                employee = await uow.employees.get(command.employee_id)
                if employee is None:
                    return Outcome.not_found("Employee", command.employee_id)
                plan = await uow.plans.get_with_slabs(command.plan_id)
                if plan is None:
                    return Outcome.not_found("IncentivePlan", command.plan_id)

                existing = await uow.calculations.find_latest(employee.employee_id, plan.plan_id, period)
                if existing is not None and existing.is_active:
                    return self._duplicate(existing)

                result = self.engine.calculate(employee, plan, command.actual_value, period)
                if not result.success:
                    logger.info(
                        "Calculation for employee %s on plan %s failed: %s",
                        employee.employee_code,
                        plan.code,
                        result.message,
                    )
                    return Outcome.fail(result.error_code, result.message)

                calculation = Calculation.create(
                    employee_id=employee.employee_id,
                    plan_id=plan.plan_id,
                    period=period,
                    target_value=plan.target.target_value,
                    actual_value=command.actual_value,
                    base_salary=employee.base_salary,
                    maximum_payout=plan.maximum_payout,
                    minimum_payout=plan.minimum_payout,
                    previous=existing,
                    created_by=self.actor,
                    notes=command.notes,
                )
                applied = self._apply_result(calculation, result)
                if not applied.success:
                    return applied

                await uow.calculations.add(calculation)
                await uow.commit()
        except DuplicateCalculationError as e:
            logger.info("Duplicate calculation rejected: %s", e)
            return Outcome.fail(
                ErrorCode.DUPLICATE_CALCULATION,
                str(e),
                employee_id=str(e.employee_id),
                plan_id=str(e.plan_id),
            )

        self._publish(calculation)
        logger.info(
            "Created calculation %s for employee %s: gross=%s net=%s",
            calculation.calculation_id,
            employee.employee_code,
            calculation.gross_incentive,
            calculation.net_incentive,
        )
        return Outcome.ok(calculation)

    async def run_batch(self, command: BatchCalculationCommand) -> Outcome[BatchResult]:
        """Calculate one plan for many employees.

        Each employee runs in its own unit of work. Employees that already
        have an active calculation are skipped rather than failed.
        """
        batch = BatchResult()
        for entry in command.entries:
            outcome = await self.run_calculation(
                RunCalculationCommand(
                    employee_id=entry.employee_id,
                    plan_id=command.plan_id,
                    period_start=command.period_start,
                    period_end=command.period_end,
                    actual_value=entry.actual_value,
                )
            )
            if outcome.success:
                batch.created.append(outcome.value)
            elif outcome.error_code == ErrorCode.DUPLICATE_CALCULATION:
                batch.skipped.append(entry.employee_id)
            else:
                batch.failed[entry.employee_id] = outcome

        logger.info(
            "Batch on plan %s: %d created, %d skipped, %d failed",
            command.plan_id,
            len(batch.created),
            len(batch.skipped),
            len(batch.failed),
        )
        return Outcome.ok(batch)

    async def recalculate(self, command: RecalculateCommand) -> Outcome[Calculation]:
        """Reopen a DRAFT or REJECTED calculation with a new actual value."""

        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            if calculation.status not in (CalculationStatus.DRAFT, CalculationStatus.REJECTED):
                return Outcome.invalid_transition("recalculate", calculation.status.value)
            employee = await uow.employees.get(calculation.employee_id)
            if employee is None:
                return Outcome.not_found("Employee", calculation.employee_id)
            plan = await uow.plans.get_with_slabs(calculation.plan_id)
            if plan is None:
                return Outcome.not_found("IncentivePlan", calculation.plan_id)

            result = self.engine.calculate(employee, plan, command.actual_value, calculation.period)
            if not result.success:
                return Outcome.fail(result.error_code, result.message)

            reopened = calculation.recalculate(
                command.actual_value, plan.target.target_value, employee.base_salary
            )
            if not reopened.success:
                return reopened
            limits = self._apply_limits(calculation, plan)
            if not limits.success:
                return limits
            return self._apply_result(calculation, result)

        return await self._modify(command.calculation_id, "recalculated", change)

    async def adjust(self, command: AdjustCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            new_net = Money(command.new_net_amount, calculation.currency)
            required = self.workflow.determine_approval_level(new_net)
            return calculation.adjust(new_net, command.reason, self.actor, required.required_level)

        return await self._modify(command.calculation_id, "adjusted", change)

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def submit_for_approval(self, command: SubmitCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            if calculation.status != CalculationStatus.DRAFT:
                return Outcome.invalid_transition("submit", calculation.status.value)
            department_id = await self._department_of(uow, calculation)
            now = self.workflow.now()
            assignment = await self.workflow.assignment_for_level(1, department_id, now)
            if assignment is None:
                return self._routing_failed(calculation, 1)
            return calculation.submit(self.actor, assignment, now=now)

        return await self._modify(command.calculation_id, "submitted", change)

    async def approve(self, command: ApproveCommand) -> Outcome[Calculation]:
        """Approve the active level; opens the next level when the amount needs it."""

        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            active = calculation.active_approval
            if calculation.status != CalculationStatus.PENDING_APPROVAL or active is None:
                return Outcome.invalid_transition("approve", calculation.status.value)

            required = self.workflow.determine_approval_level(calculation.net_incentive)
            now = self.workflow.now()
            next_approver = None
            if active.approval_level < required.required_level:
                department_id = await self._department_of(uow, calculation)
                next_approver = await self.workflow.assignment_for_level(
                    active.approval_level + 1, department_id, now
                )
                if next_approver is None:
                    logger.warning(
                        "No level %d approver for calculation %s",
                        active.approval_level + 1,
                        calculation.calculation_id,
                    )
            return calculation.approve(
                self.actor, required.required_level, next_approver, command.comments, now=now
            )

        return await self._modify(command.calculation_id, "approved", change)

    async def reject(self, command: RejectCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            return calculation.reject(self.actor, command.reason, now=self.workflow.now())

        return await self._modify(command.calculation_id, "rejected", change)

    async def delegate(self, command: DelegateCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            active = calculation.active_approval
            if active is None:
                return Outcome.invalid_transition("delegate", calculation.status.value)
            now = self.workflow.now()
            assignment = ApproverAssignment(
                approver_id=command.delegate_to_id,
                level=active.approval_level,
                expires_at=self.workflow.calculate_expiration_time(active.approval_level, now),
            )
            return calculation.delegate(assignment, self.actor, command.comments, now=now)

        return await self._modify(command.calculation_id, "delegated", change)

    async def escalate(self, command: EscalateCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            return await self._escalate(uow, calculation, self.actor, command.reason, expired=False)

        return await self._modify(command.calculation_id, "escalated", change)

    async def expire_overdue_approvals(self) -> Outcome[SweepResult]:
        """Escalate every pending approval whose SLA window has passed."""
        sweep = SweepResult()
        now = self.workflow.now()
        async with self.uow_factory() as uow:
            pending = await uow.calculations.list_pending_approvals()
        overdue = [
            c.calculation_id
            for c in pending
            if c.active_approval is not None and c.active_approval.is_overdue(now)
        ]

        for calculation_id in overdue:

            async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
                active = calculation.active_approval
                if active is None or not active.is_overdue(now):
                    return Outcome.invalid_transition(
                        "expire", calculation.status.value, "approval is no longer overdue"
                    )
                return await self._escalate(
                    uow, calculation, SYSTEM_ACTOR, "Approval SLA expired", expired=True
                )

            outcome = await self._modify(calculation_id, "escalated after SLA expiry", change)
            if outcome.success:
                sweep.escalated.append(calculation_id)
            elif outcome.error_code == ErrorCode.ROUTING_FAILED:
                sweep.unroutable.append(calculation_id)
            elif outcome.error_code == ErrorCode.CONCURRENCY_CONFLICT:
                sweep.conflicts.append(calculation_id)

        return Outcome.ok(sweep)

    # ------------------------------------------------------------------
    # Terminal
    # ------------------------------------------------------------------

    async def void(self, command: VoidCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            return calculation.void(command.reason, self.actor, now=self.workflow.now())

        return await self._modify(command.calculation_id, "voided", change)

    async def mark_paid(self, command: MarkPaidCommand) -> Outcome[Calculation]:
        async def change(uow: UnitOfWork, calculation: Calculation) -> Outcome:
            return calculation.mark_paid(
                self.actor, command.payment_reference, command.paid_at or self.workflow.now()
            )

        return await self._modify(command.calculation_id, "paid", change)

    async def get_calculation(self, calculation_id: UUID) -> Outcome[Calculation]:
        async with self.uow_factory() as uow:
            calculation = await uow.calculations.get_with_approvals(calculation_id)
        if calculation is None:
            return Outcome.not_found("Calculation", calculation_id)
        return Outcome.ok(calculation)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _modify(self, calculation_id: UUID, action: str, change: Change) -> Outcome[Calculation]:
        """Load, change, save and commit one calculation."""
        try:
            async with self.uow_factory() as uow:
                calculation = await uow.calculations.get_with_approvals(calculation_id)
                if calculation is None:
                    return Outcome.not_found("Calculation", calculation_id)

                outcome = await change(uow, calculation)
                if not outcome.success:
                    logger.info(
                        "Calculation %s not %s: %s %s",
                        calculation_id,
                        action,
                        outcome.error_code.value,
                        outcome.message,
                    )
                    return outcome

                await uow.calculations.save(calculation)
                await uow.commit()
        except ConcurrencyConflictError as e:
            logger.warning("Calculation %s not %s: %s", calculation_id, action, e)
            return Outcome.fail(
                ErrorCode.CONCURRENCY_CONFLICT,
                str(e),
                calculation_id=str(calculation_id),
                expected_version=e.expected_version,
            )
        except NotFoundError as e:
            return Outcome.not_found(e.entity_name, e.entity_id)

        self._publish(calculation)
        logger.info(
            "Calculation %s %s by %s (status=%s)",
            calculation_id,
            action,
            self.actor,
            calculation.status.value,
        )
        return Outcome.ok(calculation)

    async def _escalate(
        self,
        uow: UnitOfWork,
        calculation: Calculation,
        actor: str,
        reason: str | None,
        expired: bool,
    ) -> Outcome:
        active = calculation.active_approval
        if active is None:
            return Outcome.invalid_transition("escalate", calculation.status.value)
        department_id = await self._department_of(uow, calculation)
        target = await self.workflow.get_escalation_target(
            active.approver_id, active.approval_level, department_id
        )
        if target is None:
            return self._routing_failed(calculation, active.approval_level)
        now = self.workflow.now()
        assignment = ApproverAssignment(
            approver_id=target,
            level=active.approval_level,
            expires_at=self.workflow.calculate_expiration_time(active.approval_level, now),
        )
        return calculation.escalate(assignment, actor, reason, expired=expired, now=now)

    async def _department_of(self, uow: UnitOfWork, calculation: Calculation) -> UUID:
        employee = await uow.employees.get(calculation.employee_id)
        if employee is None:
            raise NotFoundError("Employee", calculation.employee_id)
        return employee.department_id

    def _apply_result(self, calculation: Calculation, result: CalculationResult) -> Outcome:
        if result.below_threshold:
            outcome = calculation.mark_below_threshold(self.actor)
        else:
            outcome = calculation.calculate(result.gross_incentive, result.applied_slab_id, self.actor)
        if not outcome.success:
            return outcome
        if not result.prorata_factor.is_full():
            return calculation.apply_prorata(result.prorata_factor)
        return outcome

    def _apply_limits(self, calculation: Calculation, plan: IncentivePlan) -> Outcome:
        # Plan limits may have changed since the calculation was created
        if plan.maximum_payout is not None:
            outcome = calculation.apply_cap(plan.maximum_payout)
            if not outcome.success:
                return outcome
        if plan.minimum_payout is not None:
            return calculation.apply_minimum(plan.minimum_payout)
        return Outcome.ok()

    def _duplicate(self, existing: Calculation) -> Outcome[Calculation]:
        logger.info(
            "Active calculation %s already exists for employee %s, period %s",
            existing.calculation_id,
            existing.employee_id,
            existing.period,
        )
        return Outcome.fail(
            ErrorCode.DUPLICATE_CALCULATION,
            f"Calculation already exists for employee {existing.employee_id} "
            f"and period {existing.period}; adjust or void it instead",
            existing_calculation_id=str(existing.calculation_id),
            current_status=existing.status.value,
        )

    def _routing_failed(self, calculation: Calculation, level: int) -> Outcome:
        logger.warning(
            "Could not route calculation %s for level %d approval",
            calculation.calculation_id,
            level,
        )
        return Outcome.fail(
            ErrorCode.ROUTING_FAILED,
            f"No approver could be resolved for level {level}",
            current_status=calculation.status.value,
            level=level,
        )

    def _publish(self, calculation: Calculation) -> None:
        with self.emitter.batch() as batch:
            batch.extend(calculation.pull_events())
