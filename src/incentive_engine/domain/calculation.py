"""Calculation aggregate root and its approval records.

A Calculation is created once per (employee, plan, period) and then mutated
only through its own transition methods. Every method returns an Outcome;
expected business failures never raise. Domain events are queued on the
aggregate and drained with ``pull_events`` after the change is committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from incentive_engine.domain.results import ErrorCode, Outcome
from incentive_engine.domain.values import HUNDRED, CurrencyMismatchError, DateRange, Money, Percentage
from incentive_engine.events.types import (
    ApprovalAdvanced,
    ApprovalReassigned,
    CalculationAdjusted,
    CalculationApproved,
    CalculationCompleted,
    CalculationCreated,
    CalculationPaid,
    CalculationRejected,
    CalculationSubmitted,
    CalculationVoided,
    DomainEvent,
    EventMetadata,
)
from incentive_engine.services.state_machine import CalculationStateMachine, CalculationStatus

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalStatus(str, Enum):
    """Approval record status values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    EXPIRED = "expired"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ApproverAssignment:
    """Who should act on an approval, at which level, and by when."""

    approver_id: UUID
    level: int
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.level < 1:
            raise ValueError("Approval level must be at least 1")


@dataclass
class Approval:
    """One approval step of a calculation.

    Records are never removed. Superseded steps keep their closing status
    (delegated, escalated, expired, cancelled) so the list is a full history.
    """

    calculation_id: UUID
    approver_id: UUID
    approval_level: int
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: datetime | None = None
    action_date: datetime | None = None
    acted_by: str | None = None
    comments: str | None = None
    delegated_to_id: UUID | None = None
    revision: int = 1
    approval_id: UUID = field(default_factory=uuid4)

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_overdue(self, now: datetime) -> bool:
        return self.is_pending and self.expires_at is not None and now > self.expires_at

    def close(
        self,
        status: ApprovalStatus,
        acted_by: str,
        at: datetime,
        comments: str | None = None,
    ) -> None:
        self.status = status
        self.acted_by = acted_by
        self.action_date = at
        if comments:
            self.comments = comments


@dataclass(frozen=True)
class NetFigures:
    """Result of finalizing a gross amount."""

    net: Money
    prorated: Money
    capped: bool


def finalize_net(
    gross: Money,
    prorata_factor: Percentage | None = None,
    maximum: Money | None = None,
    minimum: Money | None = None,
) -> NetFigures:
    """Derive net incentive from gross.

    Order is fixed: prorata (floored to 2 places), then the maximum cap,
    then the minimum floor. The floor only lifts positive amounts, so zero
    payouts stay zero. Always computed from gross, so repeated calls with
    the same inputs give the same result.
    """
    prorated = gross
    if prorata_factor is not None and not prorata_factor.is_full():
        prorated = (gross * prorata_factor.as_fraction()).floored()

    net = prorated
    capped = False
    if maximum is not None and net > maximum:
        net = maximum
        capped = True
    if minimum is not None and net.is_positive() and net < minimum:
        net = minimum

    return NetFigures(net=net.quantized(), prorated=prorated.quantized(), capped=capped)


class Calculation:
    """Incentive calculation for one employee, plan and period.

    Fields are read-only properties. State changes go through the methods
    below, each guarded by the current status.
    """

    def __init__(
        self,
        *,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
        target_value: Decimal,
        actual_value: Decimal,
        base_salary: Money,
        calculation_id: UUID | None = None,
        status: CalculationStatus = CalculationStatus.DRAFT,
        achievement: Percentage | None = None,
        applied_slab_id: UUID | None = None,
        gross_incentive: Money | None = None,
        net_incentive: Money | None = None,
        prorata_input: Percentage | None = None,
        maximum_payout: Money | None = None,
        minimum_payout: Money | None = None,
        below_threshold: bool = False,
        capped: bool = False,
        calculated_at: datetime | None = None,
        submitted_by: str | None = None,
        submitted_at: datetime | None = None,
        approved_by: str | None = None,
        approved_at: datetime | None = None,
        rejected_by: str | None = None,
        rejection_reason: str | None = None,
        voided_by: str | None = None,
        void_reason: str | None = None,
        paid_by: str | None = None,
        paid_at: datetime | None = None,
        payment_reference: str | None = None,
        adjustment_reason: str | None = None,
        notes: str | None = None,
        version: int = 0,
        revision: int = 1,
        previous_revision_id: UUID | None = None,
        approvals: list[Approval] | None = None,
    ):
        currency = base_salary.currency
        self._calculation_id = calculation_id or uuid4()
        self._employee_id = employee_id
        self._plan_id = plan_id
        self._period = period
        self._target_value = target_value
        self._actual_value = actual_value
        self._base_salary = base_salary
        self._status = CalculationStatus(status)
        self._achievement = achievement or Percentage.of(actual_value, target_value)
        self._applied_slab_id = applied_slab_id
        self._gross = gross_incentive or Money.zero(currency)
        self._net = net_incentive or Money.zero(currency)
        self._prorata_input = prorata_input
        self._maximum_payout = maximum_payout
        self._minimum_payout = minimum_payout
        self._below_threshold = below_threshold
        self._capped = capped
        self._calculated_at = calculated_at
        self._submitted_by = submitted_by
        self._submitted_at = submitted_at
        self._approved_by = approved_by
        self._approved_at = approved_at
        self._rejected_by = rejected_by
        self._rejection_reason = rejection_reason
        self._voided_by = voided_by
        self._void_reason = void_reason
        self._paid_by = paid_by
        self._paid_at = paid_at
        self._payment_reference = payment_reference
        self._adjustment_reason = adjustment_reason
        self._notes = notes
        self._version = version
        self._revision = revision
        self._previous_revision_id = previous_revision_id
        self._approvals: list[Approval] = list(approvals or [])
        self._events: list[DomainEvent] = []

    @classmethod
    def create(
        cls,
        *,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
        target_value: Decimal,
        actual_value: Decimal,
        base_salary: Money,
        maximum_payout: Money | None = None,
        minimum_payout: Money | None = None,
        previous: Calculation | None = None,
        created_by: str = SYSTEM_ACTOR,
        notes: str | None = None,
    ) -> Calculation:
        """Start a new DRAFT calculation.

        ``previous`` links the new calculation to an inactive one for the
        same triple, continuing its revision lineage.
        """
        if actual_value < 0:
            raise ValueError("Actual value cannot be negative")
        calc = cls(
            employee_id=employee_id,
            plan_id=plan_id,
            period=period,
            target_value=target_value,
            actual_value=actual_value,
            base_salary=base_salary,
            maximum_payout=maximum_payout,
            minimum_payout=minimum_payout,
            revision=previous.revision + 1 if previous else 1,
            previous_revision_id=previous.calculation_id if previous else None,
            notes=notes,
        )
        calc._record(
            CalculationCreated,
            created_by,
            employee_id=employee_id,
            incentive_plan_id=plan_id,
            period_start=period.start,
            period_end=period.end,
            revision=calc.revision,
        )
        return calc

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def calculation_id(self) -> UUID:
        return self._calculation_id

    @property
    def employee_id(self) -> UUID:
        return self._employee_id

    @property
    def plan_id(self) -> UUID:
        return self._plan_id

    @property
    def period(self) -> DateRange:
        return self._period

    @property
    def currency(self) -> str:
        return self._base_salary.currency

    @property
    def target_value(self) -> Decimal:
        return self._target_value

    @property
    def actual_value(self) -> Decimal:
        return self._actual_value

    @property
    def base_salary(self) -> Money:
        return self._base_salary

    @property
    def achievement(self) -> Percentage:
        return self._achievement

    @property
    def applied_slab_id(self) -> UUID | None:
        return self._applied_slab_id

    @property
    def gross_incentive(self) -> Money:
        return self._gross

    @property
    def net_incentive(self) -> Money:
        return self._net

    @property
    def prorata_input(self) -> Percentage | None:
        """Eligibility factor as requested, before flooring."""
        return self._prorata_input

    @property
    def prorata_factor(self) -> Percentage | None:
        """Recorded prorata percentage: prorated net over gross.

        None when no prorata was applied, zero when gross is zero.
        """
        if self._prorata_input is None:
            return None
        if self._gross.is_zero():
            return Percentage.zero()
        figures = finalize_net(self._gross, self._prorata_input)
        return Percentage.of(figures.prorated.amount, self._gross.amount).rounded(4)

    @property
    def maximum_payout(self) -> Money | None:
        return self._maximum_payout

    @property
    def minimum_payout(self) -> Money | None:
        return self._minimum_payout

    @property
    def status(self) -> CalculationStatus:
        return self._status

    @property
    def below_threshold(self) -> bool:
        return self._below_threshold

    @property
    def capped(self) -> bool:
        return self._capped

    @property
    def calculated_at(self) -> datetime | None:
        return self._calculated_at

    @property
    def submitted_by(self) -> str | None:
        return self._submitted_by

    @property
    def submitted_at(self) -> datetime | None:
        return self._submitted_at

    @property
    def approved_by(self) -> str | None:
        return self._approved_by

    @property
    def approved_at(self) -> datetime | None:
        return self._approved_at

    @property
    def rejected_by(self) -> str | None:
        return self._rejected_by

    @property
    def rejection_reason(self) -> str | None:
        return self._rejection_reason

    @property
    def voided_by(self) -> str | None:
        return self._voided_by

    @property
    def void_reason(self) -> str | None:
        return self._void_reason

    @property
    def paid_by(self) -> str | None:
        return self._paid_by

    @property
    def paid_at(self) -> datetime | None:
        return self._paid_at

    @property
    def payment_reference(self) -> str | None:
        return self._payment_reference

    @property
    def adjustment_reason(self) -> str | None:
        return self._adjustment_reason

    @property
    def notes(self) -> str | None:
        return self._notes

    @property
    def version(self) -> int:
        """Optimistic concurrency token, bumped by the repository on save."""
        return self._version

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def previous_revision_id(self) -> UUID | None:
        return self._previous_revision_id

    @property
    def approvals(self) -> tuple[Approval, ...]:
        return tuple(sorted(self._approvals, key=lambda a: (a.approval_level, a.created_at)))

    @property
    def active_approval(self) -> Approval | None:
        """The single pending approval, if any."""
        for approval in self._approvals:
            if approval.is_pending:
                return approval
        return None

    @property
    def highest_approved_level(self) -> int:
        """Highest level approved in the current revision's approval cycle."""
        levels = [
            a.approval_level
            for a in self._approvals
            if a.status == ApprovalStatus.APPROVED and a.revision == self._revision
        ]
        return max(levels, default=0)

    @property
    def is_active(self) -> bool:
        """Whether this calculation blocks another for the same period."""
        return CalculationStateMachine.is_active(self._status)

    def mark_saved(self, version: int) -> None:
        """Persistence hook: record the version written to storage."""
        self._version = version

    def pull_events(self) -> list[DomainEvent]:
        """Drain queued domain events."""
        events, self._events = self._events, []
        return events

    # ------------------------------------------------------------------
    # Figures (DRAFT only)
    # ------------------------------------------------------------------

    def calculate(
        self,
        gross: Money,
        applied_slab_id: UUID | None,
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> Outcome[None]:
        """Apply an engine result."""
        guard = self._require_figures_mutable("calculate")
        if guard:
            return guard
        if gross.currency != self.currency:
            return self._currency_mismatch(gross.currency)
        if gross.amount < 0:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Gross incentive cannot be negative")

        self._gross = gross.quantized()
        self._applied_slab_id = applied_slab_id
        self._achievement = Percentage.of(self._actual_value, self._target_value)
        self._below_threshold = False
        self._calculated_at = now or _utcnow()
        self._refresh_net()
        self._record(
            CalculationCompleted,
            actor,
            employee_id=self._employee_id,
            gross_incentive=self._gross.amount,
            currency=self.currency,
            applied_slab_id=applied_slab_id,
        )
        return Outcome.ok()

    def mark_below_threshold(
        self, actor: str = SYSTEM_ACTOR, now: datetime | None = None
    ) -> Outcome[None]:
        """Record a legitimate zero payout."""
        guard = self._require_figures_mutable("mark below threshold")
        if guard:
            return guard

        self._gross = Money.zero(self.currency)
        self._applied_slab_id = None
        self._achievement = Percentage.of(self._actual_value, self._target_value)
        self._below_threshold = True
        self._calculated_at = now or _utcnow()
        self._refresh_net()
        self._record(
            CalculationCompleted,
            actor,
            employee_id=self._employee_id,
            gross_incentive=self._gross.amount,
            currency=self.currency,
            applied_slab_id=None,
        )
        return Outcome.ok()

    def apply_prorata(self, factor: Percentage) -> Outcome[None]:
        guard = self._require_figures_mutable("apply prorata")
        if guard:
            return guard
        if factor.value > HUNDRED:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR, "Prorata factor cannot exceed 100%"
            )
        self._prorata_input = factor
        self._refresh_net()
        return Outcome.ok()

    def apply_cap(self, maximum: Money) -> Outcome[None]:
        guard = self._require_figures_mutable("apply cap")
        if guard:
            return guard
        if maximum.currency != self.currency:
            return self._currency_mismatch(maximum.currency)
        if self._minimum_payout is not None and maximum < self._minimum_payout:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR,
                "Maximum payout cannot be less than minimum payout",
            )
        self._maximum_payout = maximum
        self._refresh_net()
        return Outcome.ok()

    def apply_minimum(self, minimum: Money) -> Outcome[None]:
        guard = self._require_figures_mutable("apply minimum")
        if guard:
            return guard
        if minimum.currency != self.currency:
            return self._currency_mismatch(minimum.currency)
        if self._maximum_payout is not None and minimum > self._maximum_payout:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR,
                "Minimum payout cannot exceed maximum payout",
            )
        self._minimum_payout = minimum
        self._refresh_net()
        return Outcome.ok()

    def adjust(
        self,
        new_net: Money,
        reason: str,
        adjusted_by: str,
        required_level: int | None = None,
    ) -> Outcome[None]:
        """Override net incentive with a manual figure.

        Allowed in DRAFT and APPROVED. An approved calculation may only be
        adjusted within the approval level it already holds.
        """
        if self._status not in (CalculationStatus.DRAFT, CalculationStatus.APPROVED):
            return Outcome.invalid_transition(
                "adjust", self._status.value, "only draft or approved calculations can be adjusted"
            )
        if not reason or not reason.strip():
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Adjustment reason is required")
        if new_net.currency != self.currency:
            return self._currency_mismatch(new_net.currency)
        if new_net.amount < 0:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Net incentive cannot be negative")
        if (
            self._status == CalculationStatus.APPROVED
            and required_level is not None
            and required_level > self.highest_approved_level
        ):
            return Outcome.fail(
                ErrorCode.REQUIRES_REAPPROVAL,
                f"Adjusted amount needs approval level {required_level}, "
                f"calculation was approved up to level {self.highest_approved_level}",
                current_status=self._status.value,
                required_level=required_level,
            )

        previous = self._net
        self._net = new_net.quantized()
        self._adjustment_reason = reason.strip()
        self._record(
            CalculationAdjusted,
            adjusted_by,
            previous_net=previous.amount,
            new_net=self._net.amount,
            reason=self._adjustment_reason,
        )
        return Outcome.ok()

    def recalculate(
        self,
        actual_value: Decimal,
        target_value: Decimal,
        base_salary: Money,
    ) -> Outcome[None]:
        """Reopen with fresh inputs.

        DRAFT or REJECTED only. Figures are reset until the next
        ``calculate``/``mark_below_threshold``. Approval history is kept, but
        approvals from earlier revisions no longer count as approved levels.
        """
        if self._status not in (CalculationStatus.DRAFT, CalculationStatus.REJECTED):
            return Outcome.invalid_transition(
                "recalculate", self._status.value, "only draft or rejected calculations can be recalculated"
            )
        if actual_value < 0:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Actual value cannot be negative")
        if base_salary.currency != self.currency:
            return self._currency_mismatch(base_salary.currency)

        CalculationStateMachine.validate_transition(self._status, CalculationStatus.DRAFT)
        self._status = CalculationStatus.DRAFT
        self._actual_value = actual_value
        self._target_value = target_value
        self._base_salary = base_salary
        self._achievement = Percentage.of(actual_value, target_value)
        self._gross = Money.zero(self.currency)
        self._net = Money.zero(self.currency)
        self._applied_slab_id = None
        self._prorata_input = None
        self._below_threshold = False
        self._capped = False
        self._calculated_at = None
        self._adjustment_reason = None
        self._submitted_by = None
        self._submitted_at = None
        self._revision += 1
        return Outcome.ok()

    # ------------------------------------------------------------------
    # Approval chain
    # ------------------------------------------------------------------

    def submit(
        self,
        submitted_by: str,
        first_approver: ApproverAssignment,
        now: datetime | None = None,
    ) -> Outcome[Approval]:
        """DRAFT -> PENDING_APPROVAL with a level-1 approval."""
        if self._status != CalculationStatus.DRAFT:
            return Outcome.invalid_transition("submit", self._status.value)
        if self._calculated_at is None:
            return Outcome.invalid_transition(
                "submit", self._status.value, "calculation has no computed figures"
            )
        if self._below_threshold:
            return Outcome.invalid_transition(
                "submit", self._status.value, "below-threshold calculations are not payable"
            )
        if first_approver.level != 1:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR, "The first approval must be at level 1"
            )

        at = now or _utcnow()
        self._transition(CalculationStatus.PENDING_APPROVAL)
        approval = self._open_approval(first_approver, at)
        self._submitted_by = submitted_by
        self._submitted_at = at
        self._record(
            CalculationSubmitted,
            submitted_by,
            employee_id=self._employee_id,
            approval_id=approval.approval_id,
            approver_id=approval.approver_id,
            approval_level=approval.approval_level,
            expires_at=approval.expires_at,
        )
        return Outcome.ok(approval)

    def approve(
        self,
        approved_by: str,
        required_level: int,
        next_approver: ApproverAssignment | None = None,
        comments: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[Approval | None]:
        """Approve the active step.

        When the active level is below ``required_level`` the next level's
        approval is opened in the same call and the status stays
        PENDING_APPROVAL; the returned value is that new approval. Otherwise
        the calculation becomes APPROVED and the value is None.
        """
        active, guard = self._require_active_approval("approve")
        if guard:
            return guard

        at = now or _utcnow()
        if active.approval_level < required_level:
            if next_approver is None:
                return Outcome.fail(
                    ErrorCode.ROUTING_FAILED,
                    f"No approver could be resolved for level {active.approval_level + 1}",
                    current_status=self._status.value,
                    level=active.approval_level + 1,
                )
            if next_approver.level != active.approval_level + 1:
                return Outcome.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"Next approver must be at level {active.approval_level + 1}",
                )
            active.close(ApprovalStatus.APPROVED, approved_by, at, comments)
            following = self._open_approval(next_approver, at)
            self._record(
                ApprovalAdvanced,
                approved_by,
                approved_level=active.approval_level,
                next_approval_id=following.approval_id,
                next_approver_id=following.approver_id,
                next_level=following.approval_level,
            )
            return Outcome.ok(following)

        active.close(ApprovalStatus.APPROVED, approved_by, at, comments)
        self._transition(CalculationStatus.APPROVED)
        self._approved_by = approved_by
        self._approved_at = at
        self._record(
            CalculationApproved,
            approved_by,
            employee_id=self._employee_id,
            net_incentive=self._net.amount,
            currency=self.currency,
            final_level=active.approval_level,
        )
        return Outcome.ok(None)

    def reject(
        self,
        rejected_by: str,
        reason: str,
        now: datetime | None = None,
    ) -> Outcome[None]:
        """PENDING_APPROVAL -> REJECTED. A reason is mandatory."""
        active, guard = self._require_active_approval("reject")
        if guard:
            return guard
        if not reason or not reason.strip():
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Rejection reason is required")

        at = now or _utcnow()
        active.close(ApprovalStatus.REJECTED, rejected_by, at, reason.strip())
        self._cancel_pending(rejected_by, at)
        self._transition(CalculationStatus.REJECTED)
        self._rejected_by = rejected_by
        self._rejection_reason = reason.strip()
        self._record(
            CalculationRejected,
            rejected_by,
            employee_id=self._employee_id,
            approval_level=active.approval_level,
            reason=self._rejection_reason,
        )
        return Outcome.ok()

    def delegate(
        self,
        delegate_to: ApproverAssignment,
        delegated_by: str,
        comments: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[Approval]:
        """Hand the active step to another approver at the same level."""
        active, guard = self._require_active_approval("delegate")
        if guard:
            return guard
        if delegate_to.approver_id == active.approver_id:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Cannot delegate to the same approver")
        if delegate_to.level != active.approval_level:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR, "Delegation keeps the approval level"
            )

        at = now or _utcnow()
        active.close(ApprovalStatus.DELEGATED, delegated_by, at, comments)
        active.delegated_to_id = delegate_to.approver_id
        replacement = self._open_approval(delegate_to, at)
        self._record(
            ApprovalReassigned,
            delegated_by,
            previous_approval_id=active.approval_id,
            previous_status=active.status.value,
            new_approval_id=replacement.approval_id,
            new_approver_id=replacement.approver_id,
            approval_level=replacement.approval_level,
            reason=comments,
        )
        return Outcome.ok(replacement)

    def escalate(
        self,
        target: ApproverAssignment,
        actor: str = SYSTEM_ACTOR,
        reason: str | None = None,
        expired: bool = False,
        now: datetime | None = None,
    ) -> Outcome[Approval]:
        """Move the active step to an escalation target.

        The superseded step is closed as EXPIRED when escalating for an SLA
        breach, ESCALATED otherwise. The new step keeps the current level.
        """
        active, guard = self._require_active_approval("escalate")
        if guard:
            return guard
        if target.approver_id == active.approver_id:
            return Outcome.fail(
                ErrorCode.ROUTING_FAILED,
                "Escalation target is the current approver",
                current_status=self._status.value,
            )

        at = now or _utcnow()
        closing = ApprovalStatus.EXPIRED if expired else ApprovalStatus.ESCALATED
        active.close(closing, actor, at, reason)
        replacement = self._open_approval(
            ApproverAssignment(target.approver_id, active.approval_level, target.expires_at),
            at,
        )
        self._record(
            ApprovalReassigned,
            actor,
            previous_approval_id=active.approval_id,
            previous_status=closing.value,
            new_approval_id=replacement.approval_id,
            new_approver_id=replacement.approver_id,
            approval_level=replacement.approval_level,
            reason=reason,
        )
        return Outcome.ok(replacement)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def void(
        self,
        reason: str,
        voided_by: str,
        now: datetime | None = None,
    ) -> Outcome[None]:
        """Any status except PAID -> VOIDED."""
        if self._status == CalculationStatus.PAID:
            return Outcome.fail(
                ErrorCode.ALREADY_PAID,
                "Paid calculations cannot be voided; use an adjustment instead",
                current_status=self._status.value,
            )
        if self._status == CalculationStatus.VOIDED:
            return Outcome.fail(
                ErrorCode.ALREADY_VOIDED,
                "Calculation is already voided",
                current_status=self._status.value,
            )
        if not reason or not reason.strip():
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Void reason is required")

        at = now or _utcnow()
        previous = self._status
        self._cancel_pending(voided_by, at)
        self._transition(CalculationStatus.VOIDED)
        self._voided_by = voided_by
        self._void_reason = reason.strip()
        self._record(
            CalculationVoided,
            voided_by,
            employee_id=self._employee_id,
            previous_status=previous.value,
            reason=self._void_reason,
        )
        return Outcome.ok()

    def mark_paid(
        self,
        paid_by: str,
        payment_reference: str | None = None,
        paid_at: datetime | None = None,
    ) -> Outcome[None]:
        """APPROVED -> PAID once payroll confirms disbursement."""
        if self._status == CalculationStatus.PAID:
            return Outcome.fail(
                ErrorCode.ALREADY_PAID,
                "Calculation is already paid",
                current_status=self._status.value,
            )
        if self._status == CalculationStatus.VOIDED:
            return Outcome.fail(
                ErrorCode.ALREADY_VOIDED,
                "Voided calculations cannot be paid",
                current_status=self._status.value,
            )
        if self._status != CalculationStatus.APPROVED:
            return Outcome.invalid_transition("mark paid", self._status.value)

        self._transition(CalculationStatus.PAID)
        self._paid_by = paid_by
        self._paid_at = paid_at or _utcnow()
        self._payment_reference = payment_reference
        self._record(
            CalculationPaid,
            paid_by,
            employee_id=self._employee_id,
            net_incentive=self._net.amount,
            currency=self.currency,
            payment_reference=payment_reference,
        )
        return Outcome.ok()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_figures_mutable(self, action: str) -> Outcome[None] | None:
        if not CalculationStateMachine.can_modify_figures(self._status):
            return Outcome.invalid_transition(
                action, self._status.value, "figures can only change while draft"
            )
        return None

    def _require_active_approval(self, action: str) -> tuple[Approval | None, Outcome | None]:
        if self._status != CalculationStatus.PENDING_APPROVAL:
            return None, Outcome.invalid_transition(action, self._status.value)
        active = self.active_approval
        if active is None:
            return None, Outcome.invalid_transition(
                action, self._status.value, "no pending approval"
            )
        return active, None

    def _currency_mismatch(self, other: str) -> Outcome[None]:
        error = CurrencyMismatchError(self.currency, other)
        return Outcome.fail(ErrorCode.VALIDATION_ERROR, str(error))

    def _refresh_net(self) -> None:
        figures = finalize_net(
            self._gross, self._prorata_input, self._maximum_payout, self._minimum_payout
        )
        self._net = figures.net
        self._capped = figures.capped

    def _transition(self, to_status: CalculationStatus) -> None:
        CalculationStateMachine.validate_transition(self._status, to_status)
        logger.debug(
            "Calculation %s: %s -> %s", self._calculation_id, self._status.value, to_status.value
        )
        self._status = to_status

    def _open_approval(self, assignment: ApproverAssignment, at: datetime) -> Approval:
        approval = Approval(
            calculation_id=self._calculation_id,
            approver_id=assignment.approver_id,
            approval_level=assignment.level,
            created_at=at,
            expires_at=assignment.expires_at,
            revision=self._revision,
        )
        self._approvals.append(approval)
        return approval

    def _cancel_pending(self, actor: str, at: datetime) -> None:
        for approval in self._approvals:
            if approval.is_pending:
                approval.close(ApprovalStatus.CANCELLED, actor, at)

    def _record(self, event_cls: type[DomainEvent], actor: str, **payload) -> None:
        self._events.append(
            event_cls(
                metadata=EventMetadata.create(
                    actor=actor or SYSTEM_ACTOR, correlation_id=self._calculation_id
                ),
                calculation_id=self._calculation_id,
                **payload,
            )
        )

    def __repr__(self) -> str:
        return (
            f"Calculation({self._calculation_id}, employee={self._employee_id}, "
            f"period={self._period}, status={self._status.value}, net={self._net})"
        )
