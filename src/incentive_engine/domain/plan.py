"""Incentive plan, target and slab model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from incentive_engine.domain.values import DateRange, Money, Percentage


class AchievementType(str, Enum):
    """How achievement is measured and how slabs are evaluated."""

    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"
    TIERED_GRADUATED = "tiered_graduated"
    TIERED_MARGINAL = "tiered_marginal"

    @property
    def is_marginal(self) -> bool:
        return self is AchievementType.TIERED_MARGINAL


class PayoutBasis(str, Enum):
    """Quantity a slab rate is multiplied against."""

    ACTUAL_VALUE = "actual_value"
    TARGET_VALUE = "target_value"
    BASE_SALARY = "base_salary"


class PlanStatus(str, Enum):
    """Incentive plan status values."""

    DRAFT = "draft"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class PlanNotModifiableError(Exception):
    """Raised when a structural change is attempted on a non-draft plan."""

    def __init__(self, plan_code: str, status: str, reason: str | None = None):
        self.plan_code = plan_code
        self.status = status
        msg = f"Cannot modify plan '{plan_code}' with status '{status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


@dataclass(frozen=True)
class Target:
    """A plan's achievement target."""

    target_value: Decimal
    minimum_threshold: Decimal
    achievement_type: AchievementType
    metric_unit: str | None = None

    def __post_init__(self) -> None:
        if self.target_value <= 0:
            raise ValueError("Target value must be positive")
        if self.minimum_threshold < 0:
            raise ValueError("Minimum threshold cannot be negative")

    def meets_minimum_threshold(self, actual_value: Decimal) -> bool:
        return actual_value >= self.minimum_threshold

    def achievement_percentage(self, actual_value: Decimal) -> Percentage:
        return Percentage.of(actual_value, self.target_value)


@dataclass(frozen=True)
class Slab:
    """One payout band.

    The band is inclusive-lower, exclusive-upper. ``to_value=None`` means
    unbounded. ``rate`` is a percentage (7.5 means 7.5%).
    """

    tier_index: int
    from_value: Decimal
    to_value: Decimal | None = None
    rate: Decimal | None = None
    fixed_amount: Decimal | None = None
    slab_id: UUID = field(default_factory=uuid4)
    description: str | None = None

    def __post_init__(self) -> None:
        if (self.rate is None) == (self.fixed_amount is None):
            raise ValueError("Slab needs exactly one of rate or fixed_amount")
        if self.rate is not None and self.rate < 0:
            raise ValueError("Payout rate cannot be negative")
        if self.fixed_amount is not None and self.fixed_amount < 0:
            raise ValueError("Fixed amount cannot be negative")
        if self.from_value < 0:
            raise ValueError("Slab lower bound cannot be negative")

    @property
    def is_unbounded(self) -> bool:
        return self.to_value is None

    def contains(self, value: Decimal, treat_as_unbounded: bool = False) -> bool:
        if value < self.from_value:
            return False
        if treat_as_unbounded or self.to_value is None:
            return True
        return value < self.to_value

    def __str__(self) -> str:
        upper = "inf" if self.to_value is None else str(self.to_value)
        payout = f"{self.rate}%" if self.rate is not None else f"fixed {self.fixed_amount}"
        return f"Slab {self.tier_index}: [{self.from_value}, {upper}) @ {payout}"


def validate_slabs(slabs: list[Slab]) -> list[str]:
    """Check slabs are contiguous and non-overlapping.

    Returns list of error messages (empty if valid).
    """
    errors: list[str] = []
    if not slabs:
        return errors

    indices = [s.tier_index for s in slabs]
    if len(set(indices)) != len(indices):
        errors.append("Slab tier indices must be unique")

    ordered = sorted(slabs, key=lambda s: s.from_value)
    for slab in ordered:
        if slab.to_value is not None and slab.to_value <= slab.from_value:
            errors.append(f"{slab} has an empty or inverted band")

    for lower, upper in zip(ordered, ordered[1:]):
        if lower.to_value is None:
            errors.append(f"{lower} is unbounded but is not the final slab")
        elif lower.to_value > upper.from_value:
            errors.append(f"{lower} overlaps {upper}")
        elif lower.to_value < upper.from_value:
            errors.append(
                f"Gap between {lower.to_value} and {upper.from_value}"
            )

    return errors


@dataclass
class IncentivePlan:
    """Incentive plan configuration.

    Only DRAFT plans accept structural edits; ACTIVE plans are immutable.
    """

    code: str
    name: str
    effective_period: DateRange
    target: Target
    payout_basis: PayoutBasis
    slabs: list[Slab] = field(default_factory=list)
    maximum_payout: Money | None = None
    minimum_payout: Money | None = None
    status: PlanStatus = PlanStatus.DRAFT
    minimum_tenure_days: int | None = None
    plan_id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise ValueError("Plan code is required")
        if not self.name or not self.name.strip():
            raise ValueError("Plan name is required")
        self.code = self.code.strip().upper()
        self.name = self.name.strip()

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE

    @property
    def sorted_slabs(self) -> list[Slab]:
        return sorted(self.slabs, key=lambda s: s.from_value)

    def is_effective(self, day: date) -> bool:
        return self.is_active and self.effective_period.contains(day)

    def configuration_errors(self) -> list[str]:
        """Problems that would make calculation against this plan unsafe."""
        errors = validate_slabs(self.slabs)
        if not self.slabs:
            errors.append("Plan must define at least one slab")
        if (
            self.target.achievement_type.is_marginal
            and self.payout_basis != PayoutBasis.ACTUAL_VALUE
        ):
            errors.append("Marginal slabs require the actual_value payout basis")
        if self.maximum_payout is not None and self.minimum_payout is not None:
            if self.maximum_payout.currency != self.minimum_payout.currency:
                errors.append("Payout limits must share one currency")
            elif self.maximum_payout < self.minimum_payout:
                errors.append("Maximum payout cannot be less than minimum payout")
        return errors

    def add_slab(self, slab: Slab) -> None:
        self._ensure_modifiable()
        candidate = self.slabs + [slab]
        overlaps = [e for e in validate_slabs(candidate) if "overlaps" in e or "unique" in e]
        if overlaps:
            raise PlanNotModifiableError(self.code, self.status.value, "; ".join(overlaps))
        self.slabs.append(slab)

    def remove_slab(self, slab_id: UUID) -> None:
        self._ensure_modifiable()
        self.slabs = [s for s in self.slabs if s.slab_id != slab_id]

    def set_payout_limits(
        self, maximum_payout: Money | None, minimum_payout: Money | None
    ) -> None:
        self._ensure_modifiable()
        if maximum_payout is not None and minimum_payout is not None:
            if maximum_payout < minimum_payout:
                raise ValueError("Maximum payout cannot be less than minimum payout")
        self.maximum_payout = maximum_payout
        self.minimum_payout = minimum_payout

    def activate(self) -> None:
        if self.status != PlanStatus.DRAFT:
            raise PlanNotModifiableError(self.code, self.status.value, "only draft plans can be activated")
        errors = self.configuration_errors()
        if errors:
            raise PlanNotModifiableError(self.code, self.status.value, "; ".join(errors))
        self.status = PlanStatus.ACTIVE

    def suspend(self) -> None:
        if self.status != PlanStatus.ACTIVE:
            raise PlanNotModifiableError(self.code, self.status.value, "only active plans can be suspended")
        self.status = PlanStatus.SUSPENDED

    def cancel(self) -> None:
        if self.status == PlanStatus.CANCELLED:
            raise PlanNotModifiableError(self.code, self.status.value, "plan is already cancelled")
        self.status = PlanStatus.CANCELLED

    def _ensure_modifiable(self) -> None:
        if self.status != PlanStatus.DRAFT:
            raise PlanNotModifiableError(self.code, self.status.value)
