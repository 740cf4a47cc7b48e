"""Employee eligibility and prorata factor for a calculation period."""

from __future__ import annotations

from dataclasses import dataclass, field

from incentive_engine.domain.organization import Employee
from incentive_engine.domain.plan import IncentivePlan
from incentive_engine.domain.values import DateRange, Percentage


@dataclass(frozen=True)
class EligibilityResult:
    """Eligibility decision with the criteria that failed."""

    eligible: bool
    prorata_factor: Percentage
    reasons: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str | None:
        return self.reasons[0] if self.reasons else None


def calculate_prorata_factor(employee: Employee, period: DateRange) -> Percentage:
    """Share of the period the employee was employed, on a 0-100 scale.

    The window is clipped to the joining and leaving dates. Full when the
    employee covers the whole period, zero when there is no overlap.
    """
    start = period.start
    end = period.end
    if employee.date_of_joining and employee.date_of_joining > start:
        start = employee.date_of_joining
    if employee.date_of_leaving and employee.date_of_leaving < end:
        end = employee.date_of_leaving

    if start > end:
        return Percentage.zero()

    eligible_days = (end - start).days + 1
    if eligible_days >= period.total_days:
        return Percentage.full()
    return Percentage.of(eligible_days, period.total_days)


def check_eligibility(
    employee: Employee, plan: IncentivePlan, period: DateRange
) -> EligibilityResult:
    """Evaluate every criterion and collect the failures in order."""
    reasons: list[str] = []

    if not employee.is_incentive_eligible_status:
        reasons.append(
            f"Employee status {employee.status.value} is not eligible for incentives"
        )
    if employee.date_of_joining and employee.date_of_joining > period.end:
        reasons.append(
            f"Employee joined on {employee.date_of_joining}, after the period ends"
        )
    if employee.date_of_leaving and employee.date_of_leaving < period.start:
        reasons.append(
            f"Employee left on {employee.date_of_leaving}, before the period starts"
        )
    if plan.minimum_tenure_days is not None:
        tenure = employee.tenure_days(period.end)
        if tenure is None or tenure < plan.minimum_tenure_days:
            reasons.append(
                f"Tenure of {tenure if tenure is not None else 0} days is below "
                f"the required {plan.minimum_tenure_days}"
            )

    if reasons:
        return EligibilityResult(eligible=False, prorata_factor=Percentage.zero(), reasons=reasons)
    return EligibilityResult(
        eligible=True, prorata_factor=calculate_prorata_factor(employee, period)
    )
