"""Incentive calculation engine - pure orchestration of one calculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from incentive_engine.calculators.eligibility import EligibilityResult, check_eligibility
from incentive_engine.calculators.slabs import (
    SlabCoverageError,
    SlabEvaluation,
    evaluate_graduated,
    evaluate_marginal,
)
from incentive_engine.domain.calculation import finalize_net
from incentive_engine.domain.organization import Employee
from incentive_engine.domain.plan import AchievementType, IncentivePlan, PayoutBasis, Slab
from incentive_engine.domain.results import ErrorCode
from incentive_engine.domain.values import DateRange, Money, Percentage

logger = logging.getLogger(__name__)


def _percentage_metric(actual_value: Decimal, plan: IncentivePlan) -> Decimal:
    """Bands are expressed in percent of target."""
    return plan.target.achievement_percentage(actual_value).value


def _absolute_metric(actual_value: Decimal, plan: IncentivePlan) -> Decimal:
    """Bands are expressed in the metric's own unit."""
    return actual_value


# Slab metric per achievement type
ACHIEVEMENT_METRICS: dict[AchievementType, Callable[[Decimal, IncentivePlan], Decimal]] = {
    AchievementType.PERCENTAGE: _percentage_metric,
    AchievementType.ABSOLUTE: _absolute_metric,
    AchievementType.TIERED_GRADUATED: _absolute_metric,
    AchievementType.TIERED_MARGINAL: _absolute_metric,
}

# Quantity a graduated slab rate is multiplied against
PAYOUT_BASES: dict[PayoutBasis, Callable[[Decimal, IncentivePlan, Employee], Decimal]] = {
    PayoutBasis.ACTUAL_VALUE: lambda actual, plan, employee: actual,
    PayoutBasis.TARGET_VALUE: lambda actual, plan, employee: plan.target.target_value,
    PayoutBasis.BASE_SALARY: lambda actual, plan, employee: employee.base_salary.amount,
}


@dataclass
class CalculationResult:
    """Result of calculating the incentive for one employee."""

    gross_incentive: Money
    net_incentive: Money
    achievement: Percentage
    prorata_factor: Percentage
    applied_slab: Slab | None = None
    below_threshold: bool = False
    capped: bool = False
    error_code: ErrorCode | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.error_code is None

    @property
    def applied_slab_id(self):
        return self.applied_slab.slab_id if self.applied_slab else None

    @classmethod
    def failure(
        cls,
        error_code: ErrorCode,
        message: str,
        currency: str,
        achievement: Percentage | None = None,
    ) -> CalculationResult:
        zero = Money.zero(currency)
        return cls(
            gross_incentive=zero,
            net_incentive=zero,
            achievement=achievement or Percentage.zero(),
            prorata_factor=Percentage.zero(),
            error_code=error_code,
            message=message,
        )


class IncentiveCalculationEngine:
    """Incentive calculation engine.

    Calculation pipeline (stable order):
    1) Validate plan status, inputs and period
    2) Check employee eligibility and derive the prorata factor
    3) Compute achievement and the slab metric for the plan's achievement type
    4) Below the minimum threshold: legitimate zero payout
    5) Evaluate slabs (graduated or marginal)
    6) Preview net: prorata, then cap, then floor

    Business-rule failures come back as unsuccessful results; the engine
    never raises for them.
    """

    def calculate(
        self,
        employee: Employee,
        plan: IncentivePlan,
        actual_value: Decimal,
        period: DateRange,
    ) -> CalculationResult:
        currency = employee.base_salary.currency

        if not plan.is_active:
            return CalculationResult.failure(
                ErrorCode.PLAN_INACTIVE,
                f"Plan {plan.code} is {plan.status.value}, must be active",
                currency,
            )
        if actual_value < 0:
            return CalculationResult.failure(
                ErrorCode.VALIDATION_ERROR, "Actual value cannot be negative", currency
            )
        if not period.is_within(plan.effective_period):
            return CalculationResult.failure(
                ErrorCode.PERIOD_OUTSIDE_PLAN,
                f"Period {period} is outside plan effective period {plan.effective_period}",
                currency,
            )

        config_errors = plan.configuration_errors()
        if config_errors:
            return CalculationResult.failure(
                ErrorCode.CALCULATION_FAILED,
                f"Plan {plan.code} is misconfigured: {'; '.join(config_errors)}",
                currency,
            )
        for limit in (plan.maximum_payout, plan.minimum_payout):
            if limit is not None and limit.currency != currency:
                return CalculationResult.failure(
                    ErrorCode.CALCULATION_FAILED,
                    f"Plan payout limits are in {limit.currency}, "
                    f"employee is paid in {currency}",
                    currency,
                )

        eligibility = check_eligibility(employee, plan, period)
        if not eligibility.eligible:
            return CalculationResult.failure(
                ErrorCode.NOT_ELIGIBLE, eligibility.reason or "Employee is not eligible", currency
            )

        achievement = plan.target.achievement_percentage(actual_value)

        if not plan.target.meets_minimum_threshold(actual_value):
            logger.debug(
                "Employee %s below threshold on plan %s: %s < %s",
                employee.employee_code,
                plan.code,
                actual_value,
                plan.target.minimum_threshold,
            )
            zero = Money.zero(currency)
            return CalculationResult(
                gross_incentive=zero,
                net_incentive=zero,
                achievement=achievement,
                prorata_factor=eligibility.prorata_factor,
                below_threshold=True,
            )

        try:
            evaluation = self._evaluate_slabs(employee, plan, actual_value)
        except SlabCoverageError as e:
            return CalculationResult.failure(
                ErrorCode.CALCULATION_FAILED,
                f"Plan {plan.code} slabs do not cover the achieved value: {e}",
                currency,
                achievement=achievement,
            )

        return self._finalize(plan, evaluation, achievement, eligibility, currency)

    def _evaluate_slabs(
        self, employee: Employee, plan: IncentivePlan, actual_value: Decimal
    ) -> SlabEvaluation:
        achievement_type = plan.target.achievement_type
        metric = ACHIEVEMENT_METRICS[achievement_type](actual_value, plan)

        if achievement_type.is_marginal:
            return evaluate_marginal(plan.slabs, metric)

        basis = PAYOUT_BASES[plan.payout_basis](actual_value, plan, employee)
        return evaluate_graduated(plan.slabs, metric, basis)

    def _finalize(
        self,
        plan: IncentivePlan,
        evaluation: SlabEvaluation,
        achievement: Percentage,
        eligibility: EligibilityResult,
        currency: str,
    ) -> CalculationResult:
        gross = Money(evaluation.amount, currency)
        figures = finalize_net(
            gross.quantized(),
            eligibility.prorata_factor,
            plan.maximum_payout,
            plan.minimum_payout,
        )
        return CalculationResult(
            gross_incentive=gross,
            net_incentive=figures.net,
            achievement=achievement,
            prorata_factor=eligibility.prorata_factor,
            applied_slab=evaluation.applied_slab,
            capped=figures.capped,
        )
