"""Unit tests for IncentiveCalculationEngine and eligibility.

The engine is pure: plans and employees are built in memory.
"""

from datetime import date
from decimal import Decimal

import pytest

from incentive_engine.calculators.eligibility import calculate_prorata_factor, check_eligibility
from incentive_engine.calculators.engine import IncentiveCalculationEngine
from incentive_engine.domain.organization import EmployeeStatus
from incentive_engine.domain.plan import AchievementType, PayoutBasis, Slab
from incentive_engine.domain.results import ErrorCode
from incentive_engine.domain.values import DateRange, Money, Percentage

from tests.conftest import JANUARY_2025, inr, make_employee, make_plan


@pytest.fixture
def engine():
    return IncentiveCalculationEngine()


class TestCalculationHappyPath:
    """Straight calculations against an active plan."""

    def test_flat_rate_on_actual_value(self, engine, employee):
        """100000 salary, 50000 target, 7.5% on actual, 75000 achieved."""
        plan = make_plan(rate="7.5", target="50000")

        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)

        assert result.success
        assert result.gross_incentive.amount == Decimal("5625.00")
        assert result.gross_incentive.currency == "INR"
        assert result.net_incentive == inr("5625.00")
        assert result.achievement.value == Decimal("150")
        assert result.prorata_factor.is_full()
        assert result.applied_slab_id == plan.slabs[0].slab_id
        assert not result.below_threshold
        assert not result.capped

    def test_percentage_plan_on_base_salary(self, engine, employee):
        """Percentage plans select by achievement percent and pay on the basis."""
        plan = make_plan(
            achievement_type=AchievementType.PERCENTAGE,
            payout_basis=PayoutBasis.BASE_SALARY,
            slabs=[
                Slab(1, Decimal("0"), Decimal("100"), rate=Decimal("5")),
                Slab(2, Decimal("100"), rate=Decimal("10")),
            ],
        )

        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)

        assert result.success
        assert result.applied_slab.tier_index == 2
        assert result.gross_incentive.amount == Decimal("10000")

    def test_target_value_basis(self, engine, employee):
        plan = make_plan(rate="10", payout_basis=PayoutBasis.TARGET_VALUE)
        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)
        assert result.gross_incentive.amount == Decimal("5000")

    def test_fixed_amount_slab(self, engine, employee):
        plan = make_plan(
            slabs=[
                Slab(1, Decimal("0"), Decimal("50000"), rate=Decimal("0")),
                Slab(2, Decimal("50000"), fixed_amount=Decimal("3000")),
            ]
        )
        result = engine.calculate(employee, plan, Decimal("60000"), JANUARY_2025)
        assert result.gross_incentive.amount == Decimal("3000")

    def test_marginal_plan(self, engine, employee):
        plan = make_plan(
            achievement_type=AchievementType.TIERED_MARGINAL,
            slabs=[
                Slab(1, Decimal("0"), Decimal("50000"), rate=Decimal("5")),
                Slab(2, Decimal("50000"), Decimal("100000"), rate=Decimal("7.5")),
                Slab(3, Decimal("100000"), rate=Decimal("10")),
            ],
        )

        result = engine.calculate(employee, plan, Decimal("120000"), JANUARY_2025)

        assert result.success
        assert result.gross_incentive.amount == Decimal("8250")
        assert result.applied_slab.tier_index == 3

    def test_over_achievement_is_not_capped(self, engine, employee):
        """Achievement above 100% is kept as is."""
        plan = make_plan()
        result = engine.calculate(employee, plan, Decimal("500000"), JANUARY_2025)
        assert result.achievement.value == Decimal("1000")


class TestThresholdAndLimits:
    """Threshold, cap and minimum floor."""

    def test_below_threshold_is_zero_success(self, engine, employee):
        """Below threshold is a legitimate zero payout, not a failure."""
        plan = make_plan(threshold="20000")

        result = engine.calculate(employee, plan, Decimal("10000"), JANUARY_2025)

        assert result.success
        assert result.below_threshold
        assert result.gross_incentive.is_zero()
        assert result.net_incentive.is_zero()
        assert result.achievement.value == Decimal("20")
        assert result.applied_slab is None

    def test_threshold_boundary_is_payable(self, engine, employee):
        plan = make_plan(threshold="20000")
        result = engine.calculate(employee, plan, Decimal("20000"), JANUARY_2025)
        assert not result.below_threshold
        assert result.gross_incentive.amount == Decimal("1500")

    def test_maximum_caps_net(self, engine, employee):
        plan = make_plan(maximum_payout=inr("5000"))

        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)

        assert result.gross_incentive.amount == Decimal("5625")
        assert result.net_incentive == inr("5000.00")
        assert result.capped

    def test_minimum_lifts_positive_net(self, engine, employee):
        plan = make_plan(minimum_payout=inr("8000"))
        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)
        assert result.net_incentive == inr("8000.00")
        assert not result.capped

    def test_minimum_does_not_lift_zero(self, engine, employee):
        plan = make_plan(rate="0", minimum_payout=inr("8000"))
        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)
        assert result.net_incentive.is_zero()


class TestProrata:
    def test_mid_period_joiner_is_prorated(self, engine, org):
        """Joined on the 17th: 15 of 31 days, floored to the cent."""
        employee = make_employee(org.team.department_id, date_of_joining=date(2025, 1, 17))
        plan = make_plan()

        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)

        assert result.success
        assert result.prorata_factor == Percentage.of(Decimal(15), Decimal(31))
        assert result.gross_incentive.amount == Decimal("5625")
        assert result.net_incentive == inr("2721.77")

    def test_prorata_factor_clipped_by_leaving(self, org):
        employee = make_employee(
            org.team.department_id,
            date_of_joining=date(2024, 1, 1),
            date_of_leaving=date(2025, 1, 10),
        )
        factor = calculate_prorata_factor(employee, JANUARY_2025)
        assert factor == Percentage.of(Decimal(10), Decimal(31))

    def test_full_period(self, employee):
        assert calculate_prorata_factor(employee, JANUARY_2025).is_full()

    def test_no_overlap_is_zero(self, org):
        employee = make_employee(org.team.department_id, date_of_joining=date(2025, 3, 1))
        assert calculate_prorata_factor(employee, JANUARY_2025) == Percentage.zero()


class TestEligibility:
    def test_probation_is_eligible(self, org):
        employee = make_employee(org.team.department_id, status=EmployeeStatus.PROBATION)
        assert check_eligibility(employee, make_plan(), JANUARY_2025).eligible

    def test_terminated_is_not_eligible(self, org):
        employee = make_employee(org.team.department_id, status=EmployeeStatus.TERMINATED)
        result = check_eligibility(employee, make_plan(), JANUARY_2025)
        assert not result.eligible
        assert "terminated" in result.reason

    def test_joined_after_period(self, org):
        employee = make_employee(org.team.department_id, date_of_joining=date(2025, 2, 1))
        result = check_eligibility(employee, make_plan(), JANUARY_2025)
        assert not result.eligible
        assert result.prorata_factor == Percentage.zero()

    def test_left_before_period(self, org):
        employee = make_employee(
            org.team.department_id,
            date_of_joining=date(2020, 1, 1),
            date_of_leaving=date(2024, 12, 31),
        )
        assert not check_eligibility(employee, make_plan(), JANUARY_2025).eligible

    def test_minimum_tenure(self, org):
        """Tenure is measured at period end."""
        employee = make_employee(org.team.department_id, date_of_joining=date(2024, 12, 1))
        plan = make_plan(minimum_tenure_days=90)
        result = check_eligibility(employee, plan, JANUARY_2025)
        assert not result.eligible
        assert "Tenure of 61 days" in result.reason

    def test_no_tenure_rule_means_no_check(self, org):
        employee = make_employee(org.team.department_id, date_of_joining=date(2025, 1, 20))
        assert check_eligibility(employee, make_plan(), JANUARY_2025).eligible

    def test_all_failures_collected(self, org):
        employee = make_employee(
            org.team.department_id,
            status=EmployeeStatus.ON_LEAVE,
            date_of_joining=date(2025, 2, 1),
        )
        result = check_eligibility(employee, make_plan(), JANUARY_2025)
        assert len(result.reasons) == 2


class TestCalculationFailures:
    """Business-rule failures are returned, never raised."""

    def test_inactive_plan(self, engine, employee):
        result = engine.calculate(employee, make_plan(activate=False), Decimal("75000"), JANUARY_2025)
        assert not result.success
        assert result.error_code == ErrorCode.PLAN_INACTIVE

    def test_negative_actual_value(self, engine, employee):
        result = engine.calculate(employee, make_plan(), Decimal("-1"), JANUARY_2025)
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_period_outside_plan(self, engine, employee):
        result = engine.calculate(
            employee, make_plan(), Decimal("75000"), DateRange.for_month(2026, 1)
        )
        assert result.error_code == ErrorCode.PERIOD_OUTSIDE_PLAN

    def test_period_straddling_plan_end(self, engine, employee):
        period = DateRange(date(2025, 12, 15), date(2026, 1, 14))
        result = engine.calculate(employee, make_plan(), Decimal("75000"), period)
        assert result.error_code == ErrorCode.PERIOD_OUTSIDE_PLAN

    def test_ineligible_employee(self, engine, org):
        employee = make_employee(org.team.department_id, status=EmployeeStatus.TERMINATED)
        result = engine.calculate(employee, make_plan(), Decimal("75000"), JANUARY_2025)
        assert result.error_code == ErrorCode.NOT_ELIGIBLE
        assert result.gross_incentive.is_zero()

    def test_uncovered_value(self, engine, employee):
        """A slab set starting above zero fails for values beneath it."""
        plan = make_plan(slabs=[Slab(1, Decimal("10000"), rate=Decimal("5"))])
        result = engine.calculate(employee, plan, Decimal("5000"), JANUARY_2025)
        assert result.error_code == ErrorCode.CALCULATION_FAILED

    def test_misconfigured_slabs(self, engine, employee):
        plan = make_plan()
        plan.slabs = [
            Slab(1, Decimal("0"), Decimal("100"), rate=Decimal("5")),
            Slab(2, Decimal("200"), rate=Decimal("10")),
        ]
        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)
        assert result.error_code == ErrorCode.CALCULATION_FAILED
        assert "Gap" in result.message

    def test_limit_currency_mismatch(self, engine, employee):
        plan = make_plan(maximum_payout=Money(Decimal("5000"), "USD"))
        result = engine.calculate(employee, plan, Decimal("75000"), JANUARY_2025)
        assert result.error_code == ErrorCode.CALCULATION_FAILED
