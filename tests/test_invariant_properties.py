"""Property-based tests for calculation invariants.

Hypothesis generates amounts, slab sets and operation sequences; the
invariants must hold for every one of them.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from hypothesis import assume, given, settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, rule

from incentive_engine.calculators.slabs import evaluate_graduated, evaluate_marginal
from incentive_engine.config import ApprovalPolicy
from incentive_engine.domain.calculation import finalize_net
from incentive_engine.domain.plan import Slab
from incentive_engine.domain.values import Money, Percentage
from incentive_engine.services.approval_workflow import ApprovalWorkflowEngine
from incentive_engine.services.state_machine import CalculationStateMachine, CalculationStatus

from tests.conftest import NOW, assignment, inr, make_calculation

amounts = st.decimals(min_value=0, max_value=Decimal("10000000"), places=2)
factors = st.decimals(min_value=0, max_value=Decimal("100"), places=2)


def money(amount: Decimal) -> Money:
    return Money(amount, "INR")


# =============================================================================
# Net incentive
# =============================================================================


class TestFinalizeNetProperties:
    @given(gross=amounts, maximum=amounts)
    def test_cap_is_never_exceeded(self, gross, maximum):
        figures = finalize_net(money(gross), maximum=money(maximum))

        assert figures.net <= money(maximum)
        assert figures.capped == (gross > maximum)

    @given(gross=amounts, factor=factors, maximum=st.none() | amounts, minimum=st.none() | amounts)
    def test_net_is_never_negative(self, gross, factor, maximum, minimum):
        figures = finalize_net(
            money(gross),
            Percentage(factor),
            money(maximum) if maximum is not None else None,
            money(minimum) if minimum is not None else None,
        )
        assert figures.net.amount >= 0

    @given(gross=amounts, factor=factors)
    def test_prorata_never_increases_gross(self, gross, factor):
        figures = finalize_net(money(gross), Percentage(factor))
        assert figures.prorated <= money(gross)

    @given(gross=amounts, factor=factors, maximum=st.none() | amounts, minimum=st.none() | amounts)
    def test_repeated_finalization_is_stable(self, gross, factor, maximum, minimum):
        """Same inputs, same figures; the result never feeds back into itself."""
        args = (
            money(gross),
            Percentage(factor),
            money(maximum) if maximum is not None else None,
            money(minimum) if minimum is not None else None,
        )
        assert finalize_net(*args) == finalize_net(*args)

    @given(minimum=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2))
    def test_zero_gross_stays_zero(self, minimum):
        assert finalize_net(Money.zero("INR"), minimum=money(minimum)).net.is_zero()


# =============================================================================
# Slabs
# =============================================================================


@st.composite
def ascending_slabs(draw):
    """Contiguous rate slabs from zero with non-decreasing rates."""
    bounds = draw(
        st.lists(st.integers(min_value=1, max_value=500000), min_size=1, max_size=5, unique=True)
    )
    bounds.sort()
    rates = sorted(
        draw(
            st.lists(
                st.decimals(min_value=0, max_value=Decimal("25"), places=1),
                min_size=len(bounds) + 1,
                max_size=len(bounds) + 1,
            )
        )
    )
    edges = [0, *bounds]
    slabs = []
    for index, start in enumerate(edges):
        end = edges[index + 1] if index + 1 < len(edges) else None
        slabs.append(
            Slab(
                tier_index=index + 1,
                from_value=Decimal(start),
                to_value=Decimal(end) if end is not None else None,
                rate=rates[index],
            )
        )
    return slabs


class TestSlabProperties:
    @given(slabs=ascending_slabs(), value=st.integers(min_value=0, max_value=1000000))
    def test_marginal_never_exceeds_top_rate(self, slabs, value):
        value = Decimal(value)
        top_rate = max(s.rate for s in slabs)

        evaluation = evaluate_marginal(slabs, value)

        assert evaluation.amount <= value * top_rate / 100

    @given(slabs=ascending_slabs(), value=st.integers(min_value=0, max_value=1000000))
    def test_marginal_never_exceeds_graduated(self, slabs, value):
        """With rates rising by band, the whole value at the reached rate is an upper bound."""
        value = Decimal(value)

        marginal = evaluate_marginal(slabs, value)
        graduated = evaluate_graduated(slabs, value, value)

        assert marginal.amount <= graduated.amount
        assert marginal.applied_slab == graduated.applied_slab

    @given(slabs=ascending_slabs(), value=st.integers(min_value=0, max_value=1000000))
    def test_marginal_portions_sum_to_amount(self, slabs, value):
        evaluation = evaluate_marginal(slabs, Decimal(value))
        assert sum(p for _, p in evaluation.portions) == evaluation.amount


# =============================================================================
# Approval routing
# =============================================================================


class TestApprovalLevelProperties:
    @given(low=amounts, high=amounts)
    def test_level_is_monotonic(self, low, high):
        assume(low <= high)
        workflow = ApprovalWorkflowEngine(departments=None, policy=ApprovalPolicy())

        assert (
            workflow.determine_approval_level(low).required_level
            <= workflow.determine_approval_level(high).required_level
        )

    @given(amount=amounts)
    def test_level_within_policy(self, amount):
        policy = ApprovalPolicy()
        workflow = ApprovalWorkflowEngine(departments=None, policy=policy)

        assert 1 <= workflow.determine_approval_level(amount).required_level <= policy.max_level


# =============================================================================
# Lifecycle
# =============================================================================


class CalculationLifecycle(RuleBasedStateMachine):
    """Random operation sequences against a single calculation.

    Operations are allowed to fail; failed operations must leave the
    calculation untouched, and terminal statuses must stick.
    """

    def __init__(self):
        super().__init__()
        self.calculation = make_calculation()
        self.terminal: CalculationStatus | None = None

    def _attempt(self, operation):
        before = self.calculation.status
        outcome = operation()
        if not outcome.success:
            assert self.calculation.status == before
        elif CalculationStateMachine.is_terminal(self.calculation.status):
            self.terminal = self.terminal or self.calculation.status

    @rule()
    def submit(self):
        self._attempt(lambda: self.calculation.submit("hr@example.com", assignment(), now=NOW))

    @rule(required_level=st.integers(min_value=1, max_value=3))
    def approve(self, required_level):
        active = self.calculation.active_approval
        next_approver = None
        if active is not None and active.approval_level < required_level:
            next_approver = assignment(level=active.approval_level + 1)
        self._attempt(
            lambda: self.calculation.approve("approver@example.com", required_level, next_approver, now=NOW)
        )

    @rule()
    def reject(self):
        self._attempt(lambda: self.calculation.reject("approver@example.com", "Figures look wrong", now=NOW))

    @rule(actual=st.integers(min_value=0, max_value=200000))
    def recalculate(self, actual):
        def operation():
            outcome = self.calculation.recalculate(Decimal(actual), Decimal("50000"), inr("100000"))
            if outcome.success:
                self.calculation.calculate(inr(Decimal(actual) * Decimal("0.075")), uuid4(), now=NOW)
            return outcome

        self._attempt(operation)

    @rule(amount=amounts)
    def adjust(self, amount):
        self._attempt(lambda: self.calculation.adjust(inr(amount), "Manual correction", "hr@example.com"))

    @rule()
    def void(self):
        self._attempt(lambda: self.calculation.void("No longer valid", "hr@example.com", now=NOW))

    @rule()
    def mark_paid(self):
        self._attempt(lambda: self.calculation.mark_paid("payroll@example.com", "PR-1"))

    @invariant()
    def terminal_status_sticks(self):
        if self.terminal is not None:
            assert self.calculation.status == self.terminal

    @invariant()
    def net_is_non_negative(self):
        assert self.calculation.net_incentive.amount >= 0

    @invariant()
    def at_most_one_pending_approval(self):
        assert sum(1 for a in self.calculation.approvals if a.is_pending) <= 1

    @invariant()
    def pending_approval_matches_status(self):
        has_pending = self.calculation.active_approval is not None
        assert has_pending == (self.calculation.status == CalculationStatus.PENDING_APPROVAL)


TestCalculationLifecycle = CalculationLifecycle.TestCase
TestCalculationLifecycle.settings = settings(max_examples=50, stateful_step_count=20, deadline=None)
