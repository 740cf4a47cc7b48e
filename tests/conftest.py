"""Pytest fixtures for incentive engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from incentive_engine.config import ApprovalPolicy
from incentive_engine.domain.calculation import ApproverAssignment, Calculation
from incentive_engine.domain.organization import Department, Employee
from incentive_engine.domain.plan import (
    AchievementType,
    IncentivePlan,
    PayoutBasis,
    Slab,
    Target,
)
from incentive_engine.domain.values import DateRange, Money
from incentive_engine.events.emitter import EventEmitter, RecordingHandler
from incentive_engine.persistence.memory import InMemoryDepartmentRepository, InMemoryStore
from incentive_engine.services.approval_workflow import ApprovalWorkflowEngine
from incentive_engine.services.calculation_service import CalculationService
from incentive_engine.services.protocols import StaticUser

NOW = datetime(2025, 2, 5, 9, 0, tzinfo=timezone.utc)
JANUARY_2025 = DateRange.for_month(2025, 1)


def inr(amount: str | int) -> Money:
    return Money(Decimal(str(amount)), "INR")


class FakeClock:
    """Controllable clock for SLA tests."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@dataclass
class Org:
    """Three-level department tree: root -> division -> team."""

    root: Department
    division: Department
    team: Department

    @property
    def vp_id(self) -> UUID:
        return self.root.manager_id

    @property
    def director_id(self) -> UUID:
        return self.division.manager_id

    @property
    def manager_id(self) -> UUID:
        return self.team.manager_id


def make_org() -> Org:
    root = Department(code="HQ", name="Headquarters", manager_id=uuid4())
    division = Department(
        code="SALES", name="Sales", manager_id=uuid4(), parent_id=root.department_id
    )
    team = Department(
        code="SALES-N", name="Sales North", manager_id=uuid4(), parent_id=division.department_id
    )
    return Org(root=root, division=division, team=team)


def make_plan(
    rate: str = "7.5",
    target: str = "50000",
    threshold: str = "0",
    slabs: list[Slab] | None = None,
    achievement_type: AchievementType = AchievementType.ABSOLUTE,
    payout_basis: PayoutBasis = PayoutBasis.ACTUAL_VALUE,
    maximum_payout: Money | None = None,
    minimum_payout: Money | None = None,
    minimum_tenure_days: int | None = None,
    activate: bool = True,
    code: str = "SALES-2025",
) -> IncentivePlan:
    plan = IncentivePlan(
        code=code,
        name="Sales Incentive 2025",
        effective_period=DateRange.for_year(2025),
        target=Target(Decimal(target), Decimal(threshold), achievement_type),
        payout_basis=payout_basis,
        slabs=slabs if slabs is not None else [Slab(1, Decimal("0"), rate=Decimal(rate))],
        maximum_payout=maximum_payout,
        minimum_payout=minimum_payout,
        minimum_tenure_days=minimum_tenure_days,
    )
    if activate:
        plan.activate()
    return plan


def make_employee(department_id: UUID, **overrides) -> Employee:
    fields = {
        "employee_code": "E-1001",
        "base_salary": inr("100000"),
        "department_id": department_id,
        "date_of_joining": date(2020, 1, 1),
    }
    fields.update(overrides)
    return Employee(**fields)


def make_calculation(
    gross: str | None = "5625",
    actual: str = "75000",
    target: str = "50000",
    period: DateRange = JANUARY_2025,
) -> Calculation:
    """DRAFT calculation, computed unless ``gross`` is None."""
    calc = Calculation.create(
        employee_id=uuid4(),
        plan_id=uuid4(),
        period=period,
        target_value=Decimal(target),
        actual_value=Decimal(actual),
        base_salary=inr("100000"),
    )
    if gross is not None:
        calc.calculate(inr(gross), uuid4())
    calc.pull_events()
    return calc


def assignment(level: int = 1, approver_id: UUID | None = None) -> ApproverAssignment:
    return ApproverAssignment(
        approver_id=approver_id or uuid4(),
        level=level,
        expires_at=NOW + timedelta(hours=72),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def org() -> Org:
    return make_org()


@pytest.fixture
def employee(org) -> Employee:
    return make_employee(org.team.department_id)


@pytest.fixture
def plan() -> IncentivePlan:
    return make_plan()


@pytest.fixture
def store(org, employee, plan) -> InMemoryStore:
    store = InMemoryStore()
    for department in (org.root, org.division, org.team):
        store.add_department(department)
    store.add_employee(employee)
    store.add_plan(plan)
    return store


@pytest.fixture
def workflow(store, clock) -> ApprovalWorkflowEngine:
    return ApprovalWorkflowEngine(InMemoryDepartmentRepository(store), ApprovalPolicy(), clock)


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def service(store, workflow, recorder) -> CalculationService:
    emitter = EventEmitter()
    emitter.on_all(recorder)
    return CalculationService(
        store.unit_of_work,
        workflow,
        emitter=emitter,
        user=StaticUser(email="approver@example.com"),
    )
