"""In-memory unit of work.

Used by the test suite and for embedding the core without a database.
Reads hand out deep copies so nothing leaks between units of work; writes
are staged and applied at commit under a lock, with the same duplicate and
version checks the SQL adapter enforces.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from types import TracebackType
from uuid import UUID

from incentive_engine.domain.calculation import Calculation
from incentive_engine.domain.organization import Department, Employee
from incentive_engine.domain.plan import IncentivePlan
from incentive_engine.domain.results import ConcurrencyConflictError, DuplicateCalculationError
from incentive_engine.domain.values import DateRange
from incentive_engine.services.state_machine import CalculationStatus

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Committed state shared by every unit of work created from it."""

    def __init__(self) -> None:
        self.employees: dict[UUID, Employee] = {}
        self.plans: dict[UUID, IncentivePlan] = {}
        self.departments: dict[UUID, Department] = {}
        self.calculations: dict[UUID, Calculation] = {}
        self.sequence: dict[UUID, int] = {}
        self.lock = asyncio.Lock()
        self._counter = itertools.count(1)

    def add_employee(self, employee: Employee) -> Employee:
        self.employees[employee.employee_id] = employee
        return employee

    def add_plan(self, plan: IncentivePlan) -> IncentivePlan:
        self.plans[plan.plan_id] = copy.deepcopy(plan)
        return plan

    def add_department(self, department: Department) -> Department:
        self.departments[department.department_id] = department
        return department

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    __call__ = unit_of_work

    def next_sequence(self) -> int:
        return next(self._counter)

    def active_for(
        self, employee_id: UUID, plan_id: UUID, period: DateRange
    ) -> Calculation | None:
        for calculation in self.calculations.values():
            if (
                calculation.employee_id == employee_id
                and calculation.plan_id == plan_id
                and calculation.period == period
                and calculation.is_active
            ):
                return calculation
        return None


class InMemoryEmployeeRepository:
    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get(self, employee_id: UUID) -> Employee | None:
        return self._store.employees.get(employee_id)

    async def get_many(self, employee_ids: list[UUID]) -> dict[UUID, Employee]:
        return {i: self._store.employees[i] for i in employee_ids if i in self._store.employees}


class InMemoryPlanRepository:
    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_with_slabs(self, plan_id: UUID) -> IncentivePlan | None:
        plan = self._store.plans.get(plan_id)
        return copy.deepcopy(plan) if plan else None


class InMemoryDepartmentRepository:
    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get(self, department_id: UUID) -> Department | None:
        return self._store.departments.get(department_id)

    async def get_hierarchy(self, department_id: UUID) -> list[Department]:
        chain: list[Department] = []
        seen: set[UUID] = set()
        current = self._store.departments.get(department_id)
        while current is not None and current.department_id not in seen:
            chain.append(current)
            seen.add(current.department_id)
            current = (
                self._store.departments.get(current.parent_id) if current.parent_id else None
            )
        return chain


class InMemoryCalculationRepository:
    """Stages adds and saves until the owning unit of work commits."""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self.added: dict[UUID, Calculation] = {}
        self.saved: dict[UUID, Calculation] = {}

    async def add(self, calculation: Calculation) -> None:
        self._check_duplicate(calculation)
        self.added[calculation.calculation_id] = calculation

    async def get(self, calculation_id: UUID) -> Calculation | None:
        return self._load(calculation_id)

    async def get_with_approvals(self, calculation_id: UUID) -> Calculation | None:
        return self._load(calculation_id)

    async def find_latest(
        self, employee_id: UUID, plan_id: UUID, period: DateRange
    ) -> Calculation | None:
        matches = [
            c
            for c in self._store.calculations.values()
            if c.employee_id == employee_id and c.plan_id == plan_id and c.period == period
        ]
        if not matches:
            return None
        latest = max(matches, key=lambda c: self._store.sequence[c.calculation_id])
        return copy.deepcopy(latest)

    async def save(self, calculation: Calculation) -> None:
        self._check_version(calculation)
        self.saved[calculation.calculation_id] = calculation

    async def list_pending_approvals(self) -> list[Calculation]:
        return [
            copy.deepcopy(c)
            for c in self._store.calculations.values()
            if c.status == CalculationStatus.PENDING_APPROVAL
        ]

    def _load(self, calculation_id: UUID) -> Calculation | None:
        calculation = self._store.calculations.get(calculation_id)
        return copy.deepcopy(calculation) if calculation else None

    def _check_duplicate(self, calculation: Calculation) -> None:
        existing = self._store.active_for(
            calculation.employee_id, calculation.plan_id, calculation.period
        )
        if existing is not None and existing.calculation_id != calculation.calculation_id:
            raise DuplicateCalculationError(
                calculation.employee_id, calculation.plan_id, calculation.period
            )

    def _check_version(self, calculation: Calculation) -> None:
        stored = self._store.calculations.get(calculation.calculation_id)
        if stored is None or stored.version != calculation.version:
            raise ConcurrencyConflictError(calculation.calculation_id, calculation.version)

    def apply(self) -> None:
        """Validate every staged write, then apply them all."""
        for calculation in self.added.values():
            self._check_duplicate(calculation)
        for calculation in self.saved.values():
            self._check_version(calculation)

        for calculation in self.added.values():
            self._store.sequence[calculation.calculation_id] = self._store.next_sequence()
            self._write(calculation, 1)
        for calculation in self.saved.values():
            self._write(calculation, calculation.version + 1)

    def _write(self, calculation: Calculation, version: int) -> None:
        calculation.mark_saved(version)
        snapshot = copy.deepcopy(calculation)
        snapshot.pull_events()
        self._store.calculations[calculation.calculation_id] = snapshot

    def clear(self) -> None:
        self.added.clear()
        self.saved.clear()


class InMemoryUnitOfWork:
    """Unit of work over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self.employees = InMemoryEmployeeRepository(store)
        self.plans = InMemoryPlanRepository(store)
        self.departments = InMemoryDepartmentRepository(store)
        self.calculations = InMemoryCalculationRepository(store)
        self._committed = False

    async def __aenter__(self) -> InMemoryUnitOfWork:
        self._committed = False
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        async with self._store.lock:
            self.calculations.apply()
        self.calculations.clear()
        self._committed = True

    async def rollback(self) -> None:
        if self.calculations.added or self.calculations.saved:
            logger.debug("Discarding uncommitted calculation changes")
        self.calculations.clear()
