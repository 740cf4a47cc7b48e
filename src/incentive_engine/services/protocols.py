"""Collaborator contracts consumed by the incentive core.

Adapters live in ``incentive_engine.persistence``: an in-memory unit of
work for tests and embedding, and a SQLAlchemy one for real storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType
from typing import Protocol
from uuid import UUID

from incentive_engine.domain.calculation import Calculation
from incentive_engine.domain.organization import Department, Employee
from incentive_engine.domain.plan import IncentivePlan
from incentive_engine.domain.values import DateRange


class EmployeeRepository(Protocol):
    async def get(self, employee_id: UUID) -> Employee | None:
        ...

    async def get_many(self, employee_ids: list[UUID]) -> dict[UUID, Employee]:
        ...


class PlanRepository(Protocol):
    async def get_with_slabs(self, plan_id: UUID) -> IncentivePlan | None:
        """Plan with target and its full slab list."""
        ...


class DepartmentRepository(Protocol):
    async def get(self, department_id: UUID) -> Department | None:
        ...

    async def get_hierarchy(self, department_id: UUID) -> list[Department]:
        """Chain from the department up to the root; self first, root last."""
        ...


class CalculationRepository(Protocol):
    """Calculation persistence.

    ``add`` raises DuplicateCalculationError when an active calculation
    already exists for the triple. ``save`` is a version-checked write and
    raises ConcurrencyConflictError when the stored version moved on.
    """

    async def add(self, calculation: Calculation) -> None:
        ...

    async def get(self, calculation_id: UUID) -> Calculation | None:
        ...

    async def get_with_approvals(self, calculation_id: UUID) -> Calculation | None:
        ...

    async def find_latest(
        self, employee_id: UUID, plan_id: UUID, period: DateRange
    ) -> Calculation | None:
        """Most recent calculation for the triple, any status."""
        ...

    async def save(self, calculation: Calculation) -> None:
        ...

    async def list_pending_approvals(self) -> list[Calculation]:
        """Calculations waiting on an approver, for SLA sweeps."""
        ...


class UnitOfWork(Protocol):
    """One transactional scope.

    Leaving the context without ``commit()`` rolls back every staged write,
    including when the task is cancelled.
    """

    employees: EmployeeRepository
    plans: PlanRepository
    departments: DepartmentRepository
    calculations: CalculationRepository

    async def __aenter__(self) -> UnitOfWork:
        ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class UnitOfWorkFactory(Protocol):
    def __call__(self) -> UnitOfWork:
        ...


class CurrentUserProvider(Protocol):
    user_id: str | None
    email: str | None

    def actor_identity(self) -> str:
        ...


@dataclass(frozen=True)
class StaticUser:
    """Fixed acting user; ``"system"`` when nothing is known."""

    user_id: str | None = None
    email: str | None = None

    def actor_identity(self) -> str:
        return self.email or self.user_id or "system"
