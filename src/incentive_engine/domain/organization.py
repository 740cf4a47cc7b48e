"""Employee and department records used by calculation and routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID, uuid4

from incentive_engine.domain.values import Money


class EmployeeStatus(str, Enum):
    """Employee status values."""

    ACTIVE = "active"
    PROBATION = "probation"
    ON_LEAVE = "on_leave"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Employee:
    """Employee snapshot as seen by the incentive core."""

    employee_code: str
    base_salary: Money
    department_id: UUID
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    manager_id: UUID | None = None
    date_of_joining: date | None = None
    date_of_leaving: date | None = None
    employee_id: UUID = field(default_factory=uuid4)

    @property
    def is_incentive_eligible_status(self) -> bool:
        return self.status in (EmployeeStatus.ACTIVE, EmployeeStatus.PROBATION)

    def tenure_days(self, as_of: date) -> int | None:
        if self.date_of_joining is None:
            return None
        return (as_of - self.date_of_joining).days


@dataclass(frozen=True)
class Department:
    """Department node in the organization tree."""

    code: str
    name: str
    manager_id: UUID | None = None
    parent_id: UUID | None = None
    department_id: UUID = field(default_factory=uuid4)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
