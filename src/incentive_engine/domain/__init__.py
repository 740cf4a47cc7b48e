"""Domain model: value types, plans, organization and the Calculation aggregate."""

from incentive_engine.domain.values import CurrencyMismatchError, DateRange, Money, Percentage
from incentive_engine.domain.plan import (
    AchievementType,
    IncentivePlan,
    PayoutBasis,
    PlanNotModifiableError,
    PlanStatus,
    Slab,
    Target,
    validate_slabs,
)
from incentive_engine.domain.organization import Department, Employee, EmployeeStatus
from incentive_engine.domain.results import (
    ConcurrencyConflictError,
    DuplicateCalculationError,
    ErrorCode,
    NotFoundError,
    Outcome,
)
from incentive_engine.domain.calculation import (
    Approval,
    ApprovalStatus,
    ApproverAssignment,
    Calculation,
    NetFigures,
    finalize_net,
)

__all__ = [
    "AchievementType",
    "Approval",
    "ApprovalStatus",
    "ApproverAssignment",
    "Calculation",
    "ConcurrencyConflictError",
    "CurrencyMismatchError",
    "DateRange",
    "Department",
    "DuplicateCalculationError",
    "Employee",
    "EmployeeStatus",
    "ErrorCode",
    "IncentivePlan",
    "Money",
    "NetFigures",
    "NotFoundError",
    "Outcome",
    "PayoutBasis",
    "Percentage",
    "PlanNotModifiableError",
    "PlanStatus",
    "Slab",
    "Target",
    "finalize_net",
    "validate_slabs",
]
