"""Typed outcomes and the error taxonomy.

Expected business failures are returned as ``Outcome`` values carrying a
stable machine-readable code. The exceptions in this module are raised only
at the storage boundary and converted to outcomes by the service handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Stable failure codes."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    DUPLICATE_CALCULATION = "DUPLICATE_CALCULATION"
    CALCULATION_FAILED = "CALCULATION_FAILED"
    ROUTING_FAILED = "ROUTING_FAILED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PLAN_INACTIVE = "PLAN_INACTIVE"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    PERIOD_OUTSIDE_PLAN = "PERIOD_OUTSIDE_PLAN"
    ALREADY_PAID = "ALREADY_PAID"
    ALREADY_VOIDED = "ALREADY_VOIDED"
    REQUIRES_REAPPROVAL = "REQUIRES_REAPPROVAL"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a domain or handler operation."""

    success: bool
    value: T | None = None
    error_code: ErrorCode | None = None
    message: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.error_code == ErrorCode.CONCURRENCY_CONFLICT

    @classmethod
    def ok(cls, value: T | None = None, message: str | None = None) -> Outcome[T]:
        return cls(success=True, value=value, message=message)

    @classmethod
    def fail(
        cls, error_code: ErrorCode, message: str, **context: Any
    ) -> Outcome[T]:
        return cls(success=False, error_code=error_code, message=message, context=context)

    @classmethod
    def not_found(cls, entity_name: str, entity_id: Any) -> Outcome[T]:
        return cls.fail(
            ErrorCode.NOT_FOUND,
            f"{entity_name} with ID '{entity_id}' was not found.",
            entity=entity_name,
            entity_id=str(entity_id),
        )

    @classmethod
    def invalid_transition(
        cls, action: str, current_status: str, reason: str | None = None
    ) -> Outcome[T]:
        msg = f"Cannot {action} when status is '{current_status}'"
        if reason:
            msg += f": {reason}"
        return cls.fail(
            ErrorCode.INVALID_STATE_TRANSITION, msg, current_status=current_status
        )


class NotFoundError(Exception):
    """Raised by repositories when a referenced record does not exist."""

    def __init__(self, entity_name: str, entity_id: Any):
        self.entity_name = entity_name
        self.entity_id = entity_id
        super().__init__(f"{entity_name} with ID '{entity_id}' was not found.")


class DuplicateCalculationError(Exception):
    """Raised when an active calculation already exists for the triple."""

    def __init__(self, employee_id: UUID, plan_id: UUID, period: Any):
        self.employee_id = employee_id
        self.plan_id = plan_id
        self.period = period
        super().__init__(
            f"Calculation already exists for employee {employee_id}, "
            f"plan {plan_id}, period {period}"
        )


class ConcurrencyConflictError(Exception):
    """Raised when a version-checked write loses a race."""

    def __init__(self, calculation_id: UUID, expected_version: int):
        self.calculation_id = calculation_id
        self.expected_version = expected_version
        super().__init__(
            f"Calculation {calculation_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
