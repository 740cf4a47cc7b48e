"""Domain event types for incentive calculations and approvals.

Events are frozen dataclasses carrying an ``EventMetadata`` header and a
typed payload. Each class declares its routing category.

Events are queued on the Calculation aggregate during a transition and
drained by the service layer once the change has been committed.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    CALCULATION = "calculation"
    APPROVAL = "approval"
    PAYMENT = "payment"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID
    actor: str  # Acting user identity, "system" when unknown
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        actor: str = "system",
        correlation_id: UUID | None = None,
        source_service: str = "incentive_engine",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor=actor,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    category: ClassVar[EventCategory]

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize_dict(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Calculation Events
# =============================================================================


@dataclass(frozen=True)
class CalculationCreated(DomainEvent):
    """A calculation was created for an (employee, plan, period)."""

    calculation_id: UUID
    employee_id: UUID
    incentive_plan_id: UUID
    period_start: date
    period_end: date
    revision: int

    category: ClassVar[EventCategory] = EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationCompleted(DomainEvent):
    """Gross incentive was computed and applied."""

    calculation_id: UUID
    employee_id: UUID
    gross_incentive: Decimal
    currency: str
    applied_slab_id: UUID | None

    category: ClassVar[EventCategory] = EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationAdjusted(DomainEvent):
    """Net incentive was manually adjusted."""

    calculation_id: UUID
    previous_net: Decimal
    new_net: Decimal
    reason: str

    category: ClassVar[EventCategory] = EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationVoided(DomainEvent):
    """Calculation was voided."""

    calculation_id: UUID
    employee_id: UUID
    previous_status: str
    reason: str

    category: ClassVar[EventCategory] = EventCategory.CALCULATION


# =============================================================================
# Approval Events
# =============================================================================


@dataclass(frozen=True)
class CalculationSubmitted(DomainEvent):
    """Calculation entered the approval chain."""

    calculation_id: UUID
    employee_id: UUID
    approval_id: UUID
    approver_id: UUID
    approval_level: int
    expires_at: datetime | None

    category: ClassVar[EventCategory] = EventCategory.APPROVAL


@dataclass(frozen=True)
class ApprovalAdvanced(DomainEvent):
    """A level was approved and the next level's approval was created."""

    calculation_id: UUID
    approved_level: int
    next_approval_id: UUID
    next_approver_id: UUID
    next_level: int

    category: ClassVar[EventCategory] = EventCategory.APPROVAL


@dataclass(frozen=True)
class ApprovalReassigned(DomainEvent):
    """An active approval was delegated, escalated or expired onto another approver."""

    calculation_id: UUID
    previous_approval_id: UUID
    previous_status: str
    new_approval_id: UUID
    new_approver_id: UUID
    approval_level: int
    reason: str | None

    category: ClassVar[EventCategory] = EventCategory.APPROVAL


@dataclass(frozen=True)
class CalculationApproved(DomainEvent):
    """All required approval levels were satisfied."""

    calculation_id: UUID
    employee_id: UUID
    net_incentive: Decimal
    currency: str
    final_level: int

    category: ClassVar[EventCategory] = EventCategory.APPROVAL


@dataclass(frozen=True)
class CalculationRejected(DomainEvent):
    """Calculation was rejected by an approver."""

    calculation_id: UUID
    employee_id: UUID
    approval_level: int
    reason: str

    category: ClassVar[EventCategory] = EventCategory.APPROVAL


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class CalculationPaid(DomainEvent):
    """Payroll confirmed disbursement."""

    calculation_id: UUID
    employee_id: UUID
    net_incentive: Decimal
    currency: str
    payment_reference: str | None

    category: ClassVar[EventCategory] = EventCategory.PAYMENT
