"""Pydantic command models validated before any domain operation runs."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from incentive_engine.domain.values import DateRange


class CommandBase(BaseModel):
    """Base command schema."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class PeriodCommand(CommandBase):
    """Command carrying a calculation period."""

    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self

    @property
    def period(self) -> DateRange:
        return DateRange(self.period_start, self.period_end)


# ============================================================================
# Calculation commands
# ============================================================================


class RunCalculationCommand(PeriodCommand):
    """Calculate the incentive for one employee on one plan."""

    employee_id: UUID
    plan_id: UUID
    actual_value: Decimal = Field(ge=0)
    notes: str | None = None


class BatchEntry(CommandBase):
    employee_id: UUID
    actual_value: Decimal = Field(ge=0)


class BatchCalculationCommand(PeriodCommand):
    """Calculate one plan for many employees; duplicates are skipped."""

    plan_id: UUID
    entries: list[BatchEntry] = Field(min_length=1)


class RecalculateCommand(CommandBase):
    calculation_id: UUID
    actual_value: Decimal = Field(ge=0)


class AdjustCommand(CommandBase):
    calculation_id: UUID
    new_net_amount: Decimal = Field(ge=0)
    reason: str = Field(min_length=1, max_length=1000)


class VoidCommand(CommandBase):
    calculation_id: UUID
    reason: str = Field(min_length=1, max_length=1000)


class MarkPaidCommand(CommandBase):
    calculation_id: UUID
    payment_reference: str | None = Field(default=None, max_length=100)
    paid_at: datetime | None = None


# ============================================================================
# Approval commands
# ============================================================================


class SubmitCommand(CommandBase):
    calculation_id: UUID


class ApproveCommand(CommandBase):
    calculation_id: UUID
    comments: str | None = Field(default=None, max_length=1000)


class RejectCommand(CommandBase):
    calculation_id: UUID
    reason: str = Field(min_length=1, max_length=1000)


class DelegateCommand(CommandBase):
    calculation_id: UUID
    delegate_to_id: UUID
    comments: str | None = Field(default=None, max_length=1000)


class EscalateCommand(CommandBase):
    calculation_id: UUID
    reason: str | None = Field(default=None, max_length=1000)
