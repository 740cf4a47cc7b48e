"""Calculation state machine with transition validation."""

from __future__ import annotations

from enum import Enum


class CalculationStatus(str, Enum):
    """Calculation status values."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    VOIDED = "voided"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CalculationStateMachine:
    """State machine for calculation status transitions.

    Allowed transitions:
    - draft → pending_approval
    - pending_approval → approved
    - pending_approval → rejected
    - rejected → draft (reopen via recalculation)
    - approved → paid
    - any except paid/voided → voided
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        CalculationStatus.DRAFT: [
            CalculationStatus.PENDING_APPROVAL,
            CalculationStatus.VOIDED,
        ],
        CalculationStatus.PENDING_APPROVAL: [
            CalculationStatus.APPROVED,
            CalculationStatus.REJECTED,
            CalculationStatus.VOIDED,
        ],
        CalculationStatus.APPROVED: [CalculationStatus.PAID, CalculationStatus.VOIDED],
        CalculationStatus.REJECTED: [CalculationStatus.DRAFT, CalculationStatus.VOIDED],
        CalculationStatus.PAID: [],
        CalculationStatus.VOIDED: [],
    }

    # Statuses where figures may still change
    FIGURES_MUTABLE = {CalculationStatus.DRAFT}

    # Statuses that no longer block a new calculation for the same period
    INACTIVE = {CalculationStatus.REJECTED, CalculationStatus.VOIDED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if from_status == to_status:
            return
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify_figures(cls, status: str) -> bool:
        """Check if gross/net/prorata/cap can be changed in this status."""
        return status in cls.FIGURES_MUTABLE

    @classmethod
    def is_active(cls, status: str) -> bool:
        """Check if a calculation in this status blocks duplicates."""
        return status not in cls.INACTIVE

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status, [])

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
