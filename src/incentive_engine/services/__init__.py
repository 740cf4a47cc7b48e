"""Incentive engine services.

Import the workflow engine and the calculation service from their own
modules; this package only re-exports the state machine, which the domain
layer depends on.
"""

from incentive_engine.services.state_machine import (
    CalculationStateMachine,
    CalculationStatus,
    InvalidTransitionError,
)

__all__ = [
    "CalculationStateMachine",
    "CalculationStatus",
    "InvalidTransitionError",
]
