"""Domain events emitted by the incentive core."""

from incentive_engine.events.emitter import EventBatch, EventEmitter, RecordingHandler
from incentive_engine.events.types import (
    ApprovalAdvanced,
    ApprovalReassigned,
    CalculationAdjusted,
    CalculationApproved,
    CalculationCompleted,
    CalculationCreated,
    CalculationPaid,
    CalculationRejected,
    CalculationSubmitted,
    CalculationVoided,
    DomainEvent,
    EventCategory,
    EventMetadata,
)

__all__ = [
    "ApprovalAdvanced",
    "ApprovalReassigned",
    "CalculationAdjusted",
    "CalculationApproved",
    "CalculationCompleted",
    "CalculationCreated",
    "CalculationPaid",
    "CalculationRejected",
    "CalculationSubmitted",
    "CalculationVoided",
    "DomainEvent",
    "EventBatch",
    "EventCategory",
    "EventEmitter",
    "EventMetadata",
    "RecordingHandler",
]
