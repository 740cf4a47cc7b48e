"""Tests for domain events and the event emitter."""

import json
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from incentive_engine.events import (
    CalculationApproved,
    CalculationCreated,
    CalculationPaid,
    CalculationRejected,
    EventCategory,
    EventEmitter,
    EventMetadata,
    RecordingHandler,
)


def created_event(meta: EventMetadata | None = None) -> CalculationCreated:
    return CalculationCreated(
        metadata=meta or EventMetadata.create(),
        calculation_id=uuid4(),
        employee_id=uuid4(),
        incentive_plan_id=uuid4(),
        period_start=date(2025, 1, 1),
        period_end=date(2025, 1, 31),
        revision=1,
    )


def approved_event() -> CalculationApproved:
    return CalculationApproved(
        metadata=EventMetadata.create(actor="approver@example.com"),
        calculation_id=uuid4(),
        employee_id=uuid4(),
        net_incentive=Decimal("5625.00"),
        currency="INR",
        final_level=1,
    )


class TestEventMetadata:
    """Test event metadata creation."""

    def test_create_metadata_auto_generates_fields(self):
        """Metadata.create() auto-generates event_id and timestamp."""
        meta = EventMetadata.create()

        assert isinstance(meta.event_id, UUID)
        assert meta.timestamp.tzinfo is not None
        assert isinstance(meta.correlation_id, UUID)
        assert meta.actor == "system"
        assert meta.source_service == "incentive_engine"
        assert meta.version == 1

    def test_create_metadata_with_custom_values(self):
        """Metadata.create() accepts an actor and correlation id."""
        correlation = uuid4()
        meta = EventMetadata.create(actor="hr@example.com", correlation_id=correlation)

        assert meta.actor == "hr@example.com"
        assert meta.correlation_id == correlation


class TestEventTypes:
    def test_categories(self):
        assert created_event().category == EventCategory.CALCULATION
        assert approved_event().category == EventCategory.APPROVAL
        paid = CalculationPaid(
            metadata=EventMetadata.create(),
            calculation_id=uuid4(),
            employee_id=uuid4(),
            net_incentive=Decimal("100"),
            currency="INR",
            payment_reference=None,
        )
        assert paid.category == EventCategory.PAYMENT

    def test_event_type_is_class_name(self):
        assert approved_event().event_type == "CalculationApproved"

    def test_serialization(self):
        """Decimals, UUIDs and dates serialize to strings."""
        event = approved_event()
        data = json.loads(event.to_json())

        assert data["event_type"] == "CalculationApproved"
        assert data["category"] == "approval"
        assert data["net_incentive"] == "5625.00"
        assert data["calculation_id"] == str(event.calculation_id)
        assert data["metadata"]["actor"] == "approver@example.com"

    def test_date_serialization(self):
        data = created_event().to_dict()
        assert data["period_start"] == "2025-01-01"


class TestEventEmitter:
    """Test event emitter functionality."""

    def test_emit_to_type_handler(self):
        """Handler registered for a type receives that type."""
        emitter = EventEmitter()
        received = []
        emitter.on(CalculationApproved, received.append)

        event = approved_event()
        emitter.emit(event)

        assert received == [event]

    def test_emit_does_not_route_to_wrong_handler(self):
        emitter = EventEmitter()
        received = []
        emitter.on(CalculationRejected, received.append)

        emitter.emit(approved_event())

        assert received == []

    def test_emit_to_type_list(self):
        emitter = EventEmitter()
        received = []
        emitter.on([CalculationApproved, CalculationCreated], received.append)

        emitter.emit(approved_event())
        emitter.emit(created_event())

        assert len(received) == 2

    def test_emit_to_category_handler(self):
        """Category handlers receive every event of the category."""
        emitter = EventEmitter()
        received = []
        emitter.on_category(EventCategory.CALCULATION, received.append)

        emitter.emit(created_event())
        emitter.emit(approved_event())

        assert [e.event_type for e in received] == ["CalculationCreated"]

    def test_handler_error_isolation(self):
        """A failing handler doesn't stop the others."""
        emitter = EventEmitter()
        received = []

        def failing_handler(event):
            raise ValueError("Handler failed")

        emitter.on_all(failing_handler)
        emitter.on_all(received.append)

        errors = emitter.emit(approved_event())

        assert len(received) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)

    def test_batch_holds_events(self):
        """Batch context holds events until exit."""
        emitter = EventEmitter()
        recorder = RecordingHandler()
        emitter.on_all(recorder)

        with emitter.batch() as batch:
            batch.add(created_event())
            batch.add(approved_event())
            # Not yet emitted
            assert recorder.events == []

        assert len(recorder.events) == 2
        assert batch.errors == []

    def test_batch_discards_on_exception(self):
        """Batch discards events if exception occurs."""
        emitter = EventEmitter()
        recorder = RecordingHandler()
        emitter.on_all(recorder)

        with pytest.raises(RuntimeError):
            with emitter.batch() as batch:
                batch.add(created_event())
                raise RuntimeError("Commit failed")

        assert recorder.events == []

        # Emitter is usable again after a discarded batch
        emitter.emit(created_event())
        assert len(recorder.events) == 1

    def test_unregister_handler(self):
        """off() removes handler."""
        emitter = EventEmitter()
        received = []

        def handler(event):
            received.append(event)

        emitter.on_all(handler)
        emitter.off(handler)
        emitter.emit(created_event())

        assert received == []

    def test_batch_extend_keeps_order(self):
        emitter = EventEmitter()
        recorder = RecordingHandler()
        emitter.on_all(recorder)
        events = [created_event(), approved_event()]

        with emitter.batch() as batch:
            batch.extend(events)

        assert recorder.events == events

    def test_publish_collects_errors(self):
        emitter = EventEmitter()

        def failing_handler(event):
            raise RuntimeError("sink down")

        emitter.on(CalculationApproved, failing_handler)

        errors = emitter.publish([created_event(), approved_event(), approved_event()])

        assert len(errors) == 2


class TestRecordingHandler:
    def test_of_type(self):
        recorder = RecordingHandler()
        recorder(created_event())
        recorder(approved_event())

        approvals = recorder.of_type(CalculationApproved)

        assert len(approvals) == 1
        assert approvals[0].final_level == 1
