"""Synchronous event sink for calculation and approval events.

Handlers subscribe by event class, by category, or to everything. A
failing handler is logged and reported back to the caller; the remaining
handlers still run. Events drained from an aggregate are published
through ``batch()`` so nothing goes out unless the surrounding block
completes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, TypeVar

from incentive_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)

EventHandler = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        # Empty filter sets mean "no restriction"
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class EventEmitter:
    """Publishes domain events to subscribed handlers.

    Usage:
        emitter = EventEmitter()
        emitter.on(CalculationApproved, notify_payroll)
        emitter.on_category(EventCategory.APPROVAL, write_audit_log)

        with emitter.batch() as batch:
            batch.extend(calculation.pull_events())
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(self, event_type: type[E] | list[type[E]], handler: EventHandler) -> None:
        """Subscribe to one event class or a list of them."""
        classes = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_types=frozenset(c.__name__ for c in classes))
        )

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: EventHandler
    ) -> None:
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of ``handler``."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver one event now. Returns the exceptions raised by handlers."""
        errors: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Event handler %r failed for %s %s",
                    subscription.handler,
                    event.event_type,
                    event.metadata.event_id,
                )
                errors.append(e)
        return errors

    def publish(self, events: Iterable[DomainEvent]) -> list[Exception]:
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emit(event))
        return errors

    def batch(self) -> EventBatch:
        """Collect events and publish them when the block exits cleanly."""
        return EventBatch(self)


@dataclass
class EventBatch:
    """Events held back until the enclosing block succeeds.

    If the block raises, the held events are dropped.
    """

    emitter: EventEmitter
    pending: list[DomainEvent] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)

    def __enter__(self) -> EventBatch:
        self.pending = []
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        held, self.pending = self.pending, []
        if exc_type is None:
            self.errors = self.emitter.publish(held)
        elif held:
            logger.debug("Discarding %d unpublished events", len(held))

    def add(self, event: DomainEvent) -> None:
        self.pending.append(event)

    def extend(self, events: Iterable[DomainEvent]) -> None:
        self.pending.extend(events)


class RecordingHandler:
    """Handler that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]
