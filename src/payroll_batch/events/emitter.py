"""In-process publishing of batch domain events.

BatchService publishes the events derived from each committed mutation
here. Subscribers pick events by class, by category, or take everything.
A subscriber that raises is logged and skipped; the remaining subscribers
still run and the caller gets the collected exceptions back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol, TypeVar, runtime_checkable

from payroll_batch.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

Handler = Callable[[DomainEvent], None]


@runtime_checkable
class EventHandler(Protocol):
    """Protocol for event handlers."""

    def __call__(self, event: DomainEvent) -> None:
        ...


@dataclass(frozen=True)
class Subscription:
    """One subscriber and the events it wants. Empty filters match everything."""

    handler: EventHandler | Handler
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class EventEmitter:
    """Synchronous publisher for batch events.

    Usage:
        emitter = EventEmitter()
        emitter.on(PaymentFailed, page_on_call)
        emitter.on_category(EventCategory.SETTLEMENT, log_settlements)
        errors = emitter.emit(event)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: EventHandler | Handler,
    ) -> None:
        """Subscribe to one event class or a list of them."""
        classes = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_types=frozenset(c.__name__ for c in classes))
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: EventHandler | Handler,
    ) -> None:
        """Subscribe to every event in one or more categories."""
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler | Handler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler | Handler) -> int:
        """Drop every subscription of ``handler`` (compared by identity).

        Returns how many were removed.
        """
        kept = [s for s in self._subscriptions if s.handler is not handler]
        removed = len(self._subscriptions) - len(kept)
        self._subscriptions = kept
        return removed

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver ``event`` to matching subscribers in registration order."""
        errors: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Batch %s: handler %r failed on %s",
                    event.metadata.batch_id,
                    subscription.handler,
                    event.event_type,
                )
                errors.append(e)
        return errors

    def emit_all(self, events: Iterable[DomainEvent]) -> list[Exception]:
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emit(event))
        return errors
