"""Event handlers that forward domain events to notification channels."""

from __future__ import annotations

from payroll_batch.events.types import (
    BatchStatusChanged,
    DomainEvent,
    OrphanReceiptDetected,
    PaymentFailed,
)
from payroll_batch.providers.base import NotificationSender

# Statuses worth interrupting a human for
NOTIFY_STATUSES = {"AwaitingApproval", "Approved", "PartiallyFailed", "Completed"}


class NotificationHook:
    """Turns selected domain events into notifications.

    Exceptions from the sender propagate to the emitter, which isolates
    them; the service then records a warn BatchEvent.
    """

    def __init__(self, sender: NotificationSender):
        self.sender = sender

    def __call__(self, event: DomainEvent) -> None:
        batch_id = event.metadata.batch_id

        if isinstance(event, BatchStatusChanged):
            if event.to_status not in NOTIFY_STATUSES:
                return
            self.sender.send(
                batch_id,
                f"Payroll batch {batch_id} is {event.to_status}",
                f"Status changed from {event.from_status} to {event.to_status}.",
            )
        elif isinstance(event, PaymentFailed):
            self.sender.send(
                batch_id,
                f"Payment failed for {event.payee_id}",
                event.reason or "The payment provider reported a failure.",
            )
        elif isinstance(event, OrphanReceiptDetected):
            self.sender.send(
                batch_id,
                "Unmatched settlement receipt",
                f"Receipt for unknown payee '{event.payee_id}' "
                f"(ref {event.provider_ref}) needs investigation.",
            )
