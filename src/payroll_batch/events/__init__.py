"""Domain events package.

This package provides:
- Typed domain events published after committed batch mutations
- Event emitter for publishing events to handlers
- Notification hook forwarding events to a NotificationSender
"""

from payroll_batch.events.types import (
    DomainEvent,
    EventMetadata,
    EventCategory,
    BatchStatusChanged,
    FXRateLocked,
    PaymentSettled,
    PaymentFailed,
    OrphanReceiptDetected,
)
from payroll_batch.events.emitter import EventEmitter, EventHandler
from payroll_batch.events.handlers import NotificationHook

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "EventCategory",
    "BatchStatusChanged",
    "FXRateLocked",
    "PaymentSettled",
    "PaymentFailed",
    "OrphanReceiptDetected",
    "EventEmitter",
    "EventHandler",
    "NotificationHook",
]
