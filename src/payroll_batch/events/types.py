"""Domain event types published after batch mutations.

These are notifications about committed changes, consumed by hooks such as
the notification sender. They are distinct from BatchEvent, which is the
batch's own append-only audit record.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Serializable for export
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    LIFECYCLE = "lifecycle"
    FX = "fx"
    SETTLEMENT = "settlement"
    RECONCILIATION = "reconciliation"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    batch_id: str
    actor_id: str | None
    actor_type: str  # 'user', 'system', 'genie'

    @classmethod
    def create(
        cls,
        batch_id: str,
        timestamp: datetime,
        actor_id: str | None = None,
        actor_type: str = "system",
    ) -> EventMetadata:
        """Create metadata with a generated event id."""
        return cls(
            event_id=uuid4(),
            timestamp=timestamp,
            batch_id=batch_id,
            actor_id=actor_id,
            actor_type=actor_type,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class BatchStatusChanged(DomainEvent):
    """The batch moved to a new lifecycle status."""

    from_status: str
    to_status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.LIFECYCLE


@dataclass(frozen=True)
class FXRateLocked(DomainEvent):
    """An FX snapshot was locked for execution."""

    snapshot_id: str
    expires_at: datetime

    @property
    def category(self) -> EventCategory:
        return EventCategory.FX


@dataclass(frozen=True)
class PaymentSettled(DomainEvent):
    """A payee's payment was confirmed paid."""

    payee_id: str
    provider_ref: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.SETTLEMENT


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """A payee's payment was reported failed."""

    payee_id: str
    provider_ref: str | None
    reason: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.SETTLEMENT


@dataclass(frozen=True)
class OrphanReceiptDetected(DomainEvent):
    """A receipt referenced a payee the batch does not know."""

    payee_id: str
    provider_ref: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECONCILIATION
