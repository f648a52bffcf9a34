"""Audit log - a derived, read-only view over a batch's event history.

Nothing is stored here. Every replay merges the batch's BatchEvents with its
ApprovalEvents (as synthetic info entries) and orders them newest first by
timestamp, breaking ties by insertion sequence.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Any, Iterable, Iterator

from payroll_batch.types import (
    ApprovalEvent,
    BatchEvent,
    EventActor,
    EventLevel,
    PayrollBatch,
)


@dataclass(frozen=True)
class UnifiedEvent:
    """One audit entry, from either the event list or the approval list."""

    at: datetime
    actor: EventActor
    message: str
    level: EventLevel
    seq: int
    source: str  # 'batch' or 'approval'
    code: str | None = None
    actor_id: str | None = None

    @classmethod
    def from_batch_event(cls, event: BatchEvent) -> UnifiedEvent:
        return cls(
            at=event.at,
            actor=event.actor,
            message=event.message,
            level=event.level,
            seq=event.seq,
            source="batch",
            code=event.code,
            actor_id=event.actor_id,
        )

    @classmethod
    def from_approval(cls, approval: ApprovalEvent) -> UnifiedEvent:
        message = f"{approval.role.value} {approval.action.value.lower()} the batch"
        if approval.note:
            message += f": {approval.note}"
        return cls(
            at=approval.at,
            actor=EventActor.USER,
            message=message,
            level=EventLevel.INFO,
            seq=approval.seq,
            source="approval",
            code=f"Approval{approval.action.value}",
            actor_id=approval.actor_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": self.at.isoformat(),
            "actor": self.actor.value,
            "message": self.message,
            "level": self.level.value,
            "seq": self.seq,
            "source": self.source,
            "code": self.code,
            "actor_id": self.actor_id,
        }


class AuditReplay:
    """Lazy, restartable replay of a batch's audit trail.

    Each iteration walks the batch object it was given, so entries appended
    to that object since the last pass show up. Changes saved through the
    service reach a replay only when it is built on a freshly fetched batch.
    Iterating has no side effects.
    """

    def __init__(
        self,
        batch: PayrollBatch,
        actor: EventActor | str | None = None,
        level: EventLevel | str | None = None,
    ):
        self.batch = batch
        self.actor = EventActor(actor) if actor else None
        self.level = EventLevel(level) if level else None

    def __iter__(self) -> Iterator[UnifiedEvent]:
        entries = [UnifiedEvent.from_batch_event(e) for e in self.batch.events]
        entries.extend(UnifiedEvent.from_approval(a) for a in self.batch.approvals)
        entries.sort(key=lambda e: (e.at, e.seq), reverse=True)

        for entry in entries:
            if self.actor is not None and entry.actor != self.actor:
                continue
            if self.level is not None and entry.level != self.level:
                continue
            yield entry


def replay(
    batch: PayrollBatch,
    actor: EventActor | str | None = None,
    level: EventLevel | str | None = None,
) -> AuditReplay:
    """Replay the batch's audit trail, newest first, optionally filtered."""
    return AuditReplay(batch, actor=actor, level=level)


def to_rows(entries: Iterable[UnifiedEvent]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


def export_jsonl(
    batch: PayrollBatch,
    stream: IO[str],
    actor: EventActor | str | None = None,
    level: EventLevel | str | None = None,
) -> int:
    """Write the batch's audit trail as JSON lines. Returns the number written."""
    count = 0
    for entry in replay(batch, actor=actor, level=level):
        stream.write(json.dumps(entry.to_dict()) + "\n")
        count += 1
    return count
