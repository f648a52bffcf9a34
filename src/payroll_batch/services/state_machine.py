"""Payroll batch state machine with transition validation."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from payroll_batch.errors import (
    InvalidTransitionError,
    LockExpiredAtExecutionError,
    describe_duration,
)
from payroll_batch.types import (
    ApprovalAction,
    BatchStatus,
    EventActor,
    PayeeStatus,
    PayrollBatch,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)


class TransitionEvent(str, Enum):
    """Events that drive the batch lifecycle."""

    SUBMIT_FOR_APPROVAL = "submit_for_approval"
    APPROVE = "approve"
    DECLINE = "decline"
    WITHDRAW = "withdraw"
    EXECUTE = "execute"
    ALL_SUCCEEDED = "all_succeeded"
    ANY_FAILED = "any_failed"
    RETRY_FAILED = "retry_failed"


class BatchStateMachine:
    """State machine for payroll batch status transitions.

    Allowed transitions:
    - Draft → AwaitingApproval (submit_for_approval)
    - AwaitingApproval → Approved (approve)
    - AwaitingApproval → Draft (decline, withdraw)
    - Approved → Executing (execute)
    - Executing → Completed (all_succeeded)
    - Executing → PartiallyFailed (any_failed)
    - PartiallyFailed → Executing (retry_failed)

    Everything else raises InvalidTransitionError and leaves the batch
    untouched. Preconditions are evaluated against the batch at the moment
    of the call; nothing is cached between calls.
    """

    VALID_TRANSITIONS: dict[tuple[BatchStatus, TransitionEvent], BatchStatus] = {
        (BatchStatus.DRAFT, TransitionEvent.SUBMIT_FOR_APPROVAL): BatchStatus.AWAITING_APPROVAL,
        (BatchStatus.AWAITING_APPROVAL, TransitionEvent.APPROVE): BatchStatus.APPROVED,
        (BatchStatus.AWAITING_APPROVAL, TransitionEvent.DECLINE): BatchStatus.DRAFT,
        (BatchStatus.AWAITING_APPROVAL, TransitionEvent.WITHDRAW): BatchStatus.DRAFT,
        (BatchStatus.APPROVED, TransitionEvent.EXECUTE): BatchStatus.EXECUTING,
        (BatchStatus.EXECUTING, TransitionEvent.ALL_SUCCEEDED): BatchStatus.COMPLETED,
        (BatchStatus.EXECUTING, TransitionEvent.ANY_FAILED): BatchStatus.PARTIALLY_FAILED,
        (BatchStatus.PARTIALLY_FAILED, TransitionEvent.RETRY_FAILED): BatchStatus.EXECUTING,
    }

    TERMINAL = {BatchStatus.COMPLETED}

    # Statuses where payees and adjustments may change
    EDITABLE = {BatchStatus.DRAFT}

    # Statuses where the FX snapshot may be recalculated or locked
    FX_MUTABLE = {
        BatchStatus.DRAFT,
        BatchStatus.AWAITING_APPROVAL,
        BatchStatus.APPROVED,
    }

    # Statuses in which settlement receipts are expected
    SETTLEMENT = {
        BatchStatus.EXECUTING,
        BatchStatus.PARTIALLY_FAILED,
        BatchStatus.COMPLETED,
    }

    @classmethod
    def can_transition(cls, from_status: BatchStatus, event: TransitionEvent) -> bool:
        """Check if the event is allowed from this status."""
        return (BatchStatus(from_status), TransitionEvent(event)) in cls.VALID_TRANSITIONS

    @classmethod
    def next_status(cls, from_status: BatchStatus, event: TransitionEvent) -> BatchStatus:
        """Return the target status, raising InvalidTransitionError if not allowed."""
        from_status = BatchStatus(from_status)
        event = TransitionEvent(event)
        target = cls.VALID_TRANSITIONS.get((from_status, event))
        if target is None:
            allowed = ", ".join(e.value for e in cls.available_events(from_status)) or "none"
            raise InvalidTransitionError(
                from_status.value,
                event.value,
                f"allowed from {from_status.value}: {allowed}",
            )
        return target

    @classmethod
    def available_events(cls, status: BatchStatus) -> list[TransitionEvent]:
        """Get events accepted in this status."""
        return [event for (src, event) in cls.VALID_TRANSITIONS if src == status]

    @classmethod
    def is_terminal(cls, status: BatchStatus) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def can_edit_payees(cls, status: BatchStatus) -> bool:
        return status in cls.EDITABLE

    @classmethod
    def can_change_fx(cls, status: BatchStatus) -> bool:
        return status in cls.FX_MUTABLE

    @classmethod
    def validate_batch_for_transition(
        cls, batch: PayrollBatch, event: TransitionEvent, now: datetime
    ) -> list[str]:
        """Validate a batch for a specific event, returning any errors.

        Returns list of error messages (empty if valid). Expired FX locks at
        execution are reported separately by check_preconditions.
        """
        errors: list[str] = []
        event = TransitionEvent(event)

        if not cls.can_transition(batch.status, event):
            errors.append(f"Cannot {event.value} from '{batch.status.value}'")
            return errors

        snapshot = batch.fx_snapshot

        if event == TransitionEvent.SUBMIT_FOR_APPROVAL:
            if not batch.payees:
                errors.append("Batch has no payees")
            not_ready = [p.worker_id for p in batch.payees if p.status != PayeeStatus.READY]
            if not_ready:
                errors.append(
                    f"{len(not_ready)} payee(s) not ready: {', '.join(not_ready)}"
                )
            if snapshot is None:
                errors.append("No FX snapshot. Recalculate FX rates before submitting")
            else:
                needed = {p.currency for p in batch.payees} - {snapshot.base_currency}
                missing = sorted(needed - snapshot.currencies)
                if missing:
                    errors.append(
                        f"FX snapshot has no quote for {', '.join(missing)}. Recalculate FX rates"
                    )

        elif event == TransitionEvent.APPROVE:
            last = batch.approvals[-1] if batch.approvals else None
            if last is None or last.action != ApprovalAction.REQUESTED:
                state = last.action.value if last else "none"
                errors.append(f"No open approval request (last approval action: {state})")
            if snapshot is None or not snapshot.is_locked:
                errors.append("FX rate must be locked before approval")
            elif snapshot.is_expired(now):
                ago = describe_duration(now - snapshot.expires_at)
                errors.append(f"FX lock expired {ago} ago. Re-lock before approving")

        elif event == TransitionEvent.EXECUTE:
            if snapshot is None or not snapshot.is_locked:
                errors.append("FX snapshot is not locked. Lock rates before executing")

        elif event == TransitionEvent.ALL_SUCCEEDED:
            for payee in batch.payees:
                receipt = batch.receipt_for(payee.worker_id)
                if receipt is None or receipt.status != ReceiptStatus.PAID:
                    errors.append(f"Payment to '{payee.worker_id}' is not settled")

        elif event == TransitionEvent.ANY_FAILED:
            if not any(r.status == ReceiptStatus.FAILED for r in batch.receipts):
                errors.append("No failed payments")

        return errors

    @classmethod
    def check_preconditions(
        cls, batch: PayrollBatch, event: TransitionEvent, now: datetime
    ) -> BatchStatus:
        """Raise the most specific error for a failed precondition.

        Returns the target status when every precondition holds.
        """
        target = cls.next_status(batch.status, event)

        if event == TransitionEvent.EXECUTE:
            snapshot = batch.fx_snapshot
            if snapshot is not None and snapshot.is_expired(now):
                raise LockExpiredAtExecutionError(snapshot.id, now - snapshot.expires_at)

        errors = cls.validate_batch_for_transition(batch, event, now)
        if errors:
            raise InvalidTransitionError(batch.status.value, TransitionEvent(event).value, "; ".join(errors))
        return target

    @classmethod
    def apply(
        cls,
        batch: PayrollBatch,
        event: TransitionEvent,
        *,
        now: datetime,
        actor: EventActor = EventActor.USER,
        actor_id: str | None = None,
    ) -> BatchStatus:
        """Apply an event to the batch in place.

        Either the whole transition is applied (status, payee statuses, one
        info BatchEvent) or nothing is. Returns the previous status.
        """
        event = TransitionEvent(event)
        target = cls.check_preconditions(batch, event, now)
        previous = batch.status

        batch.status = target
        cls._advance_payees(batch, event)

        who = actor_id or actor.value
        batch.append_event(
            now,
            f"Batch moved from {previous.value} to {target.value} ({event.value}) by {who}",
            actor=actor,
            actor_id=actor_id,
            code="Transition",
        )
        logger.info(
            "Batch %s: %s -> %s (%s) by %s",
            batch.id, previous.value, target.value, event.value, who,
        )
        return previous

    @staticmethod
    def _advance_payees(batch: PayrollBatch, event: TransitionEvent) -> None:
        """Move payee statuses along with the batch."""
        if event == TransitionEvent.SUBMIT_FOR_APPROVAL:
            for payee in batch.payees:
                payee.status = PayeeStatus.AWAITING_APPROVAL
        elif event in (TransitionEvent.DECLINE, TransitionEvent.WITHDRAW):
            for payee in batch.payees:
                if payee.status == PayeeStatus.AWAITING_APPROVAL:
                    payee.status = PayeeStatus.READY
        elif event == TransitionEvent.EXECUTE:
            for payee in batch.payees:
                payee.status = PayeeStatus.EXECUTING
