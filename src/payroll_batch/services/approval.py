"""Approval workflow - dual-control gate over the batch state machine."""

from __future__ import annotations

import logging

from payroll_batch.clock import Clock, utc_now
from payroll_batch.errors import InvalidTransitionError, SelfApprovalForbiddenError
from payroll_batch.providers.base import NotificationSender
from payroll_batch.services.state_machine import BatchStateMachine, TransitionEvent
from payroll_batch.types import (
    ApprovalAction,
    ApprovalEvent,
    ApprovalRole,
    BatchStatus,
    EventActor,
    EventLevel,
    PayrollBatch,
)

logger = logging.getLogger(__name__)


def current_approval_state(batch: PayrollBatch) -> ApprovalAction | None:
    """The approval state is whatever the last approval event says."""
    return batch.approvals[-1].action if batch.approvals else None


def last_submitter(batch: PayrollBatch) -> str | None:
    """Actor of the most recent approval request."""
    for approval in reversed(batch.approvals):
        if approval.action == ApprovalAction.REQUESTED:
            return approval.actor_id
    return None


class ApprovalWorkflow:
    """Wraps submit/approve/decline/withdraw with dual control.

    Each call appends exactly one ApprovalEvent after the transition has
    been applied. ``remind`` changes no state.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        notifier: NotificationSender | None = None,
    ):
        self.clock = clock
        self.notifier = notifier

    def submit_for_approval(
        self, batch: PayrollBatch, actor_id: str, note: str | None = None
    ) -> ApprovalEvent:
        now = self.clock()
        BatchStateMachine.apply(
            batch, TransitionEvent.SUBMIT_FOR_APPROVAL, now=now, actor_id=actor_id
        )
        return batch.append_approval(
            now, ApprovalRole.PREPARER, ApprovalAction.REQUESTED, actor_id, note
        )

    def approve(
        self, batch: PayrollBatch, actor_id: str, note: str | None = None
    ) -> ApprovalEvent:
        BatchStateMachine.next_status(batch.status, TransitionEvent.APPROVE)
        self._require_second_person(batch, actor_id, "approve")
        now = self.clock()
        BatchStateMachine.apply(batch, TransitionEvent.APPROVE, now=now, actor_id=actor_id)
        return batch.append_approval(
            now, ApprovalRole.APPROVER, ApprovalAction.APPROVED, actor_id, note
        )

    def decline(
        self, batch: PayrollBatch, actor_id: str, note: str | None = None
    ) -> ApprovalEvent:
        BatchStateMachine.next_status(batch.status, TransitionEvent.DECLINE)
        self._require_second_person(batch, actor_id, "decline")
        now = self.clock()
        BatchStateMachine.apply(batch, TransitionEvent.DECLINE, now=now, actor_id=actor_id)
        return batch.append_approval(
            now, ApprovalRole.APPROVER, ApprovalAction.DECLINED, actor_id, note
        )

    def withdraw(
        self, batch: PayrollBatch, actor_id: str, note: str | None = None
    ) -> ApprovalEvent:
        BatchStateMachine.next_status(batch.status, TransitionEvent.WITHDRAW)
        preparer = last_submitter(batch)
        if preparer != actor_id:
            raise InvalidTransitionError(
                batch.status.value,
                TransitionEvent.WITHDRAW.value,
                f"only the preparer '{preparer}' who submitted the batch can withdraw it",
            )
        now = self.clock()
        BatchStateMachine.apply(batch, TransitionEvent.WITHDRAW, now=now, actor_id=actor_id)
        return batch.append_approval(
            now, ApprovalRole.PREPARER, ApprovalAction.WITHDRAWN, actor_id, note
        )

    def remind(self, batch: PayrollBatch, actor_id: str, note: str | None = None) -> bool:
        """Nudge approvers. Returns whether the notification went out.

        Notification failures are recorded as a warn BatchEvent and never raised.
        """
        if batch.status != BatchStatus.AWAITING_APPROVAL:
            raise InvalidTransitionError(
                batch.status.value, "remind", "the batch is not awaiting approval"
            )

        now = self.clock()
        body = note or f"Payroll batch {batch.pay_period} is waiting for your approval."
        if self.notifier is None:
            batch.append_event(
                now,
                "Reminder not sent: no notification channel configured",
                level=EventLevel.WARN,
                actor=EventActor.SYSTEM,
                code="NotificationFailed",
            )
            return False

        try:
            self.notifier.send(batch.id, f"Approval needed: {batch.pay_period}", body)
        except Exception as e:
            logger.warning("Reminder for batch %s failed: %s", batch.id, e)
            batch.append_event(
                now,
                f"Reminder could not be sent: {e}",
                level=EventLevel.WARN,
                actor=EventActor.SYSTEM,
                actor_id=actor_id,
                code="NotificationFailed",
            )
            return False

        batch.append_event(
            now,
            f"Reminder sent to approvers by {actor_id}",
            actor=EventActor.USER,
            actor_id=actor_id,
            code="ReminderSent",
        )
        return True

    @staticmethod
    def _require_second_person(batch: PayrollBatch, actor_id: str, action: str) -> None:
        if last_submitter(batch) == actor_id:
            raise SelfApprovalForbiddenError(actor_id, action)
