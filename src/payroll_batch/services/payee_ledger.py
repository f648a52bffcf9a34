"""Payee ledger - per-worker pay lines and readiness within a batch."""

from __future__ import annotations

from payroll_batch.clock import Clock, utc_now
from payroll_batch.errors import (
    BatchNotEditableError,
    CurrencyMismatchError,
    DuplicatePayeeError,
    UnknownPayeeError,
)
from payroll_batch.providers.base import ComplianceEvaluator, ComplianceResult
from payroll_batch.services.state_machine import BatchStateMachine
from payroll_batch.types import (
    Adjustment,
    EventActor,
    EventLevel,
    PayeeStatus,
    PayrollBatch,
    PayrollPayee,
)


class PayeeLedger:
    """Add, remove and adjust payees while a batch is in Draft.

    Readiness is not decided here. recompute_readiness asks the compliance
    evaluator and records what it says.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def add(
        self,
        batch: PayrollBatch,
        payee: PayrollPayee,
        actor_id: str | None = None,
    ) -> PayrollPayee:
        """Add a payee. It starts NotReady until readiness is evaluated."""
        self._require_draft(batch, "add payee")
        if batch.payee(payee.worker_id) is not None:
            raise DuplicatePayeeError(batch.id, payee.worker_id)
        for money in (payee.gross, payee.employer_costs):
            if money.currency != payee.currency:
                raise CurrencyMismatchError(payee.currency, money.currency)
        for adjustment in payee.adjustments:
            if adjustment.amount.currency != payee.currency:
                raise CurrencyMismatchError(payee.currency, adjustment.amount.currency)

        payee.status = PayeeStatus.NOT_READY
        batch.payees.append(payee)
        batch.append_event(
            self.clock(),
            f"Added {payee.name} ({payee.worker_id}) to batch",
            actor=EventActor.USER,
            actor_id=actor_id,
            code="PayeeAdded",
        )
        return payee

    def remove(
        self,
        batch: PayrollBatch,
        worker_id: str,
        actor_id: str | None = None,
    ) -> PayrollPayee:
        self._require_draft(batch, "remove payee")
        payee = self._get(batch, worker_id)
        batch.payees.remove(payee)
        batch.append_event(
            self.clock(),
            f"Removed {payee.name} ({worker_id}) from batch",
            actor=EventActor.USER,
            actor_id=actor_id,
            code="PayeeRemoved",
        )
        return payee

    def edit_adjustment(
        self,
        batch: PayrollBatch,
        worker_id: str,
        adjustment: Adjustment,
        index: int | None = None,
        actor_id: str | None = None,
    ) -> PayrollPayee:
        """Append an adjustment, or replace the one at ``index``."""
        self._require_draft(batch, "edit adjustment")
        payee = self._get(batch, worker_id)
        if adjustment.amount.currency != payee.currency:
            raise CurrencyMismatchError(payee.currency, adjustment.amount.currency)

        if index is None:
            payee.adjustments.append(adjustment)
            verb = "Added"
        else:
            if not 0 <= index < len(payee.adjustments):
                raise IndexError(f"No adjustment #{index} for '{worker_id}'")
            payee.adjustments[index] = adjustment
            verb = "Replaced"

        batch.append_event(
            self.clock(),
            f"{verb} adjustment '{adjustment.label}' ({adjustment.amount}) for {payee.name}; "
            f"net pay now {payee.net_pay}",
            actor=EventActor.USER,
            actor_id=actor_id,
            code="AdjustmentEdited",
        )
        return payee

    def remove_adjustment(
        self,
        batch: PayrollBatch,
        worker_id: str,
        index: int,
        actor_id: str | None = None,
    ) -> PayrollPayee:
        self._require_draft(batch, "remove adjustment")
        payee = self._get(batch, worker_id)
        if not 0 <= index < len(payee.adjustments):
            raise IndexError(f"No adjustment #{index} for '{worker_id}'")
        removed = payee.adjustments.pop(index)
        batch.append_event(
            self.clock(),
            f"Removed adjustment '{removed.label}' for {payee.name}",
            actor=EventActor.USER,
            actor_id=actor_id,
            code="AdjustmentRemoved",
        )
        return payee

    def recompute_readiness(
        self,
        batch: PayrollBatch,
        worker_id: str,
        evaluator: ComplianceEvaluator,
    ) -> ComplianceResult:
        """Record the evaluator's Ready/NotReady verdict and its annotations."""
        self._require_draft(batch, "recompute readiness")
        payee = self._get(batch, worker_id)
        result = evaluator.evaluate(payee)

        payee.status = PayeeStatus.READY if result.ready else PayeeStatus.NOT_READY
        payee.blocking_issues = list(result.blocking_issues)
        payee.warnings = list(result.warnings)

        if result.ready:
            message = f"{payee.name} is ready for payment"
            level = EventLevel.INFO
        else:
            message = f"{payee.name} is not ready: {'; '.join(result.blocking_issues)}"
            level = EventLevel.WARN
        batch.append_event(
            self.clock(),
            message,
            level=level,
            actor=EventActor.GENIE,
            code="ReadinessEvaluated",
        )
        return result

    @staticmethod
    def _get(batch: PayrollBatch, worker_id: str) -> PayrollPayee:
        payee = batch.payee(worker_id)
        if payee is None:
            raise UnknownPayeeError(batch.id, worker_id)
        return payee

    @staticmethod
    def _require_draft(batch: PayrollBatch, operation: str) -> None:
        if not BatchStateMachine.can_edit_payees(batch.status):
            raise BatchNotEditableError(batch.id, batch.status.value, operation)
