"""Payment execution - dispatches approved batches to the payment rail."""

from __future__ import annotations

import logging
from datetime import datetime

from payroll_batch.clock import Clock, utc_now
from payroll_batch.errors import DispatchError, InvalidTransitionError
from payroll_batch.money import Money
from payroll_batch.providers.base import (
    DispatchResult,
    PaymentDispatcher,
    RetryPolicy,
    UnlimitedRetryPolicy,
)
from payroll_batch.services.reconciliation import ReconciliationEngine
from payroll_batch.services.state_machine import BatchStateMachine, TransitionEvent
from payroll_batch.types import (
    EventActor,
    EventLevel,
    PayeeStatus,
    PaymentReceipt,
    PayrollBatch,
    PayrollPayee,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)


class PaymentExecutor:
    """Runs the execute and retry_failed transitions.

    The transition is applied first (so the FX lock is checked at the
    instant of the call), then each payee is handed to the dispatcher.
    A payee the dispatcher refuses, or whose dispatch hits a transport
    error, gets a Failed receipt straight away; receipts for payments
    already sent are kept.
    """

    def __init__(
        self,
        dispatcher: PaymentDispatcher,
        reconciliation: ReconciliationEngine,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
    ):
        self.dispatcher = dispatcher
        self.reconciliation = reconciliation
        self.retry_policy = retry_policy or UnlimitedRetryPolicy()
        self.clock = clock

    def execute(self, batch: PayrollBatch, actor_id: str) -> list[PaymentReceipt]:
        now = self.clock()
        BatchStateMachine.apply(batch, TransitionEvent.EXECUTE, now=now, actor_id=actor_id)

        receipts = []
        for payee in batch.payees:
            receipt = self._dispatch(batch, payee, now)
            batch.receipts.append(receipt)
            receipts.append(receipt)

        self.reconciliation.evaluate_settlement(batch)
        return receipts

    def retry_failed(self, batch: PayrollBatch, actor_id: str) -> list[PaymentReceipt]:
        """Re-dispatch failed payees only. Settled receipts are left alone."""
        BatchStateMachine.next_status(batch.status, TransitionEvent.RETRY_FAILED)

        failed = [r for r in batch.receipts if r.status == ReceiptStatus.FAILED]
        eligible = [r for r in failed if self.retry_policy.allow_retry(r)]
        if failed and not eligible:
            raise InvalidTransitionError(
                batch.status.value,
                TransitionEvent.RETRY_FAILED.value,
                f"retry policy refused all {len(failed)} failed payment(s)",
            )

        now = self.clock()
        BatchStateMachine.apply(batch, TransitionEvent.RETRY_FAILED, now=now, actor_id=actor_id)

        retried = []
        for old in eligible:
            payee = batch.payee(old.payee_id)
            if payee is None:
                continue
            previous_refs = old.previous_refs + ((old.provider_ref,) if old.provider_ref else ())
            receipt = self._dispatch(
                batch, payee, now, attempt=old.attempt + 1, previous_refs=previous_refs
            )
            position = batch.receipts.index(old)
            batch.receipts[position] = receipt
            retried.append(receipt)

        skipped = len(failed) - len(eligible)
        if skipped:
            batch.append_event(
                now,
                f"{skipped} failed payment(s) not retried: retry limit reached",
                level=EventLevel.WARN,
                code="RetrySkipped",
            )

        self.reconciliation.evaluate_settlement(batch)
        return retried

    def _dispatch(
        self,
        batch: PayrollBatch,
        payee: PayrollPayee,
        now: datetime,
        attempt: int = 1,
        previous_refs: tuple[str, ...] = (),
    ) -> PaymentReceipt:
        amount = payee.net_pay.quantize()
        try:
            result = self._submit(batch, payee, amount)
        except DispatchError as e:
            logger.warning("Batch %s: dispatch to %s failed: %s", batch.id, payee.worker_id, e)
            payee.status = PayeeStatus.FAILED
            batch.append_event(
                now,
                f"Dispatch of {amount} to {payee.name} failed: {e.reason}",
                level=EventLevel.WARN,
                actor=EventActor.SYSTEM,
                code="DispatchFailed",
            )
            return PaymentReceipt(
                payee_id=payee.worker_id,
                amount=amount,
                status=ReceiptStatus.FAILED,
                attempt=attempt,
                previous_refs=previous_refs,
                failure_reason=e.reason,
            )

        payee.status = PayeeStatus.EXECUTING
        batch.append_event(
            now,
            f"Dispatched {amount} to {payee.name} via {self.dispatcher.provider_name} "
            f"({result.provider_ref}, attempt {attempt})",
            actor=EventActor.SYSTEM,
            code="PaymentDispatched",
        )
        return PaymentReceipt(
            payee_id=payee.worker_id,
            amount=amount,
            status=ReceiptStatus.INITIATED,
            provider_ref=result.provider_ref,
            attempt=attempt,
            previous_refs=previous_refs,
        )

    def _submit(self, batch: PayrollBatch, payee: PayrollPayee, amount: Money) -> DispatchResult:
        try:
            return self.dispatcher.dispatch(
                batch.id, payee.worker_id, amount.amount, amount.currency
            )
        except DispatchError:
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            raise DispatchError(payee.worker_id, str(e) or type(e).__name__) from e
