"""Reconciliation engine - settlement receipts against the payee ledger.

Receipts from bank-file uploads and provider syncs arrive in one shape
(PaymentReceipt), possibly out of order, duplicated, or concurrently. Each
application is a merge: a receipt only replaces the stored one when its
status ranks higher (Initiated < InTransit < Failed < Paid). Re-applying a
receipt, or applying a set of receipts in any order, ends in the same state.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from payroll_batch.clock import Clock, parse_timestamp, utc_now
from payroll_batch.config import ReconciliationConfig
from payroll_batch.money import Money
from payroll_batch.services.state_machine import BatchStateMachine, TransitionEvent
from payroll_batch.types import (
    BatchStatus,
    EventActor,
    EventLevel,
    PayeeStatus,
    PaymentReceipt,
    PayrollBatch,
    PayrollPayee,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)

# Spellings seen in bank files and provider payloads
_STATUS_ALIASES = {
    "initiated": ReceiptStatus.INITIATED,
    "pending": ReceiptStatus.INITIATED,
    "intransit": ReceiptStatus.IN_TRANSIT,
    "in_transit": ReceiptStatus.IN_TRANSIT,
    "in-transit": ReceiptStatus.IN_TRANSIT,
    "paid": ReceiptStatus.PAID,
    "settled": ReceiptStatus.PAID,
    "failed": ReceiptStatus.FAILED,
    "returned": ReceiptStatus.FAILED,
    "rejected": ReceiptStatus.FAILED,
}

BANK_FILE_COLUMNS = ("payee_id", "provider_ref", "amount", "currency", "status", "paid_at", "failure_reason")


@dataclass
class ReconciliationResult:
    """Result of applying a set of receipts.

    matched: receipts that matched a payee and changed its receipt
    orphaned: receipts that could not be matched to a dispatched payment
    failed: matched receipts that reported a failed payment
    ignored: matched receipts that changed nothing (duplicate, stale, out of order)
    rejected: rows that could not be parsed into a receipt
    """

    matched: int = 0
    orphaned: int = 0
    failed: int = 0
    ignored: int = 0
    rejected: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every receipt was parsed and matched."""
        return self.orphaned == 0 and self.rejected == 0

    def merge(self, other: ReconciliationResult) -> ReconciliationResult:
        return ReconciliationResult(
            matched=self.matched + other.matched,
            orphaned=self.orphaned + other.orphaned,
            failed=self.failed + other.failed,
            ignored=self.ignored + other.ignored,
            rejected=self.rejected + other.rejected,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": self.matched,
            "orphaned": self.orphaned,
            "failed": self.failed,
            "ignored": self.ignored,
            "rejected": self.rejected,
            "errors": list(self.errors),
        }


def parse_receipt_status(value: str | ReceiptStatus) -> ReceiptStatus:
    if isinstance(value, ReceiptStatus):
        return value
    key = str(value).strip().lower()
    if key not in _STATUS_ALIASES:
        raise ValueError(f"Unknown receipt status {value!r}")
    return _STATUS_ALIASES[key]


def receipt_from_row(row: Mapping[str, Any]) -> PaymentReceipt:
    """Build a receipt from a bank-file row. Raises ValueError on bad data."""
    payee_id = (row.get("payee_id") or "").strip()
    if not payee_id:
        raise ValueError("payee_id is required")
    try:
        amount = Decimal(str(row.get("amount", "")).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount {row.get('amount')!r}") from e
    currency = (row.get("currency") or "").strip().upper()
    return PaymentReceipt(
        payee_id=payee_id,
        provider_ref=(row.get("provider_ref") or "").strip() or None,
        amount=Money(amount, currency),
        status=parse_receipt_status(row.get("status", "")),
        paid_at=parse_timestamp((row.get("paid_at") or "").strip() or None),
        failure_reason=(row.get("failure_reason") or "").strip() or None,
    )


def parse_bank_file(text: str) -> list[dict[str, str]]:
    """Parse a CSV bank file with a header row into row dicts."""
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames is None:
        return []
    missing = {"payee_id", "amount", "currency", "status"} - set(reader.fieldnames)
    if missing:
        raise ValueError(f"Bank file is missing columns: {', '.join(sorted(missing))}")
    return [dict(row) for row in reader]


class ReconciliationEngine:
    """Applies settlement receipts to a batch and advances its status."""

    def __init__(
        self,
        config: ReconciliationConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config or ReconciliationConfig()
        self.clock = clock

    def apply_receipts(
        self,
        batch: PayrollBatch,
        receipts: Iterable[PaymentReceipt],
        source: str = "provider",
    ) -> ReconciliationResult:
        """Merge receipts into the batch, then evaluate settlement."""
        result = ReconciliationResult()
        payees = {p.worker_id: p for p in batch.payees}
        positions = {r.payee_id: i for i, r in enumerate(batch.receipts)}

        for receipt in receipts:
            payee = payees.get(receipt.payee_id)
            if payee is None:
                result.orphaned += 1
                self._record_orphan(
                    batch,
                    receipt,
                    "OrphanReceipt",
                    f"Orphan receipt from {source} for unknown payee '{receipt.payee_id}' "
                    f"(ref {receipt.provider_ref}, {receipt.amount}); needs manual investigation",
                )
                continue

            position = positions.get(receipt.payee_id)
            if batch.status not in BatchStateMachine.SETTLEMENT or position is None:
                result.orphaned += 1
                self._record_orphan(
                    batch,
                    receipt,
                    "UnexpectedReceipt",
                    f"Receipt from {source} for '{receipt.payee_id}' but no payment was "
                    f"dispatched (batch is {batch.status.value})",
                )
                continue

            self._merge(batch, payee, position, receipt, result)

        self.evaluate_settlement(batch)
        return result

    def apply_receipt(self, batch: PayrollBatch, receipt: PaymentReceipt) -> ReconciliationResult:
        return self.apply_receipts(batch, [receipt])

    def evaluate_settlement(self, batch: PayrollBatch) -> BatchStatus:
        """Fire all_succeeded / any_failed when the receipts call for it.

        A PartiallyFailed batch whose failures have all been cleared by late
        Paid receipts resumes through retry_failed, dispatching nothing.
        """
        now = self.clock()
        statuses = [r.status for r in batch.receipts]

        if batch.status == BatchStatus.PARTIALLY_FAILED and ReceiptStatus.FAILED not in statuses:
            BatchStateMachine.apply(
                batch, TransitionEvent.RETRY_FAILED, now=now, actor=EventActor.SYSTEM
            )

        if batch.status == BatchStatus.EXECUTING:
            all_paid = len(statuses) == len(batch.payees) and all(
                s == ReceiptStatus.PAID for s in statuses
            )
            if all_paid:
                BatchStateMachine.apply(
                    batch, TransitionEvent.ALL_SUCCEEDED, now=now, actor=EventActor.SYSTEM
                )
            elif ReceiptStatus.FAILED in statuses:
                BatchStateMachine.apply(
                    batch, TransitionEvent.ANY_FAILED, now=now, actor=EventActor.SYSTEM
                )
        return batch.status

    def _merge(
        self,
        batch: PayrollBatch,
        payee: PayrollPayee,
        position: int,
        incoming: PaymentReceipt,
        result: ReconciliationResult,
    ) -> None:
        current = batch.receipts[position]

        if incoming.provider_ref and incoming.provider_ref in current.previous_refs:
            logger.debug(
                "Batch %s: stale receipt %s for %s", batch.id, incoming.provider_ref, payee.worker_id
            )
            result.ignored += 1
            return
        if incoming.provider_ref is None and incoming.status == ReceiptStatus.FAILED and current.attempt > 1:
            # A failure without a reference cannot be tied to the retry in flight.
            logger.debug(
                "Batch %s: unreferenced failure for retried payee %s", batch.id, payee.worker_id
            )
            result.ignored += 1
            return
        if incoming.status.rank <= current.status.rank:
            result.ignored += 1
            return

        now = self.clock()
        merged = PaymentReceipt(
            payee_id=current.payee_id,
            amount=current.amount,
            status=incoming.status,
            provider_ref=incoming.provider_ref or current.provider_ref,
            paid_at=(incoming.paid_at or now) if incoming.status == ReceiptStatus.PAID else None,
            attempt=current.attempt,
            previous_refs=current.previous_refs,
            failure_reason=incoming.failure_reason if incoming.status == ReceiptStatus.FAILED else None,
        )
        batch.receipts[position] = merged
        result.matched += 1

        if self._amount_differs(current.amount, incoming.amount):
            batch.append_event(
                now,
                f"Receipt amount {incoming.amount} for {payee.name} differs from "
                f"dispatched {current.amount}",
                level=EventLevel.WARN,
                code="AmountMismatch",
            )

        ref = merged.provider_ref or "no ref"
        if merged.status == ReceiptStatus.PAID:
            payee.status = PayeeStatus.PAID
            batch.append_event(
                now, f"Payment to {payee.name} settled ({ref})", code="PaymentSettled"
            )
        elif merged.status == ReceiptStatus.FAILED:
            payee.status = PayeeStatus.FAILED
            result.failed += 1
            reason = merged.failure_reason or "no reason given"
            batch.append_event(
                now,
                f"Payment to {payee.name} failed ({ref}): {reason}",
                level=EventLevel.WARN,
                code="PaymentFailed",
            )
        else:
            batch.append_event(
                now, f"Payment to {payee.name} is in transit ({ref})", code="PaymentInTransit"
            )

    def _amount_differs(self, dispatched: Money, reported: Money) -> bool:
        if dispatched.currency != reported.currency:
            return True
        return abs(dispatched.amount - reported.amount) > self.config.amount_tolerance

    def _record_orphan(
        self,
        batch: PayrollBatch,
        receipt: PaymentReceipt,
        code: str,
        message: str,
    ) -> None:
        """Keep the receipt for investigation and warn once per distinct receipt."""
        if receipt in batch.orphan_receipts:
            return
        batch.orphan_receipts.append(receipt)
        batch.append_event(self.clock(), message, level=EventLevel.WARN, code=code)
        logger.warning("Batch %s: %s", batch.id, message)
