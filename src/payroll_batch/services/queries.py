"""Read-only derivations over a batch.

Status labels, totals and progress figures are computed here from the
canonical batch and never stored on it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from payroll_batch.money import Money
from payroll_batch.services.approval import current_approval_state
from payroll_batch.services.state_machine import BatchStateMachine
from payroll_batch.types import PayeeStatus, PayrollBatch, ReceiptStatus


@dataclass
class BatchTotals:
    """Batch totals per payee currency, plus base-currency figures when an FX snapshot exists."""

    gross: dict[str, Money] = field(default_factory=dict)
    net: dict[str, Money] = field(default_factory=dict)
    employer_costs: dict[str, Money] = field(default_factory=dict)
    fx_fees: Money | None = None
    net_in_base: Money | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "gross": {k: v.to_dict() for k, v in self.gross.items()},
            "net": {k: v.to_dict() for k, v in self.net.items()},
            "employer_costs": {k: v.to_dict() for k, v in self.employer_costs.items()},
            "fx_fees": self.fx_fees.to_dict() if self.fx_fees else None,
            "net_in_base": self.net_in_base.to_dict() if self.net_in_base else None,
        }


@dataclass(frozen=True)
class ExecutionProgress:
    total: int
    paid: int
    failed: int
    in_transit: int
    initiated: int

    @property
    def percent_complete(self) -> Decimal:
        if self.total == 0:
            return Decimal("0")
        return (Decimal(self.paid) * 100 / self.total).quantize(Decimal("0.1"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "paid": self.paid,
            "failed": self.failed,
            "in_transit": self.in_transit,
            "initiated": self.initiated,
            "percent_complete": str(self.percent_complete),
        }


def batch_totals(batch: PayrollBatch) -> BatchTotals:
    gross: dict[str, list[Money]] = defaultdict(list)
    net: dict[str, list[Money]] = defaultdict(list)
    costs: dict[str, list[Money]] = defaultdict(list)
    for payee in batch.payees:
        gross[payee.currency].append(payee.gross)
        net[payee.currency].append(payee.net_pay)
        costs[payee.currency].append(payee.employer_costs)

    totals = BatchTotals(
        gross={c: Money.sum(v, c) for c, v in gross.items()},
        net={c: Money.sum(v, c) for c, v in net.items()},
        employer_costs={c: Money.sum(v, c) for c, v in costs.items()},
    )

    snapshot = batch.fx_snapshot
    if snapshot is not None:
        base = snapshot.base_currency
        totals.fx_fees = Money.sum((p.fx_fee for p in batch.payees if p.fx_fee), base)
        try:
            converted = [snapshot.convert(m, base) for m in totals.net.values()]
        except ValueError:
            totals.net_in_base = None
        else:
            totals.net_in_base = Money.sum(converted, base)
    return totals


def execution_progress(batch: PayrollBatch) -> ExecutionProgress:
    counts = {status: 0 for status in ReceiptStatus}
    for receipt in batch.receipts:
        counts[receipt.status] += 1
    return ExecutionProgress(
        total=len(batch.payees),
        paid=counts[ReceiptStatus.PAID],
        failed=counts[ReceiptStatus.FAILED],
        in_transit=counts[ReceiptStatus.IN_TRANSIT],
        initiated=counts[ReceiptStatus.INITIATED],
    )


def reconciliation_summary(batch: PayrollBatch) -> dict[str, int]:
    """Counts as shown on the reconciliation panel."""
    progress = execution_progress(batch)
    return {
        "reconciled": progress.paid,
        "mismatched": progress.failed,
        "pending": progress.in_transit + progress.initiated,
        "orphaned": len(batch.orphan_receipts),
    }


def payees_by_status(batch: PayrollBatch) -> dict[str, int]:
    counts = {status.value: 0 for status in PayeeStatus}
    for payee in batch.payees:
        counts[payee.status.value] += 1
    return counts


def lock_seconds_remaining(batch: PayrollBatch, now: datetime) -> int | None:
    """Countdown for display. Authority stays with FXSnapshot.is_expired."""
    if batch.fx_snapshot is None:
        return None
    return batch.fx_snapshot.seconds_remaining(now)


def batch_summary(batch: PayrollBatch, now: datetime) -> dict[str, Any]:
    approval = current_approval_state(batch)
    snapshot = batch.fx_snapshot
    return {
        "id": batch.id,
        "pay_period": batch.pay_period,
        "status": batch.status.value,
        "available_events": [e.value for e in BatchStateMachine.available_events(batch.status)],
        "approval_state": approval.value if approval else None,
        "fx": {
            "snapshot_id": snapshot.id if snapshot else None,
            "provider": snapshot.provider if snapshot else None,
            "locked": snapshot.is_locked if snapshot else False,
            "expired": snapshot.is_expired(now) if snapshot else False,
            "seconds_remaining": lock_seconds_remaining(batch, now),
            "variance_bps": snapshot.variance_bps if snapshot else None,
        },
        "payees": payees_by_status(batch),
        "totals": batch_totals(batch).to_dict(),
        "progress": execution_progress(batch).to_dict(),
        "reconciliation": reconciliation_summary(batch),
    }
