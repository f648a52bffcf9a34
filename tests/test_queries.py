"""Tests for read-only batch derivations."""

from datetime import timedelta
from decimal import Decimal

from payroll_batch.money import Money
from payroll_batch.services.queries import (
    ExecutionProgress,
    batch_summary,
    batch_totals,
    execution_progress,
    lock_seconds_remaining,
    payees_by_status,
    reconciliation_summary,
)
from payroll_batch.types import (
    PayeeStatus,
    PaymentReceipt,
    PayrollBatch,
    ReceiptStatus,
)

from conftest import START, build_payee, nok_snapshot, norwegian_payee


def two_payee_batch() -> PayrollBatch:
    batch = PayrollBatch(id="b-q", pay_period="2024-06")
    batch.payees.append(build_payee(adjustments=(("250.00", "Bonus"),)))
    batch.payees.append(build_payee(worker_id="w-us-2", gross="3000.00", employer_costs="240.00"))
    batch.payees.append(norwegian_payee())
    return batch


class TestTotals:
    def test_totals_per_currency(self):
        totals = batch_totals(two_payee_batch())

        assert totals.gross["USD"] == Money(Decimal("8000.00"), "USD")
        assert totals.net["USD"] == Money(Decimal("8250.00"), "USD")
        assert totals.employer_costs["USD"] == Money(Decimal("640.00"), "USD")
        assert totals.gross["NOK"] == Money(Decimal("52000.00"), "NOK")
        assert totals.net_in_base is None

    def test_net_in_base_with_snapshot(self):
        batch = two_payee_batch()
        batch.fx_snapshot = nok_snapshot()

        totals = batch_totals(batch)

        # 52000 NOK at 10.70 is 4859.81 USD
        assert totals.net_in_base == Money(Decimal("13109.81"), "USD")
        assert totals.fx_fees == Money(Decimal("0"), "USD")

    def test_net_in_base_unknown_without_quote(self):
        batch = two_payee_batch()
        batch.payees.append(build_payee(worker_id="w-ph-1", country_code="PH", currency="PHP"))
        batch.fx_snapshot = nok_snapshot()

        assert batch_totals(batch).net_in_base is None


class TestProgress:
    def test_counts_by_receipt_status(self):
        batch = two_payee_batch()
        batch.receipts = [
            PaymentReceipt("w-us-1", Money(Decimal("5250.00"), "USD"), ReceiptStatus.PAID),
            PaymentReceipt("w-us-2", Money(Decimal("3000.00"), "USD"), ReceiptStatus.FAILED),
            PaymentReceipt("w-no-1", Money(Decimal("52000.00"), "NOK"), ReceiptStatus.IN_TRANSIT),
        ]

        progress = execution_progress(batch)

        assert (progress.paid, progress.failed, progress.in_transit, progress.initiated) == (1, 1, 1, 0)
        assert progress.percent_complete == Decimal("33.3")
        assert reconciliation_summary(batch) == {
            "reconciled": 1,
            "mismatched": 1,
            "pending": 1,
            "orphaned": 0,
        }

    def test_empty_batch_progress(self):
        assert ExecutionProgress(0, 0, 0, 0, 0).percent_complete == Decimal("0")

    def test_payees_by_status(self):
        batch = two_payee_batch()
        batch.payees[0].status = PayeeStatus.READY

        counts = payees_by_status(batch)

        assert counts["Ready"] == 1
        assert counts["NotReady"] == 2
        assert counts["Paid"] == 0


class TestSummary:
    def test_lock_countdown(self):
        batch = two_payee_batch()
        assert lock_seconds_remaining(batch, START) is None

        batch.fx_snapshot = nok_snapshot()
        assert lock_seconds_remaining(batch, START + timedelta(seconds=45)) == 855

    def test_summary_shape(self):
        batch = two_payee_batch()
        batch.fx_snapshot = nok_snapshot()

        summary = batch_summary(batch, START + timedelta(seconds=900))

        assert summary["status"] == "Draft"
        assert summary["available_events"] == ["submit_for_approval"]
        assert summary["approval_state"] is None
        assert summary["fx"]["locked"] is True
        assert summary["fx"]["expired"] is True
        assert summary["fx"]["seconds_remaining"] == 0
        assert summary["progress"]["total"] == 3
        assert summary["totals"]["gross"]["NOK"] == {"amount": "52000.00", "currency": "NOK"}
