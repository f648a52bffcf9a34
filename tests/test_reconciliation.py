"""Tests for the reconciliation engine.

Tests verify:
1. Receipts merge by status rank and never move backwards
2. Applying receipts is idempotent and order-independent
3. Unmatched receipts are kept as orphans and warned about once
4. Settlement drives Executing to Completed or PartiallyFailed
5. Bank files parse into receipts
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from payroll_batch.config import ReconciliationConfig
from payroll_batch.money import Money
from payroll_batch.services.reconciliation import (
    ReconciliationEngine,
    parse_bank_file,
    parse_receipt_status,
    receipt_from_row,
)
from payroll_batch.types import (
    BatchStatus,
    EventLevel,
    PayeeStatus,
    PaymentReceipt,
    PayrollBatch,
    ReceiptStatus,
)

from conftest import START, FakeClock, build_payee, norwegian_payee

US_AMOUNT = Money(Decimal("5000.00"), "USD")
NO_AMOUNT = Money(Decimal("52000.00"), "NOK")


def executing_batch() -> PayrollBatch:
    """A batch mid-execution with one Initiated receipt per payee."""
    batch = PayrollBatch(id="batch-rec", pay_period="2024-06", status=BatchStatus.EXECUTING)
    batch.payees.extend([build_payee(), norwegian_payee()])
    for payee in batch.payees:
        payee.status = PayeeStatus.EXECUTING
        batch.receipts.append(
            PaymentReceipt(
                payee.worker_id,
                payee.net_pay,
                ReceiptStatus.INITIATED,
                provider_ref=f"REF-{payee.worker_id}",
            )
        )
    return batch


def receipt(payee_id: str, status: ReceiptStatus, amount: Money | None = None, **kwargs) -> PaymentReceipt:
    if amount is None:
        amount = US_AMOUNT if payee_id == "w-us-1" else NO_AMOUNT
    kwargs.setdefault("provider_ref", f"REF-{payee_id}")
    return PaymentReceipt(payee_id, amount, status, **kwargs)


@pytest.fixture
def engine(clock):
    return ReconciliationEngine(ReconciliationConfig(), clock)


@pytest.fixture
def running():
    return executing_batch()


class TestMerge:
    """A stored receipt only moves to a higher rank."""

    def test_paid_settles_payee(self, engine, running):
        result = engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))

        assert result.matched == 1
        stored = running.receipt_for("w-us-1")
        assert stored.status == ReceiptStatus.PAID
        assert stored.paid_at == START
        assert running.payee("w-us-1").status == PayeeStatus.PAID
        assert running.events[-1].code == "PaymentSettled"

    def test_in_transit_then_paid(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.IN_TRANSIT))
        assert running.payee("w-us-1").status == PayeeStatus.EXECUTING

        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))
        assert running.receipt_for("w-us-1").status == ReceiptStatus.PAID

    def test_lower_rank_is_ignored(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))

        result = engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.IN_TRANSIT))

        assert result.ignored == 1
        assert running.receipt_for("w-us-1").status == ReceiptStatus.PAID

    def test_paid_outranks_failed(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.FAILED, failure_reason="timeout"))
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))

        stored = running.receipt_for("w-us-1")
        assert stored.status == ReceiptStatus.PAID
        assert stored.failure_reason is None

    def test_failed_cannot_overwrite_paid(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.FAILED))

        assert running.receipt_for("w-us-1").status == ReceiptStatus.PAID

    def test_duplicate_receipt_is_idempotent(self, engine, running):
        paid = receipt("w-us-1", ReceiptStatus.PAID)
        engine.apply_receipt(running, paid)
        snapshot = running.to_dict()

        result = engine.apply_receipt(running, paid)

        assert result.ignored == 1
        assert running.to_dict() == snapshot

    def test_stale_reference_is_ignored(self, engine, running):
        position = running.receipts.index(running.receipt_for("w-us-1"))
        running.receipts[position] = PaymentReceipt(
            "w-us-1",
            US_AMOUNT,
            ReceiptStatus.INITIATED,
            provider_ref="REF-2",
            attempt=2,
            previous_refs=("REF-1",),
        )

        result = engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID, provider_ref="REF-1"))

        assert result.ignored == 1
        assert running.receipt_for("w-us-1").status == ReceiptStatus.INITIATED

    def test_unreferenced_failure_leaves_retry_in_flight(self, engine, running):
        position = running.receipts.index(running.receipt_for("w-us-1"))
        running.receipts[position] = PaymentReceipt(
            "w-us-1", US_AMOUNT, ReceiptStatus.INITIATED, provider_ref="REF-2", attempt=2
        )

        result = engine.apply_receipt(
            running, receipt("w-us-1", ReceiptStatus.FAILED, provider_ref=None, failure_reason="closed")
        )

        assert result.ignored == 1
        assert running.receipt_for("w-us-1").status == ReceiptStatus.INITIATED
        assert running.status == BatchStatus.EXECUTING

    def test_unreferenced_failure_applies_on_first_attempt(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.FAILED, provider_ref=None))

        assert running.receipt_for("w-us-1").status == ReceiptStatus.FAILED

    def test_amount_mismatch_warns_but_applies(self, engine, running):
        engine.apply_receipt(
            running, receipt("w-us-1", ReceiptStatus.PAID, amount=Money(Decimal("4990.00"), "USD"))
        )

        assert running.receipt_for("w-us-1").status == ReceiptStatus.PAID
        assert running.receipt_for("w-us-1").amount == US_AMOUNT
        codes = [e.code for e in running.events]
        assert "AmountMismatch" in codes

    def test_amount_within_tolerance_is_quiet(self, clock, running):
        engine = ReconciliationEngine(ReconciliationConfig(amount_tolerance=Decimal("0.01")), clock)
        engine.apply_receipt(
            running, receipt("w-us-1", ReceiptStatus.PAID, amount=Money(Decimal("5000.004"), "USD"))
        )

        assert "AmountMismatch" not in [e.code for e in running.events]


class TestOrderIndependence:
    """The final state does not depend on the order receipts arrive in."""

    @settings(max_examples=60, deadline=None)
    @given(
        us=st.lists(st.sampled_from(list(ReceiptStatus)), min_size=1, max_size=4),
        no=st.lists(st.sampled_from(list(ReceiptStatus)), min_size=1, max_size=4),
        data=st.data(),
    )
    def test_any_permutation_converges(self, us, no, data):
        incoming = [receipt("w-us-1", s) for s in us] + [receipt("w-no-1", s) for s in no]
        shuffled = data.draw(st.permutations(incoming))

        first, second = executing_batch(), executing_batch()
        engine = ReconciliationEngine(clock=FakeClock())
        for r in incoming:
            engine.apply_receipt(first, r)
        for r in shuffled:
            engine.apply_receipt(second, r)

        assert first.receipts == second.receipts
        assert first.status == second.status
        assert [p.status for p in first.payees] == [p.status for p in second.payees]

    @settings(max_examples=30, deadline=None)
    @given(statuses=st.lists(st.sampled_from(list(ReceiptStatus)), min_size=1, max_size=6))
    def test_reapplying_everything_changes_nothing(self, statuses):
        batch = executing_batch()
        engine = ReconciliationEngine(clock=FakeClock())
        incoming = [receipt("w-us-1", s) for s in statuses]

        engine.apply_receipts(batch, incoming)
        state = batch.to_dict()
        engine.apply_receipts(batch, incoming)

        assert batch.to_dict() == state


class TestOrphans:
    def test_unknown_payee_is_kept_and_warned_once(self, engine, running):
        stray = receipt("w-ghost", ReceiptStatus.PAID, amount=US_AMOUNT, provider_ref="REF-X")

        first = engine.apply_receipt(running, stray)
        engine.apply_receipt(running, stray)

        assert first.orphaned == 1
        assert first.success is False
        assert running.orphan_receipts == [stray]
        warnings = [e for e in running.events if e.code == "OrphanReceipt"]
        assert len(warnings) == 1
        assert warnings[0].level == EventLevel.WARN
        assert "w-ghost" in warnings[0].message

    def test_receipt_before_execution_is_unexpected(self, engine):
        draft = PayrollBatch(id="b", pay_period="2024-06")
        draft.payees.append(build_payee())

        result = engine.apply_receipt(draft, receipt("w-us-1", ReceiptStatus.PAID))

        assert result.orphaned == 1
        assert draft.events[-1].code == "UnexpectedReceipt"
        assert draft.status == BatchStatus.DRAFT


class TestSettlement:
    def test_all_paid_completes(self, engine, running):
        engine.apply_receipts(
            running, [receipt("w-us-1", ReceiptStatus.PAID), receipt("w-no-1", ReceiptStatus.PAID)]
        )

        assert running.status == BatchStatus.COMPLETED

    def test_any_failed_partially_fails(self, engine, running):
        engine.apply_receipts(
            running,
            [receipt("w-us-1", ReceiptStatus.PAID), receipt("w-no-1", ReceiptStatus.FAILED, failure_reason="closed")],
        )

        assert running.status == BatchStatus.PARTIALLY_FAILED
        assert running.payee("w-no-1").status == PayeeStatus.FAILED

    def test_pending_payments_keep_executing(self, engine, running):
        engine.apply_receipt(running, receipt("w-us-1", ReceiptStatus.PAID))

        assert running.status == BatchStatus.EXECUTING

    def test_late_paid_resumes_partially_failed(self, engine, running):
        """A Paid receipt that clears the last failure finishes the batch."""
        engine.apply_receipts(
            running, [receipt("w-us-1", ReceiptStatus.PAID), receipt("w-no-1", ReceiptStatus.FAILED)]
        )
        assert running.status == BatchStatus.PARTIALLY_FAILED

        engine.apply_receipt(running, receipt("w-no-1", ReceiptStatus.PAID))

        assert running.status == BatchStatus.COMPLETED
        transitions = [e.message for e in running.events if e.code == "Transition"]
        assert any("(retry_failed)" in m for m in transitions)


class TestBankFile:
    CSV = (
        "payee_id,provider_ref,amount,currency,status,paid_at,failure_reason\n"
        "w-us-1,REF-w-us-1,5000.00,USD,settled,2024-06-29T10:00:00+00:00,\n"
        "w-no-1,REF-w-no-1,52000.00,NOK,returned,,account closed\n"
    )

    def test_parse_rows(self):
        rows = parse_bank_file(self.CSV)

        assert len(rows) == 2
        assert rows[0]["payee_id"] == "w-us-1"

    def test_missing_columns(self):
        with pytest.raises(ValueError, match="amount"):
            parse_bank_file("payee_id,currency,status\nw-1,USD,paid\n")

    def test_empty_file(self):
        assert parse_bank_file("") == []

    def test_receipt_from_row(self):
        rows = parse_bank_file(self.CSV)

        paid = receipt_from_row(rows[0])
        failed = receipt_from_row(rows[1])

        assert paid.status == ReceiptStatus.PAID
        assert paid.paid_at is not None
        assert failed.status == ReceiptStatus.FAILED
        assert failed.failure_reason == "account closed"
        assert failed.amount == NO_AMOUNT

    @pytest.mark.parametrize(
        "row",
        [
            {"payee_id": "", "amount": "1", "currency": "USD", "status": "paid"},
            {"payee_id": "w", "amount": "abc", "currency": "USD", "status": "paid"},
            {"payee_id": "w", "amount": "1", "currency": "usdollar", "status": "paid"},
            {"payee_id": "w", "amount": "1", "currency": "USD", "status": "bounced"},
        ],
    )
    def test_bad_rows_raise_value_error(self, row):
        with pytest.raises(ValueError):
            receipt_from_row(row)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Paid", ReceiptStatus.PAID),
            ("in-transit", ReceiptStatus.IN_TRANSIT),
            ("pending", ReceiptStatus.INITIATED),
            (ReceiptStatus.FAILED, ReceiptStatus.FAILED),
        ],
    )
    def test_status_aliases(self, value, expected):
        assert parse_receipt_status(value) == expected

    def test_apply_bank_file(self, engine, running):
        receipts = [receipt_from_row(row) for row in parse_bank_file(self.CSV)]

        result = engine.apply_receipts(running, receipts, "bank_file")

        assert result.matched == 2
        assert result.failed == 1
        assert running.status == BatchStatus.PARTIALLY_FAILED
