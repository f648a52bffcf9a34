"""Tests for FX snapshots, payees and batch serialization."""

from datetime import timedelta
from decimal import Decimal

import pytest

from payroll_batch.money import FXQuote, Money
from payroll_batch.types import (
    ApprovalAction,
    ApprovalRole,
    EventLevel,
    FXSnapshot,
    PaymentReceipt,
    PayrollBatch,
    ReceiptStatus,
)

from conftest import START, build_payee


def snapshot(**kwargs) -> FXSnapshot:
    values = dict(
        id="fx-1",
        base_currency="USD",
        quotes=(FXQuote("EUR", Decimal("0.92")), FXQuote("NOK", Decimal("10.70"))),
        provider="primary",
        created_at=START,
    )
    values.update(kwargs)
    return FXSnapshot(**values)


class TestFXSnapshotExpiry:
    """A locked snapshot expires exactly at locked_at + ttl."""

    def test_unlocked_snapshot_never_expires(self):
        snap = snapshot()

        assert snap.is_locked is False
        assert snap.expires_at is None
        assert snap.is_expired(START + timedelta(days=365)) is False
        assert snap.seconds_remaining(START) is None

    def test_valid_one_second_before_expiry(self):
        snap = snapshot().locked(START, 900)

        assert snap.is_expired(START + timedelta(seconds=899)) is False
        assert snap.is_lock_active(START + timedelta(seconds=899)) is True

    def test_expired_at_exact_boundary(self):
        snap = snapshot().locked(START, 900)

        assert snap.expires_at == START + timedelta(seconds=900)
        assert snap.is_expired(START + timedelta(seconds=900)) is True

    def test_expired_after_boundary(self):
        snap = snapshot().locked(START, 900)
        assert snap.is_expired(START + timedelta(seconds=920)) is True

    def test_seconds_remaining_floors_at_zero(self):
        snap = snapshot().locked(START, 900)

        assert snap.seconds_remaining(START) == 900
        assert snap.seconds_remaining(START + timedelta(seconds=300)) == 600
        assert snap.seconds_remaining(START + timedelta(seconds=5000)) == 0

    def test_locked_returns_new_snapshot(self):
        snap = snapshot()
        locked = snap.locked(START, 60)

        assert snap.locked_at is None
        assert locked.locked_at == START
        assert locked.id == snap.id


class TestFXSnapshotQuotes:
    """Quote lookup and conversion."""

    def test_duplicate_currency_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            snapshot(quotes=(FXQuote("EUR", Decimal("0.9")), FXQuote("EUR", Decimal("0.91"))))

    def test_lock_fields_must_be_set_together(self):
        with pytest.raises(ValueError):
            snapshot(locked_at=START)

    def test_rate_for_base_is_one(self):
        assert snapshot().rate_for("USD") == Decimal("1")

    def test_rate_for_missing_currency_raises(self):
        with pytest.raises(ValueError, match="No FX quote for GBP"):
            snapshot().rate_for("GBP")

    def test_convert_through_base(self):
        snap = snapshot()

        assert snap.convert(Money(Decimal("1000"), "USD"), "EUR") == Money(Decimal("920.00"), "EUR")
        assert snap.convert(Money(Decimal("1070"), "NOK"), "USD") == Money(Decimal("100.00"), "USD")

    def test_currencies(self):
        assert snapshot().currencies == {"EUR", "NOK"}


class TestPayrollPayee:
    def test_net_pay_includes_adjustments(self):
        payee = build_payee(gross="5000.00", adjustments=(("250.00", "Bonus"), ("-100.00", "Equipment")))
        assert payee.net_pay == Money(Decimal("5150.00"), "USD")

    def test_net_pay_without_adjustments_is_gross(self):
        payee = build_payee(gross="1234.56")
        assert payee.net_pay == payee.gross


class TestPayrollBatch:
    """Sequence numbers and serialization."""

    def test_events_and_approvals_share_sequence(self):
        batch = PayrollBatch(id="b-1", pay_period="2024-06")

        first = batch.append_event(START, "created")
        approval = batch.append_approval(START, ApprovalRole.PREPARER, ApprovalAction.REQUESTED, "maria")
        second = batch.append_event(START, "again", level=EventLevel.WARN)

        assert [first.seq, approval.seq, second.seq] == [1, 2, 3]
        assert batch.next_seq == 4

    def test_receipt_for(self):
        batch = PayrollBatch(id="b-1", pay_period="2024-06")
        receipt = PaymentReceipt("w-1", Money(Decimal("1"), "USD"), ReceiptStatus.INITIATED)
        batch.receipts.append(receipt)

        assert batch.receipt_for("w-1") is receipt
        assert batch.receipt_for("w-2") is None

    def test_round_trip_through_dict(self):
        """A fully populated batch survives to_dict/from_dict unchanged."""
        batch = PayrollBatch(id="b-1", pay_period="2024-06", created_by="maria", created_at=START)
        payee = build_payee(adjustments=(("10.00", "Bonus"),))
        payee.proposed_fx_rate = Decimal("1")
        batch.payees.append(payee)
        batch.fx_snapshot = snapshot(variance_bps=12).locked(START, 900)
        batch.append_event(START, "created", code="BatchCreated", actor_id="maria")
        batch.append_approval(START, ApprovalRole.PREPARER, ApprovalAction.REQUESTED, "maria", "please")
        batch.receipts.append(
            PaymentReceipt(
                "w-us-1",
                Money(Decimal("5010.00"), "USD"),
                ReceiptStatus.FAILED,
                provider_ref="REF-2",
                attempt=2,
                previous_refs=("REF-1",),
                failure_reason="closed account",
            )
        )

        restored = PayrollBatch.from_dict(batch.to_dict())

        assert restored == batch
        assert restored.to_dict() == batch.to_dict()
