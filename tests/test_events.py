"""Tests for domain events, the emitter and the notification hook."""

import json

import pytest

from payroll_batch.events import (
    BatchStatusChanged,
    EventCategory,
    EventEmitter,
    EventMetadata,
    FXRateLocked,
    NotificationHook,
    OrphanReceiptDetected,
    PaymentFailed,
    PaymentSettled,
)
from payroll_batch.providers import LoggingNotificationSender

from conftest import START


def meta(batch_id: str = "batch-1") -> EventMetadata:
    return EventMetadata.create(batch_id, START, "dev@acme.test", "user")


@pytest.fixture
def emitter():
    return EventEmitter()


class TestDomainEvents:
    def test_event_type_and_category(self):
        event = PaymentFailed(meta(), "w-1", "REF-1", "closed account")

        assert event.event_type == "PaymentFailed"
        assert event.category == EventCategory.SETTLEMENT
        assert FXRateLocked(meta(), "fx-1", START).category == EventCategory.FX
        assert OrphanReceiptDetected(meta(), "w-x", None).category == EventCategory.RECONCILIATION

    def test_to_json(self):
        event = BatchStatusChanged(meta(), "Approved", "Executing")

        data = json.loads(event.to_json())

        assert data["event_type"] == "BatchStatusChanged"
        assert data["to_status"] == "Executing"
        assert data["metadata"]["batch_id"] == "batch-1"
        assert data["metadata"]["timestamp"] == START.isoformat()

    def test_metadata_ids_are_unique(self):
        assert meta().event_id != meta().event_id


class TestEmitter:
    """Handlers are routed by type or category and isolated from each other."""

    def test_type_routing(self, emitter):
        seen = []
        emitter.on(PaymentSettled, seen.append)

        emitter.emit(PaymentSettled(meta(), "w-1", "REF-1"))
        emitter.emit(PaymentFailed(meta(), "w-2", "REF-2", None))

        assert [e.payee_id for e in seen] == ["w-1"]

    def test_category_routing(self, emitter):
        seen = []
        emitter.on_category(EventCategory.SETTLEMENT, seen.append)

        emitter.emit(PaymentSettled(meta(), "w-1", "REF-1"))
        emitter.emit(BatchStatusChanged(meta(), "Draft", "AwaitingApproval"))

        assert len(seen) == 1

    def test_failing_handler_does_not_stop_others(self, emitter):
        seen = []

        def boom(event):
            raise RuntimeError("handler down")

        emitter.on_all(boom)
        emitter.on_all(seen.append)

        errors = emitter.emit(BatchStatusChanged(meta(), "Draft", "AwaitingApproval"))

        assert len(seen) == 1
        assert [str(e) for e in errors] == ["handler down"]

    def test_off(self, emitter):
        seen = []
        handler = seen.append
        emitter.on_all(handler)
        emitter.off(handler)

        emitter.emit(PaymentSettled(meta(), "w-1", None))

        assert seen == []

    def test_emit_all_collects_errors(self, emitter):
        def boom(event):
            raise ValueError(event.event_type)

        emitter.on_all(boom)

        errors = emitter.emit_all(
            [PaymentSettled(meta(), "w-1", None), PaymentSettled(meta(), "w-2", None)]
        )

        assert len(errors) == 2


class TestNotificationHook:
    @pytest.fixture
    def sender(self):
        return LoggingNotificationSender()

    @pytest.mark.parametrize("status", ["AwaitingApproval", "Approved", "PartiallyFailed", "Completed"])
    def test_notifies_on_interesting_statuses(self, sender, status):
        NotificationHook(sender)(BatchStatusChanged(meta(), "Draft", status))

        assert sender.sent == [
            ("batch-1", f"Payroll batch batch-1 is {status}", f"Status changed from Draft to {status}.")
        ]

    def test_ignores_executing(self, sender):
        NotificationHook(sender)(BatchStatusChanged(meta(), "Approved", "Executing"))
        assert sender.sent == []

    def test_payment_failed(self, sender):
        NotificationHook(sender)(PaymentFailed(meta(), "w-no-1", "REF-9", "account closed"))

        assert sender.sent[0][1] == "Payment failed for w-no-1"
        assert sender.sent[0][2] == "account closed"

    def test_orphan(self, sender):
        NotificationHook(sender)(OrphanReceiptDetected(meta(), "w-ghost", "REF-X"))

        assert "w-ghost" in sender.sent[0][2]
