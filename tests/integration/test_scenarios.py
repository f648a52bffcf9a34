"""End-to-end batch runs through the service with stub providers."""

import pytest

from payroll_batch.errors import LockExpiredAtExecutionError
from payroll_batch.services.audit import export_jsonl
from payroll_batch.types import BatchStatus, ReceiptStatus

from conftest import APPROVER, PREPARER, build_payee, norwegian_payee


def prepare(service, batch_id="batch-e2e"):
    batch = service.create_batch("2024-06", created_by=PREPARER, batch_id=batch_id)
    service.add_payee(batch.id, build_payee(), actor_id=PREPARER)
    service.add_payee(batch.id, norwegian_payee(), actor_id=PREPARER)
    service.recalculate_fx(batch.id)
    service.lock_fx(batch.id, actor_id=PREPARER)
    service.submit_for_approval(batch.id, PREPARER, note="June payroll")
    return batch.id


def test_happy_path(service, dispatcher, clock):
    batch_id = prepare(service)
    clock.advance(60)
    service.approve(batch_id, APPROVER)
    service.execute(batch_id, APPROVER)

    for worker_id in ("w-us-1", "w-no-1"):
        clock.advance(3600)
        service.ingest_provider_receipt(batch_id, dispatcher.settle(dispatcher.ref_for(worker_id)))

    batch = service.get_batch(batch_id)
    assert batch.status == BatchStatus.COMPLETED
    assert {r.status for r in batch.receipts} == {ReceiptStatus.PAID}
    assert service.summary(batch_id)["progress"]["percent_complete"] == "100.0"
    assert [e.level.value for e in service.replay(batch_id, level="error")] == []

    entries = list(service.replay(batch_id))
    assert len(entries) >= 5
    keys = [(e.at, e.seq) for e in entries]
    assert keys == sorted(keys, reverse=True)
    assert len(set(keys)) == len(keys)


def test_lock_expires_between_approval_and_execution(service, clock):
    batch_id = prepare(service)
    clock.advance(60)
    service.approve(batch_id, APPROVER)
    clock.advance(860)

    with pytest.raises(LockExpiredAtExecutionError, match="FX lock expired 20 seconds ago"):
        service.execute(batch_id, APPROVER)

    batch = service.get_batch(batch_id)
    assert batch.status == BatchStatus.APPROVED
    assert batch.receipts == []
    errors = list(service.replay(batch_id, level="error"))
    assert [e.code for e in errors] == ["LockExpiredAtExecution"]
    assert errors[0].actor_id == APPROVER


def test_failure_then_retry(service, dispatcher, clock):
    batch_id = prepare(service)
    service.approve(batch_id, APPROVER)
    service.execute(batch_id, APPROVER)
    first_ref = dispatcher.ref_for("w-no-1")

    service.ingest_provider_receipt(
        batch_id,
        dispatcher.settle(first_ref, ReceiptStatus.FAILED, failure_reason="account closed"),
    )
    assert service.get_batch(batch_id).status == BatchStatus.PARTIALLY_FAILED

    service.retry_failed(batch_id, APPROVER)
    retry_ref = dispatcher.ref_for("w-no-1")
    assert retry_ref != first_ref

    # A late receipt for the superseded attempt changes nothing
    late = service.ingest_provider_receipt(batch_id, dispatcher.settle(first_ref))
    assert late.ignored == 1
    assert service.get_batch(batch_id).receipt_for("w-no-1").status == ReceiptStatus.INITIATED

    service.ingest_provider_receipt(batch_id, dispatcher.settle(retry_ref))
    service.ingest_provider_receipt(batch_id, dispatcher.settle(dispatcher.ref_for("w-us-1")))

    batch = service.get_batch(batch_id)
    assert batch.status == BatchStatus.COMPLETED
    receipt = batch.receipt_for("w-no-1")
    assert receipt.attempt == 2
    assert receipt.previous_refs == (first_ref,)


def test_decline_and_resubmit(service, alternate_provider):
    batch_id = prepare(service)

    service.decline(batch_id, APPROVER, note="Check the NOK rate")
    assert service.get_batch(batch_id).status == BatchStatus.DRAFT

    service.submit_for_approval(batch_id, PREPARER)
    service.approve(batch_id, APPROVER)

    assert service.get_batch(batch_id).status == BatchStatus.APPROVED
    actions = [a.action.value for a in service.get_batch(batch_id).approvals]
    assert actions == ["Requested", "Declined", "Requested", "Approved"]


def test_audit_export_covers_whole_run(service, dispatcher, tmp_path):
    batch_id = prepare(service)
    service.approve(batch_id, APPROVER)
    service.execute(batch_id, APPROVER)

    target = tmp_path / "audit.jsonl"
    with open(target, "w", encoding="utf-8") as f:
        count = export_jsonl(service.get_batch(batch_id), f)

    batch = service.get_batch(batch_id)
    assert count == len(batch.events) + len(batch.approvals)
    assert len(target.read_text().splitlines()) == count
