"""Batch service - the single entrypoint for outer collaborators.

Usage:
    service = BatchService(
        InMemoryBatchRepository(),
        fx_providers=[StaticRateProvider("primary"), StaticRateProvider("alternate")],
        dispatcher=StubPaymentDispatcher(),
        compliance=RequiredFieldsEvaluator(),
    )

    batch = service.create_batch("2024-06", created_by="prep@example.com")
    service.add_payee(batch.id, payee, actor_id="prep@example.com")
    service.recalculate_fx(batch.id)
    service.lock_fx(batch.id)
    service.submit_for_approval(batch.id, actor_id="prep@example.com")
    service.approve(batch.id, actor_id="approver@example.com")
    service.execute(batch.id, actor_id="approver@example.com")

Every mutation:
- holds the batch's lock, so operations on one batch are serialized
- runs against a private copy and saves it only on success
- records refused operations on the stored batch before re-raising
- publishes domain events derived from the committed change
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from payroll_batch.clock import Clock, utc_now
from payroll_batch.config import CoreConfig
from payroll_batch.errors import BatchOperationError
from payroll_batch.events.emitter import EventEmitter
from payroll_batch.events.handlers import NotificationHook
from payroll_batch.events.types import (
    BatchStatusChanged,
    DomainEvent,
    EventMetadata,
    FXRateLocked,
    OrphanReceiptDetected,
    PaymentFailed,
    PaymentSettled,
)
from payroll_batch.providers.base import (
    ComplianceEvaluator,
    ComplianceResult,
    FXRateProvider,
    NotificationSender,
    PaymentDispatcher,
    RetryPolicy,
)
from payroll_batch.repository import BatchLockRegistry, BatchRepository
from payroll_batch.services.approval import ApprovalWorkflow
from payroll_batch.services.audit import AuditReplay, replay
from payroll_batch.services.execution import PaymentExecutor
from payroll_batch.services.fx_snapshot import FXSnapshotManager
from payroll_batch.services.payee_ledger import PayeeLedger
from payroll_batch.services.queries import batch_summary
from payroll_batch.services.reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    parse_bank_file,
    receipt_from_row,
)
from payroll_batch.types import (
    Adjustment,
    ApprovalEvent,
    BatchStatus,
    EventActor,
    EventLevel,
    FXSnapshot,
    PaymentReceipt,
    PayrollBatch,
    PayrollPayee,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchService:
    """Wires the batch components together behind one API."""

    def __init__(
        self,
        repository: BatchRepository,
        *,
        fx_providers: Sequence[FXRateProvider],
        dispatcher: PaymentDispatcher,
        compliance: ComplianceEvaluator | None = None,
        notifier: NotificationSender | None = None,
        retry_policy: RetryPolicy | None = None,
        config: CoreConfig | None = None,
        clock: Clock = utc_now,
        emitter: EventEmitter | None = None,
        locks: BatchLockRegistry | None = None,
    ):
        self.repository = repository
        self.config = config or CoreConfig()
        self.clock = clock
        self.compliance = compliance
        self.locks = locks or BatchLockRegistry()

        self.fx = FXSnapshotManager(fx_providers, self.config.fx, clock)
        self.ledger = PayeeLedger(clock)
        self.approvals = ApprovalWorkflow(clock, notifier)
        self.reconciliation = ReconciliationEngine(self.config.reconciliation, clock)
        self.executor = PaymentExecutor(dispatcher, self.reconciliation, retry_policy, clock)

        self.emitter = emitter or EventEmitter()
        if notifier is not None:
            self.emitter.on(
                [BatchStatusChanged, PaymentFailed, OrphanReceiptDetected],
                NotificationHook(notifier),
            )

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def create_batch(
        self,
        pay_period: str,
        created_by: str | None = None,
        batch_id: str | None = None,
    ) -> PayrollBatch:
        batch_id = batch_id or f"batch-{uuid.uuid4().hex[:12]}"
        with self.locks.hold(batch_id):
            if self.repository.exists(batch_id):
                raise ValueError(f"Batch '{batch_id}' already exists")
            now = self.clock()
            batch = PayrollBatch(
                id=batch_id, pay_period=pay_period, created_by=created_by, created_at=now
            )
            batch.append_event(
                now,
                f"Batch created for pay period {pay_period}",
                actor=EventActor.USER if created_by else EventActor.SYSTEM,
                actor_id=created_by,
                code="BatchCreated",
            )
            self.repository.save(batch)
        logger.info("Created batch %s for %s", batch_id, pay_period)
        return batch

    def get_batch(self, batch_id: str) -> PayrollBatch:
        return self.repository.get(batch_id)

    def list_batches(self, status: BatchStatus | None = None) -> list[PayrollBatch]:
        return self.repository.list(status)

    def delete_batch(self, batch_id: str) -> None:
        with self.locks.hold(batch_id):
            self.repository.delete(batch_id)
        logger.info("Deleted batch %s", batch_id)

    # -------------------------------------------------------------------------
    # Payees
    # -------------------------------------------------------------------------

    def add_payee(
        self, batch_id: str, payee: PayrollPayee, actor_id: str | None = None
    ) -> PayrollPayee:
        """Add a payee; readiness is evaluated straight away when a compliance evaluator is configured."""

        def op(batch: PayrollBatch) -> PayrollPayee:
            added = self.ledger.add(batch, copy.deepcopy(payee), actor_id)
            self._evaluate(batch, added.worker_id)
            return added

        return self._mutate(batch_id, op, actor_id)

    def remove_payee(
        self, batch_id: str, worker_id: str, actor_id: str | None = None
    ) -> PayrollPayee:
        return self._mutate(
            batch_id, lambda b: self.ledger.remove(b, worker_id, actor_id), actor_id
        )

    def edit_adjustment(
        self,
        batch_id: str,
        worker_id: str,
        adjustment: Adjustment,
        index: int | None = None,
        actor_id: str | None = None,
    ) -> PayrollPayee:
        def op(batch: PayrollBatch) -> PayrollPayee:
            payee = self.ledger.edit_adjustment(batch, worker_id, adjustment, index, actor_id)
            self._evaluate(batch, worker_id)
            return payee

        return self._mutate(batch_id, op, actor_id)

    def remove_adjustment(
        self, batch_id: str, worker_id: str, index: int, actor_id: str | None = None
    ) -> PayrollPayee:
        def op(batch: PayrollBatch) -> PayrollPayee:
            payee = self.ledger.remove_adjustment(batch, worker_id, index, actor_id)
            self._evaluate(batch, worker_id)
            return payee

        return self._mutate(batch_id, op, actor_id)

    def recompute_readiness(
        self,
        batch_id: str,
        worker_id: str,
        evaluator: ComplianceEvaluator | None = None,
    ) -> ComplianceResult:
        evaluator = evaluator or self.compliance
        if evaluator is None:
            raise ValueError("No compliance evaluator configured")
        return self._mutate(
            batch_id, lambda b: self.ledger.recompute_readiness(b, worker_id, evaluator)
        )

    def _evaluate(self, batch: PayrollBatch, worker_id: str) -> None:
        if self.compliance is not None:
            self.ledger.recompute_readiness(batch, worker_id, self.compliance)

    # -------------------------------------------------------------------------
    # FX
    # -------------------------------------------------------------------------

    def recalculate_fx(
        self,
        batch_id: str,
        base_currency: str | None = None,
        target_currencies: Sequence[str] | None = None,
        provider: str | None = None,
    ) -> FXSnapshot:
        return self._mutate(
            batch_id,
            lambda b: self.fx.recalculate(b, base_currency, target_currencies, provider),
        )

    def lock_fx(
        self,
        batch_id: str,
        snapshot: FXSnapshot | str | None = None,
        ttl_seconds: int | None = None,
        actor_id: str | None = None,
    ) -> FXSnapshot:
        return self._mutate(
            batch_id, lambda b: self.fx.lock(b, snapshot, ttl_seconds, actor_id), actor_id
        )

    def switch_fx_provider(
        self, batch_id: str, snapshot: FXSnapshot | str | None = None
    ) -> FXSnapshot:
        return self._mutate(batch_id, lambda b: self.fx.switch_provider(b, snapshot))

    # -------------------------------------------------------------------------
    # Approval
    # -------------------------------------------------------------------------

    def submit_for_approval(
        self, batch_id: str, actor_id: str, note: str | None = None
    ) -> ApprovalEvent:
        return self._mutate(
            batch_id, lambda b: self.approvals.submit_for_approval(b, actor_id, note), actor_id
        )

    def approve(self, batch_id: str, actor_id: str, note: str | None = None) -> ApprovalEvent:
        return self._mutate(
            batch_id, lambda b: self.approvals.approve(b, actor_id, note), actor_id
        )

    def decline(self, batch_id: str, actor_id: str, note: str | None = None) -> ApprovalEvent:
        return self._mutate(
            batch_id, lambda b: self.approvals.decline(b, actor_id, note), actor_id
        )

    def withdraw(self, batch_id: str, actor_id: str, note: str | None = None) -> ApprovalEvent:
        return self._mutate(
            batch_id, lambda b: self.approvals.withdraw(b, actor_id, note), actor_id
        )

    def remind(self, batch_id: str, actor_id: str, note: str | None = None) -> bool:
        return self._mutate(
            batch_id, lambda b: self.approvals.remind(b, actor_id, note), actor_id
        )

    # -------------------------------------------------------------------------
    # Execution and settlement
    # -------------------------------------------------------------------------

    def execute(self, batch_id: str, actor_id: str) -> list[PaymentReceipt]:
        return self._mutate(batch_id, lambda b: self.executor.execute(b, actor_id), actor_id)

    def retry_failed(self, batch_id: str, actor_id: str) -> list[PaymentReceipt]:
        return self._mutate(
            batch_id, lambda b: self.executor.retry_failed(b, actor_id), actor_id
        )

    def ingest_bank_file(
        self, batch_id: str, rows: str | Iterable[Mapping[str, Any]]
    ) -> ReconciliationResult:
        """Apply a bank file, given as CSV text or already-parsed rows.

        Rows that cannot be parsed are counted as rejected; the rest are
        applied together.
        """
        if isinstance(rows, str):
            rows = parse_bank_file(rows)

        receipts = []
        rejected = ReconciliationResult()
        for line, row in enumerate(rows, start=1):
            try:
                receipts.append(receipt_from_row(row))
            except ValueError as e:
                rejected.rejected += 1
                rejected.errors.append({"row": line, "error": str(e)})

        def op(batch: PayrollBatch) -> ReconciliationResult:
            if rejected.rejected:
                batch.append_event(
                    self.clock(),
                    f"{rejected.rejected} bank file row(s) rejected",
                    level=EventLevel.WARN,
                    code="BankFileRowsRejected",
                )
            return self.reconciliation.apply_receipts(batch, receipts, "bank_file").merge(rejected)

        return self._mutate(batch_id, op)

    def ingest_provider_receipt(
        self, batch_id: str, receipt: PaymentReceipt
    ) -> ReconciliationResult:
        return self._mutate(
            batch_id, lambda b: self.reconciliation.apply_receipts(b, [receipt], "provider")
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def replay(
        self,
        batch_id: str,
        actor: EventActor | str | None = None,
        level: EventLevel | str | None = None,
    ) -> AuditReplay:
        return replay(self.repository.get(batch_id), actor=actor, level=level)

    def summary(self, batch_id: str) -> dict[str, Any]:
        return batch_summary(self.repository.get(batch_id), self.clock())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _mutate(
        self,
        batch_id: str,
        operation: Callable[[PayrollBatch], T],
        actor_id: str | None = None,
    ) -> T:
        with self.locks.hold(batch_id):
            stored = self.repository.get(batch_id)
            working = copy.deepcopy(stored)
            try:
                result = operation(working)
            except BatchOperationError as e:
                self._record_failure(stored, e, actor_id)
                raise
            self.repository.save(working)
            self._publish(stored, working, actor_id)
            return result

    def _record_failure(
        self, batch: PayrollBatch, error: BatchOperationError, actor_id: str | None
    ) -> None:
        logger.warning("Batch %s: %s refused: %s", batch.id, error.code, error)
        batch.append_event(
            self.clock(),
            str(error),
            level=EventLevel(error.audit_level),
            actor=EventActor.USER if actor_id else EventActor.SYSTEM,
            code=error.code,
            actor_id=actor_id,
        )
        self.repository.save(batch)

    def _publish(
        self, before: PayrollBatch, after: PayrollBatch, actor_id: str | None
    ) -> None:
        events = derive_domain_events(before, after, self.clock(), actor_id)
        if not events:
            return
        errors = self.emitter.emit_all(events)
        if not errors:
            return
        now = self.clock()
        for error in errors:
            after.append_event(
                now,
                f"Notification hook failed: {error}",
                level=EventLevel.WARN,
                code="NotificationFailed",
            )
        self.repository.save(after)


def derive_domain_events(
    before: PayrollBatch,
    after: PayrollBatch,
    timestamp: datetime,
    actor_id: str | None = None,
) -> list[DomainEvent]:
    """Domain events implied by the change from ``before`` to ``after``."""

    def meta() -> EventMetadata:
        return EventMetadata.create(
            after.id, timestamp, actor_id, "user" if actor_id else "system"
        )

    events: list[DomainEvent] = []

    old_fx, new_fx = before.fx_snapshot, after.fx_snapshot
    if new_fx is not None and new_fx.expires_at is not None:
        if old_fx is None or old_fx.id != new_fx.id or old_fx.locked_at != new_fx.locked_at:
            events.append(FXRateLocked(meta(), new_fx.id, new_fx.expires_at))

    old_receipts = {r.payee_id: r for r in before.receipts}
    for receipt in after.receipts:
        old = old_receipts.get(receipt.payee_id)
        if old == receipt:
            continue
        if receipt.status == ReceiptStatus.PAID:
            events.append(PaymentSettled(meta(), receipt.payee_id, receipt.provider_ref))
        elif receipt.status == ReceiptStatus.FAILED:
            events.append(
                PaymentFailed(
                    meta(), receipt.payee_id, receipt.provider_ref, receipt.failure_reason
                )
            )

    for orphan in after.orphan_receipts[len(before.orphan_receipts):]:
        events.append(OrphanReceiptDetected(meta(), orphan.payee_id, orphan.provider_ref))

    if before.status != after.status:
        events.append(BatchStatusChanged(meta(), before.status.value, after.status.value))

    return events
