"""Payroll batch services."""

from payroll_batch.services.approval import ApprovalWorkflow, current_approval_state
from payroll_batch.services.audit import AuditReplay, UnifiedEvent, export_jsonl, replay
from payroll_batch.services.batch_service import BatchService
from payroll_batch.services.execution import PaymentExecutor
from payroll_batch.services.fx_snapshot import FXSnapshotManager
from payroll_batch.services.payee_ledger import PayeeLedger
from payroll_batch.services.reconciliation import ReconciliationEngine, ReconciliationResult
from payroll_batch.services.state_machine import BatchStateMachine, TransitionEvent

__all__ = [
    "ApprovalWorkflow",
    "current_approval_state",
    "AuditReplay",
    "UnifiedEvent",
    "export_jsonl",
    "replay",
    "BatchService",
    "PaymentExecutor",
    "FXSnapshotManager",
    "PayeeLedger",
    "ReconciliationEngine",
    "ReconciliationResult",
    "BatchStateMachine",
    "TransitionEvent",
]
