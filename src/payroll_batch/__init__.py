"""Payroll batch core: FX-locked, dual-approved, reconciled payroll batches."""

from payroll_batch.money import FXQuote, Money
from payroll_batch.types import (
    Adjustment,
    ApprovalAction,
    ApprovalEvent,
    ApprovalRole,
    BatchEvent,
    BatchStatus,
    EventActor,
    EventLevel,
    FXSnapshot,
    PayeeStatus,
    PaymentReceipt,
    PayrollBatch,
    PayrollPayee,
    ReceiptStatus,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Money",
    "FXQuote",
    "Adjustment",
    "ApprovalAction",
    "ApprovalEvent",
    "ApprovalRole",
    "BatchEvent",
    "BatchStatus",
    "EventActor",
    "EventLevel",
    "FXSnapshot",
    "PayeeStatus",
    "PaymentReceipt",
    "PayrollBatch",
    "PayrollPayee",
    "ReceiptStatus",
]
