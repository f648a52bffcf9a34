"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from payroll_batch.money import Money
from payroll_batch.services.reconciliation import parse_receipt_status
from payroll_batch.types import Adjustment, PaymentReceipt, PayrollPayee


# ============================================================================
# Batch schemas
# ============================================================================


class BatchCreate(BaseModel):
    """Schema for creating a new draft batch."""

    pay_period: str = Field(min_length=1)
    created_by: str | None = None
    batch_id: str | None = None


class BatchResponse(BaseModel):
    """Schema for a batch, as serialized by PayrollBatch.to_dict."""

    id: str
    pay_period: str
    status: str
    payees: list[dict[str, Any]]
    fx_snapshot: dict[str, Any] | None = None
    approvals: list[dict[str, Any]]
    events: list[dict[str, Any]]
    receipts: list[dict[str, Any]]
    orphan_receipts: list[dict[str, Any]]
    created_by: str | None = None
    created_at: datetime | None = None


class BatchListResponse(BaseModel):
    items: list[BatchResponse]
    total: int


# ============================================================================
# Payee schemas
# ============================================================================


class AdjustmentIn(BaseModel):
    amount: Decimal
    label: str = Field(min_length=1)


class PayeeCreate(BaseModel):
    """Schema for adding a payee. Amounts are in the payee's currency."""

    worker_id: str = Field(min_length=1)
    name: str
    country_code: str = Field(min_length=2, max_length=2)
    currency: str = Field(min_length=3, max_length=3)
    gross: Decimal
    employer_costs: Decimal = Decimal("0")
    adjustments: list[AdjustmentIn] = Field(default_factory=list)
    eta: datetime | None = None
    bank_account: str | None = None
    tax_id: str | None = None
    actor_id: str | None = None

    def to_domain(self) -> PayrollPayee:
        return PayrollPayee(
            worker_id=self.worker_id,
            name=self.name,
            country_code=self.country_code.upper(),
            currency=self.currency,
            gross=Money(self.gross, self.currency),
            employer_costs=Money(self.employer_costs, self.currency),
            adjustments=[
                Adjustment(Money(a.amount, self.currency), a.label) for a in self.adjustments
            ],
            eta=self.eta,
            bank_account=self.bank_account,
            tax_id=self.tax_id,
        )


class AdjustmentRequest(BaseModel):
    """Append an adjustment, or replace the one at ``index``."""

    amount: Decimal
    currency: str = Field(min_length=3, max_length=3)
    label: str = Field(min_length=1)
    index: int | None = None
    actor_id: str | None = None


# ============================================================================
# FX schemas
# ============================================================================


class FXRecalculateRequest(BaseModel):
    base_currency: str | None = None
    target_currencies: list[str] | None = None
    provider: str | None = None


class FXLockRequest(BaseModel):
    snapshot_id: str | None = None
    ttl_seconds: int | None = Field(default=None, ge=1)
    actor_id: str | None = None


class FXSwitchRequest(BaseModel):
    snapshot_id: str | None = None


# ============================================================================
# Approval / execution schemas
# ============================================================================


class ActorRequest(BaseModel):
    """Schema for an action taken by a named user."""

    actor_id: str = Field(min_length=1)
    note: str | None = None


class RemindResponse(BaseModel):
    sent: bool


# ============================================================================
# Reconciliation schemas
# ============================================================================


class ReceiptIn(BaseModel):
    """A settlement receipt pushed by a payment provider."""

    payee_id: str
    provider_ref: str | None = None
    amount: Decimal
    currency: str = Field(min_length=3, max_length=3)
    status: str
    paid_at: datetime | None = None
    failure_reason: str | None = None

    def to_domain(self) -> PaymentReceipt:
        return PaymentReceipt(
            payee_id=self.payee_id,
            provider_ref=self.provider_ref,
            amount=Money(self.amount, self.currency),
            status=parse_receipt_status(self.status),
            paid_at=self.paid_at,
            failure_reason=self.failure_reason,
        )


class BankFileRequest(BaseModel):
    """A bank file, as raw CSV text or pre-parsed rows."""

    csv: str | None = None
    rows: list[dict[str, str]] | None = None


class ReconciliationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    matched: int
    orphaned: int
    failed: int
    ignored: int
    rejected: int
    errors: list[dict[str, Any]]


# ============================================================================
# Audit schemas
# ============================================================================


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    at: datetime
    actor: str
    message: str
    level: str
    seq: int
    source: str
    code: str | None = None
    actor_id: str | None = None


class AuditResponse(BaseModel):
    batch_id: str
    items: list[AuditEntryResponse]
    total: int


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str | None = None
