"""Payroll batch API endpoints.

Handlers are plain ``def`` functions: the service is synchronous and holds
per-batch locks, so FastAPI runs them in its threadpool.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Path, Query, status

from payroll_batch.api.dependencies import ServiceDep
from payroll_batch.api.schemas import (
    ActorRequest,
    AdjustmentRequest,
    AuditEntryResponse,
    AuditResponse,
    BankFileRequest,
    BatchCreate,
    BatchListResponse,
    BatchResponse,
    ErrorResponse,
    FXLockRequest,
    FXRecalculateRequest,
    FXSwitchRequest,
    PayeeCreate,
    ReceiptIn,
    ReconciliationResponse,
    RemindResponse,
)
from payroll_batch.money import Money
from payroll_batch.types import Adjustment, BatchStatus, PayrollBatch

router = APIRouter(prefix="/batches", tags=["batches"])

BatchId = Annotated[str, Path(min_length=1)]

NOT_FOUND = {404: {"model": ErrorResponse}}
CONFLICT = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _response(batch: PayrollBatch) -> BatchResponse:
    return BatchResponse(**batch.to_dict())


# ============================================================================
# Batch CRUD
# ============================================================================


@router.post(
    "",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
def create_batch(service: ServiceDep, payload: BatchCreate) -> BatchResponse:
    """Create a new batch in Draft status."""
    batch = service.create_batch(payload.pay_period, payload.created_by, payload.batch_id)
    return _response(batch)


@router.get("", response_model=BatchListResponse)
def list_batches(
    service: ServiceDep,
    status_filter: Annotated[BatchStatus | None, Query(alias="status")] = None,
) -> BatchListResponse:
    batches = service.list_batches(status_filter)
    return BatchListResponse(items=[_response(b) for b in batches], total=len(batches))


@router.get("/{batch_id}", response_model=BatchResponse, responses=NOT_FOUND)
def get_batch(service: ServiceDep, batch_id: BatchId) -> BatchResponse:
    return _response(service.get_batch(batch_id))


@router.delete(
    "/{batch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=CONFLICT,
)
def delete_batch(service: ServiceDep, batch_id: BatchId) -> None:
    """Delete a Draft batch."""
    service.delete_batch(batch_id)


@router.get("/{batch_id}/summary", responses=NOT_FOUND)
def get_summary(service: ServiceDep, batch_id: BatchId) -> dict[str, Any]:
    """Derived status, totals, FX countdown and settlement progress."""
    return service.summary(batch_id)


@router.get("/{batch_id}/audit", response_model=AuditResponse, responses=NOT_FOUND)
def get_audit(
    service: ServiceDep,
    batch_id: BatchId,
    actor: str | None = None,
    level: str | None = None,
) -> AuditResponse:
    """Unified audit trail, newest first."""
    entries = [AuditEntryResponse(**e.to_dict()) for e in service.replay(batch_id, actor, level)]
    return AuditResponse(batch_id=batch_id, items=entries, total=len(entries))


# ============================================================================
# Payees
# ============================================================================


@router.post(
    "/{batch_id}/payees",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CONFLICT,
)
def add_payee(service: ServiceDep, batch_id: BatchId, payload: PayeeCreate) -> BatchResponse:
    service.add_payee(batch_id, payload.to_domain(), payload.actor_id)
    return _response(service.get_batch(batch_id))


@router.delete(
    "/{batch_id}/payees/{worker_id}", response_model=BatchResponse, responses=CONFLICT
)
def remove_payee(
    service: ServiceDep,
    batch_id: BatchId,
    worker_id: str,
    actor_id: str | None = None,
) -> BatchResponse:
    service.remove_payee(batch_id, worker_id, actor_id)
    return _response(service.get_batch(batch_id))


@router.post(
    "/{batch_id}/payees/{worker_id}/adjustments",
    response_model=BatchResponse,
    responses=CONFLICT,
)
def edit_adjustment(
    service: ServiceDep,
    batch_id: BatchId,
    worker_id: str,
    payload: AdjustmentRequest,
) -> BatchResponse:
    adjustment = Adjustment(Money(payload.amount, payload.currency), payload.label)
    service.edit_adjustment(batch_id, worker_id, adjustment, payload.index, payload.actor_id)
    return _response(service.get_batch(batch_id))


@router.delete(
    "/{batch_id}/payees/{worker_id}/adjustments/{index}",
    response_model=BatchResponse,
    responses=CONFLICT,
)
def remove_adjustment(
    service: ServiceDep,
    batch_id: BatchId,
    worker_id: str,
    index: int,
    actor_id: str | None = None,
) -> BatchResponse:
    service.remove_adjustment(batch_id, worker_id, index, actor_id)
    return _response(service.get_batch(batch_id))


@router.post(
    "/{batch_id}/payees/{worker_id}/readiness",
    response_model=BatchResponse,
    responses=CONFLICT,
)
def recompute_readiness(service: ServiceDep, batch_id: BatchId, worker_id: str) -> BatchResponse:
    service.recompute_readiness(batch_id, worker_id)
    return _response(service.get_batch(batch_id))


# ============================================================================
# FX
# ============================================================================


@router.post("/{batch_id}/fx/recalculate", response_model=BatchResponse, responses=CONFLICT)
def recalculate_fx(
    service: ServiceDep,
    batch_id: BatchId,
    payload: FXRecalculateRequest | None = None,
) -> BatchResponse:
    payload = payload or FXRecalculateRequest()
    service.recalculate_fx(
        batch_id, payload.base_currency, payload.target_currencies, payload.provider
    )
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/fx/lock", response_model=BatchResponse, responses=CONFLICT)
def lock_fx(
    service: ServiceDep,
    batch_id: BatchId,
    payload: FXLockRequest | None = None,
) -> BatchResponse:
    payload = payload or FXLockRequest()
    service.lock_fx(batch_id, payload.snapshot_id, payload.ttl_seconds, payload.actor_id)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/fx/switch-provider", response_model=BatchResponse, responses=CONFLICT)
def switch_fx_provider(
    service: ServiceDep,
    batch_id: BatchId,
    payload: FXSwitchRequest | None = None,
) -> BatchResponse:
    payload = payload or FXSwitchRequest()
    service.switch_fx_provider(batch_id, payload.snapshot_id)
    return _response(service.get_batch(batch_id))


# ============================================================================
# Approval workflow
# ============================================================================


@router.post("/{batch_id}/submit", response_model=BatchResponse, responses=CONFLICT)
def submit_for_approval(
    service: ServiceDep, batch_id: BatchId, payload: ActorRequest
) -> BatchResponse:
    service.submit_for_approval(batch_id, payload.actor_id, payload.note)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/approve", response_model=BatchResponse, responses=CONFLICT)
def approve(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> BatchResponse:
    """Approve a batch. The approver must not be the user who submitted it."""
    service.approve(batch_id, payload.actor_id, payload.note)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/decline", response_model=BatchResponse, responses=CONFLICT)
def decline(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> BatchResponse:
    service.decline(batch_id, payload.actor_id, payload.note)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/withdraw", response_model=BatchResponse, responses=CONFLICT)
def withdraw(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> BatchResponse:
    service.withdraw(batch_id, payload.actor_id, payload.note)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/remind", response_model=RemindResponse, responses=CONFLICT)
def remind(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> RemindResponse:
    return RemindResponse(sent=service.remind(batch_id, payload.actor_id, payload.note))


# ============================================================================
# Execution and reconciliation
# ============================================================================


@router.post("/{batch_id}/execute", response_model=BatchResponse, responses=CONFLICT)
def execute(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> BatchResponse:
    """Dispatch payments. Refused if the FX lock has expired."""
    service.execute(batch_id, payload.actor_id)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/retry-failed", response_model=BatchResponse, responses=CONFLICT)
def retry_failed(service: ServiceDep, batch_id: BatchId, payload: ActorRequest) -> BatchResponse:
    service.retry_failed(batch_id, payload.actor_id)
    return _response(service.get_batch(batch_id))


@router.post("/{batch_id}/receipts", response_model=ReconciliationResponse, responses=NOT_FOUND)
def ingest_provider_receipt(
    service: ServiceDep, batch_id: BatchId, payload: ReceiptIn
) -> ReconciliationResponse:
    result = service.ingest_provider_receipt(batch_id, payload.to_domain())
    return ReconciliationResponse(**result.to_dict())


@router.post("/{batch_id}/bank-file", response_model=ReconciliationResponse, responses=NOT_FOUND)
def ingest_bank_file(
    service: ServiceDep, batch_id: BatchId, payload: BankFileRequest
) -> ReconciliationResponse:
    if payload.csv is None and payload.rows is None:
        raise ValueError("Provide either csv or rows")
    rows = payload.csv if payload.csv is not None else payload.rows
    result = service.ingest_bank_file(batch_id, rows)
    return ReconciliationResponse(**result.to_dict())
