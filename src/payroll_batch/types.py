"""Type definitions for payroll batches, payees, FX snapshots and receipts."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from payroll_batch.clock import parse_timestamp
from payroll_batch.money import FXQuote, Money, validate_currency


class BatchStatus(str, Enum):
    """Payroll batch lifecycle status."""

    DRAFT = "Draft"
    AWAITING_APPROVAL = "AwaitingApproval"
    APPROVED = "Approved"
    EXECUTING = "Executing"
    PARTIALLY_FAILED = "PartiallyFailed"
    COMPLETED = "Completed"


class PayeeStatus(str, Enum):
    """Per-payee status within a batch."""

    NOT_READY = "NotReady"
    READY = "Ready"
    AWAITING_APPROVAL = "AwaitingApproval"
    EXECUTING = "Executing"
    PAID = "Paid"
    FAILED = "Failed"


class ApprovalRole(str, Enum):
    PREPARER = "Preparer"
    APPROVER = "Approver"


class ApprovalAction(str, Enum):
    REQUESTED = "Requested"
    APPROVED = "Approved"
    DECLINED = "Declined"
    WITHDRAWN = "Withdrawn"


class EventActor(str, Enum):
    """Who caused a batch event."""

    GENIE = "Genie"
    SYSTEM = "System"
    USER = "User"


class EventLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ReceiptStatus(str, Enum):
    """Settlement status reported for a dispatched payment."""

    INITIATED = "Initiated"
    IN_TRANSIT = "InTransit"
    PAID = "Paid"
    FAILED = "Failed"

    @property
    def rank(self) -> int:
        """Merge precedence. A receipt only ever moves to a higher rank."""
        return _RECEIPT_RANK[self]


_RECEIPT_RANK = {
    ReceiptStatus.INITIATED: 0,
    ReceiptStatus.IN_TRANSIT: 1,
    ReceiptStatus.FAILED: 2,
    ReceiptStatus.PAID: 3,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# FX
# =============================================================================


@dataclass(frozen=True)
class FXSnapshot:
    """A point-in-time set of FX quotes for a batch.

    Unlocked snapshots may be replaced freely. A locked snapshot is frozen
    until ``locked_at + lock_ttl_seconds``; from that instant on it is
    expired and must not be used to execute payments.
    """

    id: str
    base_currency: str
    quotes: tuple[FXQuote, ...]
    provider: str
    created_at: datetime
    variance_bps: int | None = None
    locked_at: datetime | None = None
    lock_ttl_seconds: int | None = None

    def __post_init__(self) -> None:
        validate_currency(self.base_currency)
        if not isinstance(self.quotes, tuple):
            object.__setattr__(self, "quotes", tuple(self.quotes))
        seen: set[str] = set()
        for quote in self.quotes:
            if quote.currency in seen:
                raise ValueError(f"Duplicate FX quote for {quote.currency}")
            seen.add(quote.currency)
        if (self.locked_at is None) != (self.lock_ttl_seconds is None):
            raise ValueError("locked_at and lock_ttl_seconds must be set together")

    @property
    def is_locked(self) -> bool:
        """Whether a lock was ever placed (it may since have expired)."""
        return self.locked_at is not None

    @property
    def expires_at(self) -> datetime | None:
        if self.locked_at is None or self.lock_ttl_seconds is None:
            return None
        return self.locked_at + timedelta(seconds=self.lock_ttl_seconds)

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and expires_at <= now

    def is_lock_active(self, now: datetime) -> bool:
        return self.is_locked and not self.is_expired(now)

    def seconds_remaining(self, now: datetime) -> int | None:
        """Seconds until expiry, floored at zero. None when unlocked.

        Display only; authority stays with is_expired().
        """
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return max(0, int((expires_at - now).total_seconds()))

    @property
    def currencies(self) -> set[str]:
        return {q.currency for q in self.quotes}

    def quote_for(self, currency: str) -> FXQuote | None:
        for quote in self.quotes:
            if quote.currency == currency:
                return quote
        return None

    def rate_for(self, currency: str) -> Decimal:
        if currency == self.base_currency:
            return Decimal("1")
        quote = self.quote_for(currency)
        if quote is None:
            raise ValueError(f"No FX quote for {currency} in snapshot {self.id}")
        return quote.rate

    def convert(self, money: Money, currency: str) -> Money:
        """Convert money into ``currency``, crossing through the base currency."""
        if money.currency == currency:
            return money
        in_base = money.amount / self.rate_for(money.currency)
        return Money(in_base * self.rate_for(currency), currency).quantize()

    def locked(self, at: datetime, ttl_seconds: int) -> FXSnapshot:
        return replace(self, locked_at=at, lock_ttl_seconds=ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "base_currency": self.base_currency,
            "quotes": [q.to_dict() for q in self.quotes],
            "provider": self.provider,
            "created_at": _iso(self.created_at),
            "variance_bps": self.variance_bps,
            "locked_at": _iso(self.locked_at),
            "lock_ttl_seconds": self.lock_ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FXSnapshot:
        return cls(
            id=data["id"],
            base_currency=data["base_currency"],
            quotes=tuple(FXQuote.from_dict(q) for q in data["quotes"]),
            provider=data["provider"],
            created_at=parse_timestamp(data["created_at"]),
            variance_bps=data.get("variance_bps"),
            locked_at=parse_timestamp(data.get("locked_at")),
            lock_ttl_seconds=data.get("lock_ttl_seconds"),
        )


# =============================================================================
# Payees
# =============================================================================


@dataclass(frozen=True)
class Adjustment:
    """A labelled change to a payee's net pay (bonus, deduction, expense)."""

    amount: Money
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount.to_dict(), "label": self.label}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Adjustment:
        return cls(amount=Money.from_dict(data["amount"]), label=data["label"])


@dataclass
class PayrollPayee:
    """A worker's computed pay line within a batch."""

    worker_id: str
    name: str
    country_code: str
    currency: str
    gross: Money
    employer_costs: Money
    adjustments: list[Adjustment] = field(default_factory=list)
    proposed_fx_rate: Decimal | None = None
    fx_fee: Money | None = None
    eta: datetime | None = None
    status: PayeeStatus = PayeeStatus.NOT_READY

    # Inputs consumed by the compliance evaluator
    bank_account: str | None = None
    tax_id: str | None = None

    # Annotations recorded by the last readiness evaluation
    blocking_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def net_pay(self) -> Money:
        """Gross plus all adjustments, in the payee's currency."""
        return self.gross + Money.sum((a.amount for a in self.adjustments), self.gross.currency)

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "name": self.name,
            "country_code": self.country_code,
            "currency": self.currency,
            "gross": self.gross.to_dict(),
            "employer_costs": self.employer_costs.to_dict(),
            "adjustments": [a.to_dict() for a in self.adjustments],
            "proposed_fx_rate": str(self.proposed_fx_rate) if self.proposed_fx_rate else None,
            "fx_fee": self.fx_fee.to_dict() if self.fx_fee else None,
            "eta": _iso(self.eta),
            "status": self.status.value,
            "bank_account": self.bank_account,
            "tax_id": self.tax_id,
            "blocking_issues": list(self.blocking_issues),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayrollPayee:
        rate = data.get("proposed_fx_rate")
        fee = data.get("fx_fee")
        return cls(
            worker_id=data["worker_id"],
            name=data["name"],
            country_code=data["country_code"],
            currency=data["currency"],
            gross=Money.from_dict(data["gross"]),
            employer_costs=Money.from_dict(data["employer_costs"]),
            adjustments=[Adjustment.from_dict(a) for a in data.get("adjustments", [])],
            proposed_fx_rate=Decimal(rate) if rate else None,
            fx_fee=Money.from_dict(fee) if fee else None,
            eta=parse_timestamp(data.get("eta")),
            status=PayeeStatus(data.get("status", PayeeStatus.NOT_READY.value)),
            bank_account=data.get("bank_account"),
            tax_id=data.get("tax_id"),
            blocking_issues=list(data.get("blocking_issues", [])),
            warnings=list(data.get("warnings", [])),
        )


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ApprovalEvent:
    """One step of the approval conversation on a batch."""

    role: ApprovalRole
    action: ApprovalAction
    at: datetime
    actor_id: str
    note: str | None = None
    seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "action": self.action.value,
            "at": _iso(self.at),
            "actor_id": self.actor_id,
            "note": self.note,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalEvent:
        return cls(
            role=ApprovalRole(data["role"]),
            action=ApprovalAction(data["action"]),
            at=parse_timestamp(data["at"]),
            actor_id=data["actor_id"],
            note=data.get("note"),
            seq=data.get("seq", 0),
        )


@dataclass(frozen=True)
class BatchEvent:
    """An entry in a batch's append-only event list."""

    at: datetime
    actor: EventActor
    message: str
    level: EventLevel = EventLevel.INFO
    seq: int = 0
    code: str | None = None
    actor_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": _iso(self.at),
            "actor": self.actor.value,
            "message": self.message,
            "level": self.level.value,
            "seq": self.seq,
            "code": self.code,
            "actor_id": self.actor_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchEvent:
        return cls(
            at=parse_timestamp(data["at"]),
            actor=EventActor(data["actor"]),
            message=data["message"],
            level=EventLevel(data.get("level", EventLevel.INFO.value)),
            seq=data.get("seq", 0),
            code=data.get("code"),
            actor_id=data.get("actor_id"),
        )


# =============================================================================
# Receipts
# =============================================================================


@dataclass(frozen=True)
class PaymentReceipt:
    """Settlement record for a payee's payment in a batch.

    ``attempt`` counts dispatches for the payee; ``previous_refs`` holds the
    provider references of superseded attempts so late receipts for them
    can be recognised as stale.
    """

    payee_id: str
    amount: Money
    status: ReceiptStatus
    provider_ref: str | None = None
    paid_at: datetime | None = None
    attempt: int = 1
    previous_refs: tuple[str, ...] = ()
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payee_id": self.payee_id,
            "amount": self.amount.to_dict(),
            "status": self.status.value,
            "provider_ref": self.provider_ref,
            "paid_at": _iso(self.paid_at),
            "attempt": self.attempt,
            "previous_refs": list(self.previous_refs),
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentReceipt:
        return cls(
            payee_id=data["payee_id"],
            amount=Money.from_dict(data["amount"]),
            status=ReceiptStatus(data["status"]),
            provider_ref=data.get("provider_ref"),
            paid_at=parse_timestamp(data.get("paid_at")),
            attempt=data.get("attempt", 1),
            previous_refs=tuple(data.get("previous_refs", ())),
            failure_reason=data.get("failure_reason"),
        )


# =============================================================================
# Batch
# =============================================================================


@dataclass
class PayrollBatch:
    """A payroll run covering one or more payees for one pay period.

    ``status``, ``approvals`` and ``receipts`` are written only by the state
    machine, the approval workflow and the reconciliation engine.
    """

    id: str
    pay_period: str
    status: BatchStatus = BatchStatus.DRAFT
    payees: list[PayrollPayee] = field(default_factory=list)
    fx_snapshot: FXSnapshot | None = None
    approvals: list[ApprovalEvent] = field(default_factory=list)
    events: list[BatchEvent] = field(default_factory=list)
    receipts: list[PaymentReceipt] = field(default_factory=list)
    orphan_receipts: list[PaymentReceipt] = field(default_factory=list)
    created_by: str | None = None
    created_at: datetime | None = None
    next_seq: int = 1
    # Stored version this copy was read at; 0 until first saved. Not part of the document.
    version: int = field(default=0, compare=False, repr=False)

    def payee(self, worker_id: str) -> PayrollPayee | None:
        for payee in self.payees:
            if payee.worker_id == worker_id:
                return payee
        return None

    def receipt_for(self, payee_id: str) -> PaymentReceipt | None:
        for receipt in self.receipts:
            if receipt.payee_id == payee_id:
                return receipt
        return None

    def _take_seq(self) -> int:
        seq = self.next_seq
        self.next_seq += 1
        return seq

    def append_event(
        self,
        at: datetime,
        message: str,
        *,
        level: EventLevel = EventLevel.INFO,
        actor: EventActor = EventActor.SYSTEM,
        code: str | None = None,
        actor_id: str | None = None,
    ) -> BatchEvent:
        event = BatchEvent(
            at=at,
            actor=actor,
            message=message,
            level=level,
            seq=self._take_seq(),
            code=code,
            actor_id=actor_id,
        )
        self.events.append(event)
        return event

    def append_approval(
        self,
        at: datetime,
        role: ApprovalRole,
        action: ApprovalAction,
        actor_id: str,
        note: str | None = None,
    ) -> ApprovalEvent:
        approval = ApprovalEvent(
            role=role,
            action=action,
            at=at,
            actor_id=actor_id,
            note=note,
            seq=self._take_seq(),
        )
        self.approvals.append(approval)
        return approval

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pay_period": self.pay_period,
            "status": self.status.value,
            "payees": [p.to_dict() for p in self.payees],
            "fx_snapshot": self.fx_snapshot.to_dict() if self.fx_snapshot else None,
            "approvals": [a.to_dict() for a in self.approvals],
            "events": [e.to_dict() for e in self.events],
            "receipts": [r.to_dict() for r in self.receipts],
            "orphan_receipts": [r.to_dict() for r in self.orphan_receipts],
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "next_seq": self.next_seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayrollBatch:
        snapshot = data.get("fx_snapshot")
        return cls(
            id=data["id"],
            pay_period=data["pay_period"],
            status=BatchStatus(data["status"]),
            payees=[PayrollPayee.from_dict(p) for p in data.get("payees", [])],
            fx_snapshot=FXSnapshot.from_dict(snapshot) if snapshot else None,
            approvals=[ApprovalEvent.from_dict(a) for a in data.get("approvals", [])],
            events=[BatchEvent.from_dict(e) for e in data.get("events", [])],
            receipts=[PaymentReceipt.from_dict(r) for r in data.get("receipts", [])],
            orphan_receipts=[
                PaymentReceipt.from_dict(r) for r in data.get("orphan_receipts", [])
            ],
            created_by=data.get("created_by"),
            created_at=parse_timestamp(data.get("created_at")),
            next_seq=data.get("next_seq", 1),
        )
