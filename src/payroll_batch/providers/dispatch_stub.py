"""Stub payment dispatcher for local development and testing.

Replace with a real bank file builder or payment provider adapter.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from payroll_batch.errors import DispatchError
from payroll_batch.money import Money
from payroll_batch.providers.base import DispatchResult
from payroll_batch.types import PaymentReceipt, ReceiptStatus


class StubPaymentDispatcher:
    """Stub dispatcher that records submissions in memory.

    In production, this would:
    - Build and upload a bank file, or call a payment provider API
    - Return the provider's reference for each payment
    - Deliver settlement results later through a webhook or statement sync
    """

    provider_name = "dispatch_stub"

    def __init__(self, refuse: set[str] | None = None):
        """Initialize stub dispatcher.

        Args:
            refuse: Payee ids for which dispatch raises DispatchError.
        """
        self.refuse = set(refuse or ())
        self._submitted: dict[str, dict[str, Any]] = {}

    def dispatch(
        self,
        batch_id: str,
        payee_id: str,
        amount: Decimal,
        currency: str,
    ) -> DispatchResult:
        """Accept a payment (stub implementation)."""
        if payee_id in self.refuse:
            raise DispatchError(payee_id, "rejected by stub dispatcher")

        provider_ref = f"STUB-{uuid.uuid4().hex[:12].upper()}"
        self._submitted[provider_ref] = {
            "batch_id": batch_id,
            "payee_id": payee_id,
            "amount": amount,
            "currency": currency,
            "submitted_at": datetime.datetime.now(datetime.timezone.utc),
        }
        return DispatchResult(provider_ref=provider_ref, message="accepted")

    @property
    def submissions(self) -> list[dict[str, Any]]:
        """Submitted payments in dispatch order."""
        return [dict(v, provider_ref=k) for k, v in self._submitted.items()]

    def settle(
        self,
        provider_ref: str,
        status: ReceiptStatus = ReceiptStatus.PAID,
        paid_at: datetime.datetime | None = None,
        failure_reason: str | None = None,
    ) -> PaymentReceipt:
        """Produce the receipt the rail would eventually report."""
        submitted = self._submitted[provider_ref]
        if status == ReceiptStatus.PAID and paid_at is None:
            paid_at = datetime.datetime.now(datetime.timezone.utc)
        return PaymentReceipt(
            payee_id=submitted["payee_id"],
            provider_ref=provider_ref,
            amount=Money(submitted["amount"], submitted["currency"]),
            status=status,
            paid_at=paid_at if status == ReceiptStatus.PAID else None,
            failure_reason=failure_reason,
        )

    def ref_for(self, payee_id: str) -> str:
        """Latest provider reference issued for a payee."""
        refs = [k for k, v in self._submitted.items() if v["payee_id"] == payee_id]
        if not refs:
            raise KeyError(payee_id)
        return refs[-1]
