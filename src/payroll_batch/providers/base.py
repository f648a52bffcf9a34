"""Base protocols and types for the core's external collaborators.

The core never talks to a network itself. FX rates, compliance rules,
payment rails and notification channels are reached through these
protocols; their results are fed synchronously into the state functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, Sequence

if TYPE_CHECKING:
    from payroll_batch.money import FXQuote
    from payroll_batch.types import PaymentReceipt, PayrollPayee


@dataclass(frozen=True)
class ComplianceResult:
    """Outcome of evaluating a payee against its country's rules."""

    ready: bool
    blocking_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DispatchResult:
    """Result of handing a payment to a payment rail."""

    provider_ref: str
    message: str = ""


class FXRateProvider(Protocol):
    """Protocol for FX rate sources.

    Implementations raise ProviderUnavailableError when the upstream source
    cannot be reached. Connection and timeout errors are translated to
    ProviderUnavailableError by the snapshot manager.
    """

    provider_name: str

    def get_rates(self, base_currency: str, targets: Sequence[str]) -> list[FXQuote]:
        """Return one quote per target currency, quoted against the base."""
        ...


class ComplianceEvaluator(Protocol):
    """Protocol for the country compliance-rules evaluator."""

    def evaluate(self, payee: PayrollPayee) -> ComplianceResult:
        """Evaluate whether the payee has everything its country requires."""
        ...


class PaymentDispatcher(Protocol):
    """Protocol for payment rail adapters.

    ``dispatch`` returns a provider reference synchronously or raises
    DispatchError. The settlement outcome arrives later as a PaymentReceipt
    through the reconciliation ingestion entrypoints.
    """

    provider_name: str

    def dispatch(
        self,
        batch_id: str,
        payee_id: str,
        amount: Decimal,
        currency: str,
    ) -> DispatchResult:
        """Submit a payment for execution."""
        ...


class NotificationSender(Protocol):
    """Protocol for fire-and-forget notifications (Slack, email)."""

    def send(self, batch_id: str, subject: str, body: str) -> None:
        """Send a notification. May raise; callers treat failures as warnings."""
        ...


class RetryPolicy(Protocol):
    """Decides whether a failed payment may be re-dispatched."""

    def allow_retry(self, receipt: PaymentReceipt) -> bool:
        ...


class UnlimitedRetryPolicy:
    """Allow every retry."""

    def allow_retry(self, receipt: PaymentReceipt) -> bool:
        return True


class MaxAttemptsRetryPolicy:
    """Allow retries until a payee has been dispatched ``max_attempts`` times."""

    def __init__(self, max_attempts: int):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def allow_retry(self, receipt: PaymentReceipt) -> bool:
        return receipt.attempt < self.max_attempts
