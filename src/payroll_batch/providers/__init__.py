"""External collaborator contracts and development stubs."""

from payroll_batch.providers.base import (
    ComplianceEvaluator,
    ComplianceResult,
    DispatchResult,
    FXRateProvider,
    MaxAttemptsRetryPolicy,
    NotificationSender,
    PaymentDispatcher,
    RetryPolicy,
    UnlimitedRetryPolicy,
)
from payroll_batch.providers.compliance_stub import RequiredFieldsEvaluator
from payroll_batch.providers.dispatch_stub import StubPaymentDispatcher
from payroll_batch.providers.fx_stub import StaticRateProvider
from payroll_batch.providers.notifications import LoggingNotificationSender

__all__ = [
    "ComplianceEvaluator",
    "ComplianceResult",
    "DispatchResult",
    "FXRateProvider",
    "MaxAttemptsRetryPolicy",
    "NotificationSender",
    "PaymentDispatcher",
    "RetryPolicy",
    "UnlimitedRetryPolicy",
    "RequiredFieldsEvaluator",
    "StubPaymentDispatcher",
    "StaticRateProvider",
    "LoggingNotificationSender",
]
