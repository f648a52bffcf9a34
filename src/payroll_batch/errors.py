"""Error taxonomy for the payroll batch core.

Two families:
- Value errors (CurrencyMismatchError, NegativeRateError) come from the money
  and FX value types. They go straight back to the caller and are never
  written to a batch's event list.
- Operation errors (BatchOperationError subclasses) are attempts against
  shared batch state. The service facade records each one on the batch as a
  BatchEvent at ``audit_level`` before re-raising it.
"""

from __future__ import annotations

from datetime import timedelta


class PayrollBatchError(Exception):
    """Base class for all payroll batch errors."""

    code = "PayrollBatchError"


# =============================================================================
# Value errors
# =============================================================================


class CurrencyMismatchError(PayrollBatchError, ValueError):
    """Raised when Money values in different currencies are combined."""

    code = "CurrencyMismatch"

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


class NegativeRateError(PayrollBatchError, ValueError):
    """Raised when an FX quote carries a non-positive rate or negative fee."""

    code = "NegativeRate"

    def __init__(self, currency: str, rate: object, fee: object | None = None):
        self.currency = currency
        self.rate = rate
        self.fee = fee
        if fee is not None:
            msg = f"FX fee for {currency} must be >= 0, got {fee}"
        else:
            msg = f"FX rate for {currency} must be > 0, got {rate}"
        super().__init__(msg)


# =============================================================================
# Operation errors
# =============================================================================


class BatchOperationError(PayrollBatchError):
    """An operation against a batch that was refused.

    ``audit_level`` is the BatchEvent level used when the failure is recorded.
    """

    audit_level = "error"


class BatchNotFoundError(BatchOperationError):
    """Raised when a batch id does not exist in the repository."""

    code = "BatchNotFound"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch '{batch_id}' not found")


class ConcurrentModificationError(BatchOperationError):
    """Raised when a batch was saved by someone else since this copy was read."""

    code = "ConcurrentModification"

    def __init__(self, batch_id: str, expected: int, actual: int | None):
        self.batch_id = batch_id
        self.expected = expected
        self.actual = actual
        stored = "missing" if actual is None else f"at version {actual}"
        super().__init__(
            f"Batch '{batch_id}' changed concurrently: read at version {expected}, stored {stored}"
        )


class ProviderUnavailableError(BatchOperationError):
    """The FX rate provider could not be reached. Retryable by the caller."""

    code = "ProviderUnavailable"
    audit_level = "warn"

    def __init__(self, provider: str, reason: str | None = None):
        self.provider = provider
        self.reason = reason
        msg = f"FX provider '{provider}' is unavailable"
        if reason:
            msg += f": {reason}"
        msg += ". Retry or keep the previous snapshot"
        super().__init__(msg)


class AlreadyLockedError(BatchOperationError):
    """Raised when locking a snapshot that is already locked."""

    code = "AlreadyLocked"

    def __init__(self, snapshot_id: str):
        self.snapshot_id = snapshot_id
        super().__init__(f"FX snapshot '{snapshot_id}' is already locked")


class StaleSnapshotError(BatchOperationError):
    """Raised when operating on a snapshot superseded by a newer one."""

    code = "StaleSnapshot"

    def __init__(self, snapshot_id: str, current_id: str | None):
        self.snapshot_id = snapshot_id
        self.current_id = current_id
        if current_id:
            msg = (
                f"FX snapshot '{snapshot_id}' has been superseded by "
                f"'{current_id}'. Lock the current snapshot instead"
            )
        else:
            msg = f"FX snapshot '{snapshot_id}' is not the batch's current snapshot"
        super().__init__(msg)


class LockedSnapshotImmutableError(BatchOperationError):
    """Raised when replacing a snapshot whose lock is still active."""

    code = "LockedSnapshotImmutable"

    def __init__(self, snapshot_id: str, remaining_seconds: int):
        self.snapshot_id = snapshot_id
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"FX snapshot '{snapshot_id}' is locked for another "
            f"{remaining_seconds}s and cannot be recalculated or switched"
        )


class BatchNotEditableError(BatchOperationError):
    """Raised when mutating payees or FX of a batch in a non-editable status."""

    code = "BatchNotEditable"

    def __init__(self, batch_id: str, status: str, operation: str):
        self.batch_id = batch_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: batch '{batch_id}' is {status}"
        )


class UnknownPayeeError(BatchOperationError):
    """Raised when a worker id is not part of the batch."""

    code = "UnknownPayee"

    def __init__(self, batch_id: str, worker_id: str):
        self.batch_id = batch_id
        self.worker_id = worker_id
        super().__init__(f"Worker '{worker_id}' is not in batch '{batch_id}'")


class DuplicatePayeeError(BatchOperationError):
    """Raised when adding a worker that is already in the batch."""

    code = "DuplicatePayee"

    def __init__(self, batch_id: str, worker_id: str):
        self.batch_id = batch_id
        self.worker_id = worker_id
        super().__init__(f"Worker '{worker_id}' is already in batch '{batch_id}'")


class InvalidTransitionError(BatchOperationError):
    """Raised when a lifecycle event is not allowed from the current status."""

    code = "InvalidTransition"

    def __init__(self, from_status: str, event: str, reason: str | None = None):
        self.from_status = from_status
        self.event = event
        self.reason = reason
        msg = f"Invalid transition '{event}' from '{from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SelfApprovalForbiddenError(BatchOperationError):
    """Raised when the preparer tries to approve or decline their own batch."""

    code = "SelfApprovalForbidden"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"'{actor_id}' submitted this batch and cannot {action} it. "
            "A different approver is required"
        )


class LockExpiredAtExecutionError(BatchOperationError):
    """Raised when execute is called after the FX lock has expired."""

    code = "LockExpiredAtExecution"

    def __init__(self, snapshot_id: str, expired_for: timedelta):
        self.snapshot_id = snapshot_id
        self.expired_for = expired_for
        super().__init__(
            f"FX lock expired {describe_duration(expired_for)} ago. "
            "Please re-lock before executing"
        )


class DispatchError(BatchOperationError):
    """Raised by a payment dispatcher that refused a payment."""

    code = "DispatchFailed"

    def __init__(self, payee_id: str, reason: str):
        self.payee_id = payee_id
        self.reason = reason
        super().__init__(f"Dispatch to '{payee_id}' failed: {reason}")


def describe_duration(delta: timedelta) -> str:
    """Render a timedelta the way it is shown to operators."""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes // 60
    return f"{hours} hour{'s' if hours != 1 else ''}"
