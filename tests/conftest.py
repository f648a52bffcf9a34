"""Pytest fixtures for payroll batch tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

import pytest

from payroll_batch.config import CoreConfig
from payroll_batch.money import FXQuote, Money
from payroll_batch.providers import (
    LoggingNotificationSender,
    RequiredFieldsEvaluator,
    StaticRateProvider,
    StubPaymentDispatcher,
)
from payroll_batch.repository import InMemoryBatchRepository
from payroll_batch.services.batch_service import BatchService
from payroll_batch.types import Adjustment, FXSnapshot, PayrollBatch, PayrollPayee

PREPARER = "maria@acme.test"
APPROVER = "dev@acme.test"

START = datetime(2024, 6, 28, 9, 0, tzinfo=timezone.utc)

ALTERNATE_RATES = {
    "EUR": Decimal("0.93"),
    "GBP": Decimal("0.80"),
    "PHP": Decimal("56.40"),
    "INR": Decimal("83.50"),
    "NOK": Decimal("10.80"),
    "SEK": Decimal("10.50"),
    "MXN": Decimal("17.10"),
}


class FakeClock:
    """Controllable clock. Time only moves when a test advances it."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current


def build_payee(
    worker_id: str = "w-us-1",
    name: str = "Ana Reyes",
    country_code: str = "US",
    currency: str = "USD",
    gross: str = "5000.00",
    employer_costs: str = "400.00",
    bank_account: str | None = "acct-001",
    tax_id: str | None = "tax-001",
    adjustments: tuple[tuple[str, str], ...] = (),
) -> PayrollPayee:
    return PayrollPayee(
        worker_id=worker_id,
        name=name,
        country_code=country_code,
        currency=currency,
        gross=Money(Decimal(gross), currency),
        employer_costs=Money(Decimal(employer_costs), currency),
        adjustments=[Adjustment(Money(Decimal(a), currency), label) for a, label in adjustments],
        bank_account=bank_account,
        tax_id=tax_id,
    )


def norwegian_payee(**overrides) -> PayrollPayee:
    values = dict(
        worker_id="w-no-1",
        name="Ola Nordmann",
        country_code="NO",
        currency="NOK",
        gross="52000.00",
        employer_costs="7300.00",
        bank_account="NO93-8601-1117-947",
        tax_id=None,
    )
    values.update(overrides)
    return build_payee(**values)


def nok_snapshot(locked: bool = True) -> FXSnapshot:
    """USD-based snapshot quoting NOK, locked at START for 900s unless told otherwise."""
    snap = FXSnapshot(
        id="fx-1",
        base_currency="USD",
        quotes=(FXQuote("NOK", Decimal("10.70")),),
        provider="primary",
        created_at=START,
    )
    return snap.locked(START, 900) if locked else snap


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_payee() -> Callable[..., PayrollPayee]:
    """Factory for payees; defaults to a ready US payee."""
    return build_payee


@pytest.fixture
def make_norwegian_payee() -> Callable[..., PayrollPayee]:
    return norwegian_payee


@pytest.fixture
def batch(clock: FakeClock) -> PayrollBatch:
    """A bare Draft batch for component-level tests."""
    return PayrollBatch(id="batch-test", pay_period="2024-06", created_by=PREPARER, created_at=clock())


@pytest.fixture
def primary_provider() -> StaticRateProvider:
    return StaticRateProvider("primary")


@pytest.fixture
def alternate_provider() -> StaticRateProvider:
    return StaticRateProvider("alternate", rates=ALTERNATE_RATES)


@pytest.fixture
def dispatcher() -> StubPaymentDispatcher:
    return StubPaymentDispatcher()


@pytest.fixture
def notifier() -> LoggingNotificationSender:
    return LoggingNotificationSender()


@pytest.fixture
def repository() -> InMemoryBatchRepository:
    return InMemoryBatchRepository()


@pytest.fixture
def service(
    repository: InMemoryBatchRepository,
    clock: FakeClock,
    primary_provider: StaticRateProvider,
    alternate_provider: StaticRateProvider,
    dispatcher: StubPaymentDispatcher,
    notifier: LoggingNotificationSender,
) -> BatchService:
    return BatchService(
        repository,
        fx_providers=[primary_provider, alternate_provider],
        dispatcher=dispatcher,
        compliance=RequiredFieldsEvaluator(),
        notifier=notifier,
        config=CoreConfig(),
        clock=clock,
    )


@pytest.fixture
def ready_batch(service: BatchService) -> str:
    """Draft batch with two ready payees (USD, NOK) and a freshly locked FX snapshot.

    The lock is placed at START with the default 900s TTL.
    """
    batch = service.create_batch("2024-06", created_by=PREPARER, batch_id="batch-2024-06")
    service.add_payee(batch.id, build_payee(), actor_id=PREPARER)
    service.add_payee(batch.id, norwegian_payee(), actor_id=PREPARER)
    service.recalculate_fx(batch.id)
    service.lock_fx(batch.id, actor_id=PREPARER)
    return batch.id


@pytest.fixture
def submitted_batch(service: BatchService, ready_batch: str) -> str:
    service.submit_for_approval(ready_batch, PREPARER)
    return ready_batch


@pytest.fixture
def approved_batch(service: BatchService, submitted_batch: str) -> str:
    service.approve(submitted_batch, APPROVER)
    return submitted_batch


@pytest.fixture
def executing_batch(service: BatchService, approved_batch: str) -> str:
    service.execute(approved_batch, APPROVER)
    return approved_batch
