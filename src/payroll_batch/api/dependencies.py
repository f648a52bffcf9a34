"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from payroll_batch.config import Settings
from payroll_batch.database import create_session_factory, init_db, make_engine
from payroll_batch.providers import (
    LoggingNotificationSender,
    RequiredFieldsEvaluator,
    StaticRateProvider,
    StubPaymentDispatcher,
)
from payroll_batch.repository import SqlBatchRepository
from payroll_batch.services.batch_service import BatchService


def build_service(settings: Settings) -> BatchService:
    """Wire a BatchService against the configured database and the development stubs."""
    engine = make_engine(settings.database_url)
    init_db(engine)
    config = settings.core_config()
    return BatchService(
        SqlBatchRepository(create_session_factory(engine)),
        fx_providers=[StaticRateProvider(name) for name in config.fx.providers],
        dispatcher=StubPaymentDispatcher(),
        compliance=RequiredFieldsEvaluator(),
        notifier=LoggingNotificationSender(),
        config=config,
    )


def get_service(request: Request) -> BatchService:
    """Get the application's batch service."""
    return request.app.state.service


# Type alias for cleaner dependency injection
ServiceDep = Annotated[BatchService, Depends(get_service)]
