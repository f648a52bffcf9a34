"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_batch import __version__
from payroll_batch.api.dependencies import build_service
from payroll_batch.api.routes import batches_router, health_router
from payroll_batch.config import get_settings
from payroll_batch.errors import (
    BatchNotFoundError,
    BatchOperationError,
    PayrollBatchError,
    ProviderUnavailableError,
    UnknownPayeeError,
)
from payroll_batch.services.batch_service import BatchService

logger = logging.getLogger(__name__)


def error_status(exc: Exception) -> int:
    """HTTP status for a core error."""
    if isinstance(exc, (BatchNotFoundError, UnknownPayeeError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ProviderUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, BatchOperationError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_422_UNPROCESSABLE_ENTITY


def create_app(service: BatchService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Without an explicit service, one is built from Settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service(get_settings())
        logger.info("Payroll batch API started")
        yield

    app = FastAPI(
        title="Payroll Batch API",
        description="FX-locked, dual-approved, reconciled payroll batches",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollBatchError)
    async def batch_error_handler(request: Request, exc: PayrollBatchError) -> JSONResponse:
        """Map core errors to status codes, keeping their code."""
        return JSONResponse(
            status_code=error_status(exc),
            content={"detail": str(exc), "code": exc.code},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "code": "InvalidValue"},
        )

    @app.exception_handler(IndexError)
    async def index_error_handler(request: Request, exc: IndexError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "code": "InvalidIndex"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(batches_router, prefix="/api/v1")

    return app
