"""FastAPI application with lifespan, error mapping and router mounting."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hourbank.api.routes import admin, escrow, health
from hourbank.core.config import AppSettings
from hourbank.core.exceptions import (
    HourbankError,
    InsufficientFundsError,
    InvalidRequestError,
    InvalidTransitionError,
    RecordNotFoundError,
    StoreUnavailableError,
    UnauthorizedError,
)
from hourbank.core.log import configure_logging
from hourbank.escrow.disputes import DisputeResolver
from hourbank.escrow.ledger import EscrowLedger
from hourbank.escrow.scheduler import AutoReleaseScheduler
from hourbank.persistence import create_persistence

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[HourbankError], int] = {
    InvalidRequestError: 422,
    InsufficientFundsError: 402,
    RecordNotFoundError: 404,
    InvalidTransitionError: 409,
    UnauthorizedError: 403,
    StoreUnavailableError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and tear down application resources."""
    settings: AppSettings = app.state.settings
    configure_logging(settings.log_level)

    store, notifications = create_persistence(settings)
    ledger = EscrowLedger(store, notifications, config=settings.escrow)
    app.state.store = store
    app.state.notifications = notifications
    app.state.ledger = ledger
    app.state.resolver = DisputeResolver(ledger, notifications)
    app.state.scheduler = AutoReleaseScheduler(ledger, config=settings.scheduler)

    stop = asyncio.Event()
    task = None
    if settings.scheduler.enabled:
        task = asyncio.create_task(app.state.scheduler.run(stop))
    logger.info("hourbank escrow started (env=%s, store=%s)",
                settings.environment, settings.store.backend)
    yield
    stop.set()
    if task is not None:
        with suppress(asyncio.CancelledError):
            await task


async def handle_hourbank_error(request: Request, exc: HourbankError) -> JSONResponse:
    status_code = 500
    for exc_type, code in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            status_code = code
            break
    headers = {"Retry-After": "5"} if isinstance(exc, StoreUnavailableError) else None
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": str(exc)},
        headers=headers,
    )


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Hourbank Escrow Engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or AppSettings()
    app.add_exception_handler(HourbankError, handle_hourbank_error)
    app.include_router(health.router)
    app.include_router(escrow.router)
    app.include_router(admin.router, prefix="/admin")
    return app
