"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from tanda_ledger.api.middleware import MetricsMiddleware, RequestIDMiddleware
from tanda_ledger.api.v1 import payouts, pools, round_payments
from tanda_ledger.config import settings
from tanda_ledger.domain.exceptions import (
    ConflictError,
    DomainException,
    InvalidPaymentDataError,
    InvalidPoolConfigError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ReminderCooldownError,
)
from tanda_ledger.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS = (
    (ReminderCooldownError, 429, "reminder_cooldown"),
    (NotFoundError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (InvalidTransitionError, 409, "invalid_transition"),
    (InvalidStateError, 409, "invalid_state"),
    (InvalidPoolConfigError, 422, "invalid_pool_config"),
    (InvalidPaymentDataError, 422, "invalid_payment_data"),
)


def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code, code = 400, "domain_error"
    for exc_type, mapped_status, mapped_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, code = mapped_status, mapped_code
            break

    headers = None
    if isinstance(exc, ReminderCooldownError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    logger.warning(
        "Request rejected",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "error": code,
            "detail": str(exc),
        },
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": code}, headers=headers)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Tanda Ledger",
        description="Rotating savings pool ledger: round collection, payout eligibility and rotation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(pools.router, prefix="/v1", tags=["pools"])
    app.include_router(round_payments.router, prefix="/v1", tags=["round-payments"])
    app.include_router(payouts.router, prefix="/v1", tags=["payouts"])

    return app


app = create_app()
