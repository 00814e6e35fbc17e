"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from starlette.responses import Response

from change_gateway.api.dependencies import get_request_id
from change_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from change_gateway.api.v1 import change_requests, history, webhooks
from change_gateway.domain.exceptions import (
    ActiveRequestExists,
    AmountOutOfRange,
    DomainException,
    ExpiredRequest,
    GatewayError,
    InvalidChangeRequest,
    InvalidStateTransition,
    NotFound,
    RateError,
)
from change_gateway.infrastructure.clients.checkout import CheckoutClient
from change_gateway.infrastructure.clients.notifications import NotificationClient
from change_gateway.infrastructure.clients.orders import OrderStoreClient
from change_gateway.infrastructure.clients.rating import RatingClient
from change_gateway.infrastructure.observability.logging import setup_logging
from change_gateway.services.controller import ChangeRequestController
from change_gateway.services.workers import ExpirationSweeper, PaymentPoller
from change_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)

# Most specific class wins; lookup walks the exception's MRO
STATUS_BY_EXCEPTION = {
    NotFound: 404,
    ActiveRequestExists: 409,
    ExpiredRequest: 410,
    InvalidStateTransition: 409,
    InvalidChangeRequest: 422,
    AmountOutOfRange: 422,
    RateError: 502,
    GatewayError: 503,
    DomainException: 500,
}


def status_for(exc: DomainException) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_EXCEPTION:
            return STATUS_BY_EXCEPTION[cls]
    return 500


def build_controller(db: Session) -> ChangeRequestController:
    """Controller wired to the configured collaborators, used by the workers"""
    return ChangeRequestController(
        db,
        CheckoutClient(),
        NotificationClient(),
        OrderStoreClient(),
        RatingClient(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    workers = []
    if settings.workers_enabled:
        workers = [
            PaymentPoller(build_controller, settings.poll_interval_seconds, batch_size=settings.worker_batch_size),
            ExpirationSweeper(build_controller, settings.sweep_interval_seconds, batch_size=settings.worker_batch_size),
        ]
        for worker in workers:
            await worker.start()
    try:
        yield
    finally:
        for worker in workers:
            await worker.stop()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Change Gateway",
        description="Paid address and package changes for unshipped orders",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        status_code = status_for(exc)
        log = logging.error if status_code >= 500 else logging.warning
        log(
            f"{exc.code}: {exc}",
            extra={"request_id": get_request_id(request), "path": request.url.path},
        )
        return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": str(exc)})

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(change_requests.router, prefix="/v1", tags=["change-requests"])
    app.include_router(history.router, prefix="/v1", tags=["history"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
