"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from statement_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from statement_gateway.api.v1 import bill_payments, credit_card, imports
from statement_gateway.infrastructure.database.session import create_tables
from statement_gateway.infrastructure.observability.logging import setup_logging
from statement_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Statement Gateway",
        description="Credit card statement import and bill payment reconciliation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    if settings.create_tables_on_startup:
        create_tables()

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        # Sessions are closed by get_db, which discards any uncommitted work
        logging.error("Unhandled error", exc_info=exc, extra={"request_id": getattr(request.state, "request_id", None)})
        return JSONResponse(status_code=500, content={"detail": {"code": "internal_error", "message": "Internal server error"}})

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(imports.router, prefix="/v1", tags=["imports"])
    app.include_router(bill_payments.router, prefix="/v1", tags=["bill-payments"])
    app.include_router(credit_card.router, prefix="/v1", tags=["credit-card"])

    return app


app = create_app()
