"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from loan_risk_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from loan_risk_gateway.api.v1 import quotes, loans
from loan_risk_gateway.infrastructure.observability.logging import setup_logging
from loan_risk_gateway.config import get_engine_config, settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    # Fail at startup, not on the first request, if the engine config is invalid
    get_engine_config()

    app = FastAPI(
        title="Loan Risk Gateway",
        description="Rate quoting, collateral health and repayment tracking for collateralized loans",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(quotes.router, prefix="/v1", tags=["quotes"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])

    return app


app = create_app()
