"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from pos_settlement.api.middleware import RequestIDMiddleware, MetricsMiddleware
from pos_settlement.api.v1 import checkout, gift_cards, inventory, loyalty, transactions
from pos_settlement.infrastructure.observability.logging import setup_logging
from pos_settlement.settlement.inventory_guard import BarcodeLookupCache
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="POS Settlement Engine",
        description="Checkout totals, tender settlement, and gift card and loyalty ledgers",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # State owned by this app instance, shared across requests
    app.state.pending_store = PendingTransactionStore(settings.pending_transaction_ttl_seconds)
    app.state.barcode_cache = BarcodeLookupCache()

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
    app.include_router(checkout.router, prefix="/v1", tags=["checkout"])
    app.include_router(gift_cards.router, prefix="/v1", tags=["gift-cards"])
    app.include_router(loyalty.router, prefix="/v1", tags=["loyalty"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(inventory.router, prefix="/v1", tags=["inventory"])

    return app


app = create_app()
