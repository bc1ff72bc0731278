"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.inventory_guard import BarcodeLookupCache
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.settlement.router import PaymentRouter


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_payment_gateway_client() -> PaymentGatewayClient:
    """Provide hosted-card gateway client instance"""
    return PaymentGatewayClient()


def get_terminal_client() -> TerminalClient:
    """Provide card-present terminal client instance"""
    return TerminalClient()


def get_pending_store(request: Request) -> PendingTransactionStore:
    """Pending card transactions live as long as the application"""
    return request.app.state.pending_store


def get_barcode_cache(request: Request) -> BarcodeLookupCache:
    return request.app.state.barcode_cache


def get_payment_router(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway_client),
    terminal: TerminalClient = Depends(get_terminal_client),
    pending_store: PendingTransactionStore = Depends(get_pending_store),
    barcode_cache: BarcodeLookupCache = Depends(get_barcode_cache),
) -> PaymentRouter:
    """Provide a payment router bound to this request's session"""
    return PaymentRouter(
        db,
        gateway,
        terminal,
        pending_store,
        barcode_cache=barcode_cache,
        request_id=get_request_id(request),
    )
