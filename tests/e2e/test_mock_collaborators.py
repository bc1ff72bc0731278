"""
E2E tests running the real gateway and terminal clients against the mock
payment server in-process, the same server `mock/payment_server` serves for
local register runs.
"""

import httpx
import pytest
from decimal import Decimal
from sqlalchemy.orm import Session
from mock.payment_server import main as mock_server
from pos_settlement.domain.exceptions import GatewayError
from pos_settlement.domain.models import CheckoutRequest, PaymentMethod, Shift
from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient
from pos_settlement.infrastructure.database.models import CardPayment, TransactionRow
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.settlement.router import PaymentRouter
from conftest import service_line

MOCK_URL = "http://mock-payments"


@pytest.fixture
def transport() -> httpx.ASGITransport:
    return httpx.ASGITransport(app=mock_server.app)


@pytest.fixture
def live_gateway(transport) -> PaymentGatewayClient:
    client = PaymentGatewayClient(base_url=MOCK_URL, transport=transport)
    client.backoff_base = 0
    return client


@pytest.fixture
def live_terminal(transport) -> TerminalClient:
    return TerminalClient(base_url=MOCK_URL, transport=transport)


async def test_payment_intent(live_gateway: PaymentGatewayClient):
    intent = await live_gateway.create_payment_intent(Decimal("12.34"), {"item_count": 1})

    assert intent.id.startswith("pi_")
    assert intent.client_secret.startswith(f"{intent.id}_secret_")


async def test_zero_amount_intent_is_declined(live_gateway: PaymentGatewayClient):
    with pytest.raises(GatewayError, match="declined"):
        await live_gateway.create_payment_intent(Decimal("0"))


async def test_reader_discovery(live_terminal: TerminalClient):
    readers = await live_terminal.list_readers()
    assert [(r.id, r.status) for r in readers] == [("tmr_mock_1", "online")]

    connected = await live_terminal.connect_by_id("tmr_mock_1")
    assert connected.status == "online"

    with pytest.raises(GatewayError, match="not found"):
        await live_terminal.connect_by_id("tmr_missing")


async def test_reader_checkout(db: Session, seed, live_gateway, live_terminal):
    """
    Card-present sale against the mock terminal
    Expected: charge succeeds and the card audit row is written
    """
    shift = seed.shift()
    payment_router = PaymentRouter(db, live_gateway, live_terminal, PendingTransactionStore(ttl_seconds=900))

    result = await payment_router.checkout(CheckoutRequest(
        items=[service_line("42.00")],
        payment_method=PaymentMethod.CARD_READER,
        shift=Shift(id=shift.id, location_id=shift.location_id),
        tax_rate=Decimal("0"),
    ))

    assert db.get(TransactionRow, result.transaction_id).payment_method == "card_reader"
    audit = db.query(CardPayment).filter_by(transaction_id=result.transaction_id).one()
    assert audit.card_last4 == "4242"
    assert audit.amount == Decimal("42")


async def test_declined_reader_checkout(db: Session, seed, live_gateway, live_terminal, monkeypatch):
    shift = seed.shift()
    monkeypatch.setattr(mock_server, "DECLINED_AMOUNTS", {1300})
    payment_router = PaymentRouter(db, live_gateway, live_terminal, PendingTransactionStore(ttl_seconds=900))

    with pytest.raises(GatewayError, match="Card declined"):
        await payment_router.checkout(CheckoutRequest(
            items=[service_line("13.00")],
            payment_method=PaymentMethod.CARD_READER,
            shift=Shift(id=shift.id, location_id=shift.location_id),
            tax_rate=Decimal("0"),
        ))

    assert db.query(TransactionRow).count() == 0
