"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from pos_settlement.api.dependencies import get_payment_gateway_client, get_terminal_client
from pos_settlement.api.main import create_app
from pos_settlement.domain.models import CartItem, ItemKind, PaymentIntent, TerminalPaymentResult, TerminalReader
from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient
from pos_settlement.infrastructure.database.models import (
    Base,
    CardReaderConfiguration,
    Customer,
    GiftCardLedgerEntryRow,
    GiftCardRow,
    InventoryItem,
    LoyaltyProgramRow,
    ShiftRow,
)
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.settlement.router import PaymentRouter


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> AsyncMock:
    """Hosted-card gateway that always reserves an intent"""
    mock = AsyncMock(spec=PaymentGatewayClient)
    mock.create_payment_intent.return_value = PaymentIntent(id="pi_test_1", client_secret="pi_test_1_secret")
    return mock


@pytest.fixture
def terminal() -> AsyncMock:
    """Terminal service with one online reader that approves every charge"""
    mock = AsyncMock(spec=TerminalClient)
    mock.list_readers.return_value = [TerminalReader(id="tmr_online", status="online", label="Counter")]
    mock.process_payment.return_value = TerminalPaymentResult(
        status="succeeded",
        payment_intent_id="pi_reader_1",
        payment_method_id="pm_reader_1",
        card_last4="4242",
        card_brand="visa",
    )
    return mock


@pytest.fixture
def pending_store() -> PendingTransactionStore:
    return PendingTransactionStore(ttl_seconds=900)


@pytest.fixture
def payment_router(db: Session, gateway: AsyncMock, terminal: AsyncMock, pending_store) -> PaymentRouter:
    return PaymentRouter(db, gateway, terminal, pending_store)


@pytest.fixture
def client(db: Session, gateway: AsyncMock, terminal: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and mocked card collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway_client] = lambda: gateway
    app.dependency_overrides[get_terminal_client] = lambda: terminal
    return TestClient(app)


class StoreSeeder:
    """Creates store rows the settlement engine reads"""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def inventory_item(self, quantity: int, price="10.00", name="Shampoo", barcode=None) -> InventoryItem:
        return self._save(InventoryItem(name=name, price=Decimal(price), quantity=quantity, barcode=barcode))

    def customer(self, loyalty_points: int = 0, name="Dana") -> Customer:
        return self._save(Customer(name=name, loyalty_points=loyalty_points))

    def program(self, points_value_cents="1", points_per_dollar="1", minimum_points_redeem=0, is_active=True):
        return self._save(
            LoyaltyProgramRow(
                name="Rewards",
                points_per_dollar=Decimal(points_per_dollar),
                points_value_cents=Decimal(points_value_cents),
                minimum_points_redeem=minimum_points_redeem,
                is_active=is_active,
            )
        )

    def shift(self, location_id="store-1", is_active=True) -> ShiftRow:
        return self._save(ShiftRow(location_id=location_id, is_active=is_active))

    def gift_card(self, balance, card_number="GC-1000", is_active=True, with_ledger=True) -> GiftCardRow:
        card = self._save(
            GiftCardRow(
                card_number=card_number,
                initial_balance=Decimal(balance),
                current_balance=Decimal(balance),
                is_active=is_active,
            )
        )
        if with_ledger:
            self._save(
                GiftCardLedgerEntryRow(
                    gift_card_id=card.id,
                    type="activate",
                    amount=Decimal(balance),
                    balance_after=Decimal(balance),
                )
            )
        return card

    def reader(self, reader_id="tmr_default", location_id="store-1") -> CardReaderConfiguration:
        return self._save(CardReaderConfiguration(reader_id=reader_id, location_id=location_id, is_default=True))


@pytest.fixture
def seed(db: Session) -> StoreSeeder:
    return StoreSeeder(db)


def inventory_line(item: InventoryItem, quantity: int = 1, price=None) -> CartItem:
    return CartItem(
        id=item.id,
        kind=ItemKind.INVENTORY,
        unit_price=Decimal(price) if price is not None else Decimal(str(item.price)),
        quantity=quantity,
        name=item.name,
    )


def service_line(price, quantity: int = 1, service_id: int = 900) -> CartItem:
    return CartItem(id=service_id, kind=ItemKind.SERVICE, unit_price=Decimal(price), quantity=quantity, name="Haircut")
