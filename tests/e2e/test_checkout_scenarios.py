"""
E2E tests for register checkout scenarios over the HTTP API.

Scenarios:
- discounted_sale: percentage discount and tax, no loyalty
- points_cover_sale: loyalty points pay for the whole cart
- split_tender_refund: cash plus gift card, then a refund prorated across legs
- oversold_item: cart asks for more units than are on hand
"""

from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from pos_settlement.infrastructure.database.models import TransactionRow


def test_discounted_sale_totals(client: TestClient, seed):
    """
    discounted_sale: $100 cart, 10% off, 6.75% tax
    Expected: 10 off, 90 taxed to 96.075
    """
    shift = seed.shift()
    body = {
        "items": [{"id": 1, "kind": "service", "price": "100.00", "quantity": 1}],
        "discount": {"id": "spring-10", "kind": "percentage", "value": "10"},
        "tax_rate": "6.75",
        "payment_method": "cash",
        "shift": {"id": shift.id},
    }

    preview = client.post("/v1/checkout/totals", json=body).json()["totals"]
    assert Decimal(preview["discount_amount"]) == Decimal("10")
    assert Decimal(preview["after_discount"]) == Decimal("90")
    assert Decimal(preview["tax_amount"]) == Decimal("6.075")
    assert Decimal(preview["final_total"]) == Decimal("96.075")

    response = client.post("/v1/checkout", json=body)
    assert response.status_code == 200
    assert Decimal(response.json()["totals"]["final_total"]) == Decimal("96.075")


def test_points_cover_sale(client: TestClient, seed):
    """
    points_cover_sale: 500 points at $0.01 each, $3.00 cart
    Expected: zero-dollar settlement redeeming 300 points, 200 left
    """
    customer = seed.customer(loyalty_points=500)
    seed.program(points_value_cents="1")

    response = client.post("/v1/checkout", json={
        "items": [{"id": 1, "kind": "service", "price": "3.00", "quantity": 1}],
        "customer_id": customer.id,
        "use_points": True,
        "tax_rate": "0",
        "payment_method": "cash",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["payment_method"] == "loyalty_points"
    assert Decimal(data["totals"]["final_total"]) == Decimal("0")
    assert data["loyalty_points_redeemed"] == 300

    balance = client.get(f"/v1/loyalty/customers/{customer.id}/balance").json()
    assert balance["points_balance"] == 200
    assert balance["cached_points"] == 200


def test_split_tender_with_refund(client: TestClient, seed, db: Session):
    """
    split_tender_refund: $40 cash + $60 gift card on $100, card holds $75
    Expected: card left with $15; a $10 refund prorates to $4 / $6
    """
    shift = seed.shift()
    card = seed.gift_card("75", card_number="GC-7575")

    response = client.post("/v1/checkout", json={
        "items": [{"id": 1, "kind": "service", "price": "100.00", "quantity": 1}],
        "payment_method": "cash",
        "tax_rate": "0",
        "shift": {"id": shift.id},
        "split_payments": [
            {"method": "cash", "amount": "40.00"},
            {"method": "gift_card", "amount": "60.00", "gift_card_id": card.id},
        ],
    })
    assert response.status_code == 200
    transaction_id = response.json()["transaction_id"]

    card_data = client.get("/v1/gift-cards/GC-7575").json()
    assert Decimal(card_data["balance"]) == Decimal("15")

    transaction = db.get(TransactionRow, transaction_id)
    transaction.refunded_amount = Decimal("10")
    db.commit()

    splits = client.get(f"/v1/transactions/{transaction_id}/splits").json()["splits"]
    assert [(leg["method"], Decimal(leg["refund_share"])) for leg in splits] == [
        ("cash", Decimal("4")),
        ("gift_card", Decimal("6")),
    ]
    assert [Decimal(leg["adjusted_amount"]) for leg in splits] == [Decimal("36"), Decimal("54")]


def test_oversold_item_is_rejected(client: TestClient, seed, db: Session):
    """
    oversold_item: 2 on hand, 3 requested
    Expected: 422 and no transaction recorded
    """
    shift = seed.shift()
    item = seed.inventory_item(quantity=2)

    response = client.post("/v1/checkout", json={
        "items": [{"id": item.id, "kind": "inventory", "price": "10.00", "quantity": 3}],
        "payment_method": "cash",
        "shift": {"id": shift.id},
    })

    assert response.status_code == 422
    assert "Insufficient stock" in response.json()["detail"]
    assert db.query(TransactionRow).count() == 0
    db.refresh(item)
    assert item.quantity == 2
