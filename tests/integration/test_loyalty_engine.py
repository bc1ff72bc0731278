"""Integration tests for the loyalty points engine"""

import pytest
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from pos_settlement.domain.exceptions import LoyaltyRedemptionError
from pos_settlement.domain.models import LoyaltyEntryType
from pos_settlement.infrastructure.database.repositories import LoyaltyRepository
from pos_settlement.settlement.loyalty_engine import LoyaltyEngine


def test_cached_balance_used_before_any_ledger_entry(db: Session, seed):
    customer = seed.customer(loyalty_points=500)
    assert LoyaltyEngine(db).balance(customer.id) == 500


def test_preview_needs_use_points_and_a_program(db: Session, seed):
    customer = seed.customer(loyalty_points=500)
    engine = LoyaltyEngine(db)

    assert engine.preview_discount(customer.id, True, Decimal("3.00")) == Decimal("0")

    seed.program(points_value_cents="1")
    assert engine.preview_discount(customer.id, False, Decimal("3.00")) == Decimal("0")
    assert engine.preview_discount(customer.id, True, Decimal("3.00")) == Decimal("3.00")


def test_first_redemption_opens_ledger_with_cached_balance(db: Session, seed):
    customer = seed.customer(loyalty_points=500)
    seed.program(points_value_cents="1")
    engine = LoyaltyEngine(db)

    plan = engine.redeem(customer.id, Decimal("3.00"), engine.active_program())

    assert plan.points_to_redeem == 300
    entries = LoyaltyRepository(db).ledger_entries(customer.id)
    assert [e.type for e in entries] == [LoyaltyEntryType.EARN, LoyaltyEntryType.REDEEM]
    assert entries[-1].points_balance == 200
    assert engine.balance(customer.id) == 200
    db.refresh(customer)
    assert customer.loyalty_points == 200


def test_earn_floors_points(db: Session, seed):
    customer = seed.customer()
    seed.program(points_per_dollar="1")
    engine = LoyaltyEngine(db)

    assert engine.earn(customer.id, Decimal("96.075"), engine.active_program()) == 96
    assert engine.balance(customer.id) == 96
    db.refresh(customer)
    assert customer.loyalty_points == 96


def test_earn_uses_default_rate_without_program(db: Session, seed):
    customer = seed.customer()
    assert LoyaltyEngine(db, default_points_per_dollar=2).earn(customer.id, Decimal("10.50")) == 21


def test_earning_nothing_posts_nothing(db: Session, seed):
    customer = seed.customer()
    engine = LoyaltyEngine(db)

    assert engine.earn(customer.id, Decimal("0.40")) == 0
    assert LoyaltyRepository(db).ledger_entries(customer.id) == []


def test_reconcile_rewrites_cache_from_ledger(db: Session, seed):
    customer = seed.customer()
    engine = LoyaltyEngine(db)
    engine.earn(customer.id, Decimal("50"))

    customer.loyalty_points = 999
    db.commit()

    assert engine.reconcile(customer.id) == 50
    db.refresh(customer)
    assert customer.loyalty_points == 50


def test_redemption_failure_is_fatal(db: Session, seed):
    customer = seed.customer(loyalty_points=500)
    seed.program(points_value_cents="1")
    engine = LoyaltyEngine(db)
    program = engine.active_program()

    with patch.object(LoyaltyRepository, "add_entry", side_effect=SQLAlchemyError("ledger unavailable")):
        with pytest.raises(LoyaltyRedemptionError) as exc_info:
            engine.redeem(customer.id, Decimal("3.00"), program, transaction_id=12)

    assert exc_info.value.step == "loyalty_redeem"
    assert exc_info.value.transaction_id == 12
