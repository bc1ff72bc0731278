"""Loyalty balance lookup and reconciliation"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pos_settlement.api.v1.schemas import LoyaltyBalanceResponse
from pos_settlement.infrastructure.database.repositories import LoyaltyRepository
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.loyalty_engine import LoyaltyEngine

router = APIRouter()


def _require_customer(db: Session, customer_id: int):
    customer = LoyaltyRepository(db).get_customer(customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.get("/loyalty/customers/{customer_id}/balance", response_model=LoyaltyBalanceResponse)
def get_loyalty_balance(customer_id: int, db: Session = Depends(get_db)):
    """Authoritative points balance next to the cached one"""
    customer = _require_customer(db, customer_id)
    balance = LoyaltyEngine(db).balance(customer_id)
    return LoyaltyBalanceResponse(
        customer_id=customer_id,
        points_balance=balance,
        cached_points=customer.loyalty_points or 0,
    )


@router.post("/loyalty/customers/{customer_id}/reconcile", response_model=LoyaltyBalanceResponse)
def reconcile_loyalty_balance(customer_id: int, db: Session = Depends(get_db)):
    """Resum the ledger and overwrite the cached balance"""
    _require_customer(db, customer_id)
    balance = LoyaltyEngine(db).reconcile(customer_id)
    return LoyaltyBalanceResponse(customer_id=customer_id, points_balance=balance, cached_points=balance)
