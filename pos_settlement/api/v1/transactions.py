"""GET /v1/transactions/{transaction_id}/splits - split legs with refunds prorated"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pos_settlement.api.v1.schemas import SplitLegSchema, TransactionSplitsResponse
from pos_settlement.domain.models import PaymentMethod, SplitPayment
from pos_settlement.domain.money import as_money
from pos_settlement.domain.split import prorate_refund
from pos_settlement.infrastructure.database.repositories import TransactionRepository
from pos_settlement.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/transactions/{transaction_id}/splits", response_model=TransactionSplitsResponse)
def get_transaction_splits(transaction_id: int, db: Session = Depends(get_db)):
    """
    Split legs of a transaction for display.

    Refunds are spread across legs in proportion to what each leg paid.
    """
    repo = TransactionRepository(db)
    transaction = repo.get(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")

    legs = [
        SplitPayment(method=PaymentMethod(row.payment_method), amount=as_money(row.amount), gift_card_id=row.gift_card_id)
        for row in repo.splits(transaction_id)
    ]
    prorated = prorate_refund(legs, transaction.refunded_amount)

    return TransactionSplitsResponse(
        transaction_id=transaction_id,
        total_amount=as_money(transaction.total_amount),
        refunded_amount=as_money(transaction.refunded_amount),
        splits=[
            SplitLegSchema(
                method=leg.method.value,
                amount=leg.amount,
                refund_share=leg.refund_share,
                adjusted_amount=leg.adjusted_amount,
                gift_card_id=leg.gift_card_id,
            )
            for leg in prorated
        ],
    )
