"""Gift card lookup and issuance"""

import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pos_settlement.api.v1.errors import http_error_for
from pos_settlement.api.v1.schemas import GiftCardCreateRequest, GiftCardResponse
from pos_settlement.domain.exceptions import DomainException
from pos_settlement.domain.models import GiftCard
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.gift_card_ledger import GiftCardLedger

router = APIRouter()


def to_response(card: GiftCard, ledger: GiftCardLedger) -> GiftCardResponse:
    return GiftCardResponse(
        id=card.id,
        card_number=card.card_number,
        initial_balance=card.initial_balance,
        balance=ledger.resolve_balance(card),
        is_active=card.is_active,
    )


@router.get("/gift-cards/{card_number}", response_model=GiftCardResponse)
def get_gift_card(card_number: str, db: Session = Depends(get_db)):
    """Card with its balance resolved from the ledger rather than the cached field"""
    ledger = GiftCardLedger(db)
    try:
        card = ledger.find_by_number(card_number)
    except DomainException as e:
        raise http_error_for(e)

    return to_response(card, ledger)


@router.post("/gift-cards", response_model=GiftCardResponse, status_code=201)
def create_gift_card(request_body: GiftCardCreateRequest, db: Session = Depends(get_db)):
    """Issue a card; the ledger opens with an activate entry for the initial balance"""
    ledger = GiftCardLedger(db)
    try:
        card = ledger.activate(
            request_body.card_number,
            request_body.initial_balance,
            notes=request_body.notes,
            location_id=request_body.location_id,
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Gift card issuance rejected: {e}")
        raise http_error_for(e)

    return to_response(card, ledger)
