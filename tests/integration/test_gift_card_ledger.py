"""Integration tests for the gift card ledger"""

import pytest
from decimal import Decimal
from sqlalchemy.orm import Session
from pos_settlement.domain.exceptions import (
    DuplicateSubmissionError,
    GiftCardInactiveError,
    GiftCardNotFoundError,
    InsufficientGiftCardBalanceError,
)
from pos_settlement.domain.models import GiftCardEntryType
from pos_settlement.infrastructure.database.models import GiftCardRow
from pos_settlement.infrastructure.database.repositories import GiftCardRepository
from pos_settlement.settlement.gift_card_ledger import GiftCardLedger


def test_activation_opens_ledger(db: Session):
    ledger = GiftCardLedger(db)
    card = ledger.activate("GC-NEW", Decimal("50"))

    entries = GiftCardRepository(db).entries(card.id)
    assert [e.type for e in entries] == [GiftCardEntryType.ACTIVATE]
    assert entries[0].balance_after == Decimal("50")
    assert ledger.resolve_balance(card) == Decimal("50")


def test_card_number_is_issued_once(db: Session):
    ledger = GiftCardLedger(db)
    ledger.activate("GC-NEW", Decimal("50"))

    with pytest.raises(DuplicateSubmissionError):
        ledger.activate("GC-NEW", Decimal("20"))


def test_ledger_wins_over_stale_cache(db: Session, seed):
    card = seed.gift_card("75")
    row = db.get(GiftCardRow, card.id)
    row.current_balance = Decimal("999")
    db.commit()

    ledger = GiftCardLedger(db)
    assert ledger.resolve_balance(ledger.get_card(card.id)) == Decimal("75")


def test_redemptions_draw_down_balance(db: Session, seed):
    card = seed.gift_card("75")
    ledger = GiftCardLedger(db)

    redeemed = []
    for amount in (Decimal("20"), Decimal("30"), Decimal("25")):
        result = ledger.redeem(card.id, amount)
        redeemed.append(amount)
        assert result.balance_after == Decimal("75") - sum(redeemed)

    assert ledger.resolve_balance(ledger.get_card(card.id)) == Decimal("0")
    db.refresh(card)
    assert card.current_balance == Decimal("0")
    assert card.last_used_at is not None


def test_redeeming_more_than_balance_is_rejected(db: Session, seed):
    card = seed.gift_card("10")
    ledger = GiftCardLedger(db)

    with pytest.raises(InsufficientGiftCardBalanceError):
        ledger.redeem(card.id, Decimal("10.01"))

    assert len(GiftCardRepository(db).entries(card.id)) == 1


def test_inactive_card_is_rejected(db: Session, seed):
    card = seed.gift_card("40", is_active=False)

    with pytest.raises(GiftCardInactiveError):
        GiftCardLedger(db).check_redeemable(card.id, Decimal("5"))


def test_unknown_card(db: Session):
    with pytest.raises(GiftCardNotFoundError):
        GiftCardLedger(db).get_card(404)


def test_recent_same_amount_redemption_is_a_duplicate(db: Session, seed):
    card = seed.gift_card("100")
    ledger = GiftCardLedger(db)
    ledger.redeem(card.id, Decimal("25"))

    with pytest.raises(DuplicateSubmissionError):
        ledger.guard_duplicate(card.id, Decimal("25"))
    ledger.guard_duplicate(card.id, Decimal("30"))


def test_idempotency_key_is_exact(db: Session, seed):
    card = seed.gift_card("100")
    ledger = GiftCardLedger(db)
    ledger.redeem(card.id, Decimal("10"), idempotency_key="checkout-1")

    with pytest.raises(DuplicateSubmissionError):
        ledger.guard_duplicate(card.id, Decimal("10"), "checkout-1")
    ledger.guard_duplicate(card.id, Decimal("10"), "checkout-2")

    with pytest.raises(DuplicateSubmissionError):
        ledger.redeem(card.id, Decimal("10"), idempotency_key="checkout-1")
    assert ledger.resolve_balance(ledger.get_card(card.id)) == Decimal("90")
