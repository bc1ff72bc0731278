"""Gift card ledger: balance resolution, duplicate guard, redemption and issuance"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pos_settlement.config import settings
from pos_settlement.domain import gift_cards as gift_card_math
from pos_settlement.domain.exceptions import (
    DuplicateSubmissionError,
    GiftCardInactiveError,
    GiftCardNotFoundError,
    InsufficientGiftCardBalanceError,
)
from pos_settlement.domain.models import GiftCard, GiftCardEntryType
from pos_settlement.domain.money import ZERO, as_money
from pos_settlement.infrastructure.database.repositories import GiftCardRepository
from pos_settlement.infrastructure.observability.metrics import gift_card_redemption_counter, record_partial_write
from pos_settlement.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

RECENT_ENTRIES_SCANNED = 10


@dataclass(frozen=True)
class GiftCardRedemption:
    card_id: int
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    cache_refreshed: bool = True


class GiftCardLedger:
    """Append-only gift card ledger; the cached card balance is refreshed after each posting"""

    def __init__(self, db: Session, duplicate_window_seconds: int | None = None):
        self.db = db
        self.repo = GiftCardRepository(db)
        self.duplicate_window_seconds = (
            duplicate_window_seconds
            if duplicate_window_seconds is not None
            else settings.gift_card_duplicate_window_seconds
        )

    def get_card(self, card_id: int) -> GiftCard:
        card = self.repo.get(card_id)
        if card is None:
            raise GiftCardNotFoundError(f"Gift card {card_id} not found")
        return card

    def find_by_number(self, card_number: str) -> GiftCard:
        card = self.repo.get_by_number(card_number)
        if card is None:
            raise GiftCardNotFoundError(f"Gift card {card_number} not found")
        return card

    def resolve_balance(self, card: GiftCard) -> Decimal:
        return gift_card_math.resolve_balance(card, self.repo.entries(card.id))

    def check_redeemable(self, card_id: int, amount) -> Decimal:
        """
        Validate a card can cover an amount.

        Returns:
            The ledger-resolved balance

        Raises:
            GiftCardNotFoundError, GiftCardInactiveError, InsufficientGiftCardBalanceError
        """
        card = self.get_card(card_id)
        if not card.is_active:
            raise GiftCardInactiveError(f"Gift card {card.card_number} is not active")

        balance = self.resolve_balance(card)
        if as_money(amount) > balance:
            raise InsufficientGiftCardBalanceError(available=balance, required=as_money(amount))
        return balance

    def guard_duplicate(self, card_id: int, amount, idempotency_key: str | None = None) -> None:
        """
        Reject a redemption that repeats one already posted.

        With an idempotency key the check is exact. Without one, a redemption
        of the same amount on the same card within the trailing window is
        treated as an accidental resubmission.
        """
        if idempotency_key:
            existing = self.repo.find_entry_by_key(idempotency_key)
            if existing is not None:
                gift_card_redemption_counter.labels(outcome="duplicate").inc()
                raise DuplicateSubmissionError(
                    f"Gift card redemption with key {idempotency_key} was already posted"
                )
            return

        recent = self.repo.entries(card_id, limit=RECENT_ENTRIES_SCANNED)
        duplicate = gift_card_math.find_recent_duplicate(recent, amount, utcnow(), self.duplicate_window_seconds)
        if duplicate is not None:
            gift_card_redemption_counter.labels(outcome="duplicate").inc()
            raise DuplicateSubmissionError(
                f"A ${as_money(amount):.2f} redemption on this card was posted within the last "
                f"{self.duplicate_window_seconds} seconds"
            )

    def redeem(
        self,
        card_id: int,
        amount,
        transaction_id: int | None = None,
        idempotency_key: str | None = None,
        location_id: str | None = None,
    ) -> GiftCardRedemption:
        """
        Debit a card by appending a redeem entry.

        The cached balance is overwritten afterwards on a best-effort basis;
        failing that is logged and reported through cache_refreshed.
        """
        amount = as_money(amount)
        try:
            balance = self.check_redeemable(card_id, amount)
        except (GiftCardInactiveError, InsufficientGiftCardBalanceError):
            gift_card_redemption_counter.labels(outcome="rejected").inc()
            raise

        new_balance = gift_card_math.balance_after_redeem(balance, amount)
        try:
            self.repo.add_entry(
                card_id=card_id,
                entry_type=GiftCardEntryType.REDEEM,
                amount=amount,
                balance_after=new_balance,
                transaction_id=transaction_id,
                idempotency_key=idempotency_key,
                location_id=location_id,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            gift_card_redemption_counter.labels(outcome="duplicate").inc()
            raise DuplicateSubmissionError(
                f"Gift card redemption with key {idempotency_key} was already posted"
            ) from e

        gift_card_redemption_counter.labels(outcome="posted").inc()
        cache_refreshed = self._refresh_cache(card_id, new_balance)
        return GiftCardRedemption(
            card_id=card_id,
            amount=amount,
            balance_before=balance,
            balance_after=new_balance,
            cache_refreshed=cache_refreshed,
        )

    def activate(
        self,
        card_number: str,
        initial_balance,
        notes: str | None = None,
        location_id: str | None = None,
    ) -> GiftCard:
        """Issue a card and open its ledger with the initial balance"""
        initial_balance = max(as_money(initial_balance), ZERO)
        try:
            row = self.repo.create_card(card_number, initial_balance, notes=notes, location_id=location_id)
            self.repo.add_entry(
                card_id=row.id,
                entry_type=GiftCardEntryType.ACTIVATE,
                amount=initial_balance,
                balance_after=initial_balance,
                location_id=location_id,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateSubmissionError(f"Gift card {card_number} already exists") from e

        logger.info("Gift card activated", extra={"gift_card_id": row.id, "initial_balance": str(initial_balance)})
        return self.get_card(row.id)

    def _refresh_cache(self, card_id: int, balance: Decimal) -> bool:
        try:
            self.repo.update_cache(card_id, balance, utcnow())
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            record_partial_write("gift_card_cache")
            logger.error(
                "Failed to refresh cached gift card balance",
                extra={"step": "gift_card_cache", "gift_card_id": card_id, "balance": str(balance)},
                exc_info=True,
            )
            return False
