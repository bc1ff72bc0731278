"""Gift card balance resolution and duplicate-submission detection"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from pos_settlement.domain.models import GiftCard, GiftCardEntryType, GiftCardLedgerEntry
from pos_settlement.domain.money import ZERO, as_money
from pos_settlement.utils.date_utils import ensure_utc, is_within


def latest_entry(entries: Sequence[GiftCardLedgerEntry]) -> Optional[GiftCardLedgerEntry]:
    """Most recent ledger entry; ties on timestamp fall back to insertion order"""
    dated = [e for e in entries if e.created_at is not None]
    if not dated:
        return entries[-1] if entries else None
    return max(dated, key=lambda e: (ensure_utc(e.created_at), e.id or 0))


def resolve_balance(card: GiftCard, entries: Sequence[GiftCardLedgerEntry]) -> Decimal:
    """
    Current balance of a card.

    The latest ledger entry's balance_after wins over the cached
    current_balance, which may lag a concurrent write.
    """
    entry = latest_entry(entries)
    if entry is None:
        return as_money(card.current_balance)
    return as_money(entry.balance_after)


def balance_after_redeem(balance: Decimal, amount: Decimal) -> Decimal:
    return max(as_money(balance) - as_money(amount), ZERO)


def find_recent_duplicate(
    entries: Sequence[GiftCardLedgerEntry],
    amount,
    now: datetime,
    window_seconds: float,
) -> Optional[GiftCardLedgerEntry]:
    """
    Find a redemption of the same amount posted within the trailing window.

    Heuristic only; used when the caller supplies no idempotency key.
    """
    amount = as_money(amount)
    for entry in entries:
        if entry.type != GiftCardEntryType.REDEEM or entry.created_at is None:
            continue
        if as_money(entry.amount) == amount and is_within(entry.created_at, now, window_seconds):
            return entry
    return None
