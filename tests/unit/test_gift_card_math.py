"""Unit tests for gift card balance resolution and duplicate detection"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pos_settlement.domain.gift_cards import balance_after_redeem, find_recent_duplicate, resolve_balance
from pos_settlement.domain.models import GiftCard, GiftCardEntryType, GiftCardLedgerEntry


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
CARD = GiftCard(id=1, card_number="GC-1", initial_balance=Decimal("75"), current_balance=Decimal("75"), is_active=True)


def _entry(entry_id, balance_after, seconds_ago, amount="10", entry_type=GiftCardEntryType.REDEEM):
    return GiftCardLedgerEntry(
        id=entry_id,
        gift_card_id=1,
        transaction_id=None,
        type=entry_type,
        amount=Decimal(amount),
        balance_after=Decimal(balance_after),
        created_at=NOW - timedelta(seconds=seconds_ago),
    )


def test_latest_ledger_entry_wins_over_cache():
    entries = [_entry(1, "75", 300, entry_type=GiftCardEntryType.ACTIVATE), _entry(2, "15", 10, amount="60")]
    assert resolve_balance(CARD, entries) == Decimal("15")


def test_cache_used_without_ledger():
    assert resolve_balance(CARD, []) == Decimal("75")


def test_ledger_order_ignored_in_favour_of_timestamp():
    entries = [_entry(5, "15", 10), _entry(4, "40", 200)]
    assert resolve_balance(CARD, entries) == Decimal("15")


def test_same_timestamp_falls_back_to_id():
    entries = [_entry(9, "5", 0), _entry(8, "15", 0)]
    assert resolve_balance(CARD, entries) == Decimal("5")


def test_naive_timestamps_treated_as_utc():
    naive = GiftCardLedgerEntry(
        id=3, gift_card_id=1, transaction_id=None, type=GiftCardEntryType.REDEEM,
        amount=Decimal("1"), balance_after=Decimal("30"), created_at=(NOW - timedelta(seconds=5)).replace(tzinfo=None),
    )
    assert resolve_balance(CARD, [_entry(2, "50", 100), naive]) == Decimal("30")


def test_balance_after_redeem_floors_at_zero():
    assert balance_after_redeem(Decimal("75"), Decimal("60")) == Decimal("15")
    assert balance_after_redeem(Decimal("5"), Decimal("6")) == Decimal("0")


def test_same_amount_within_window_is_duplicate():
    entries = [_entry(2, "50", 30, amount="25")]
    assert find_recent_duplicate(entries, Decimal("25"), NOW, 60) is not None


def test_outside_window_or_other_amount_is_not_duplicate():
    entries = [_entry(2, "50", 90, amount="25"), _entry(3, "40", 5, amount="10")]
    assert find_recent_duplicate(entries, Decimal("25"), NOW, 60) is None


def test_activation_is_never_a_duplicate():
    entries = [_entry(1, "25", 5, amount="25", entry_type=GiftCardEntryType.ACTIVATE)]
    assert find_recent_duplicate(entries, Decimal("25"), NOW, 60) is None
