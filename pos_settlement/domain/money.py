"""Decimal money helpers shared by the totals, split and ledger math"""

from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")
CENT = Decimal("0.01")


def as_money(value) -> Decimal:
    """Coerce int/float/str/Decimal to Decimal without binary float noise"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(amount: Decimal) -> Decimal:
    return as_money(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Dollar amount to integer cents for the card collaborators"""
    return int((as_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
