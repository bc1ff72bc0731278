"""Loyalty points math - discount preview, earn and redemption sizing"""

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Iterable, Optional

from pos_settlement.domain.models import LoyaltyLedgerEntry, LoyaltyProgram, RedemptionPlan
from pos_settlement.domain.money import ZERO, as_money


def point_value(program: LoyaltyProgram) -> Decimal:
    """Dollar value of a single point (points_value_cents / 100)"""
    return as_money(program.points_value_cents) / Decimal(100)


def preview_discount(balance: int, program: Optional[LoyaltyProgram], subtotal) -> Decimal:
    """
    Largest discount the customer's points can cover, capped at the subtotal.

    Returns 0 when there is no active program, the balance is empty, or the
    balance is below the program's minimum redeemable points.
    """
    if program is None or not program.is_active or balance <= 0:
        return ZERO
    if balance < program.minimum_points_redeem:
        return ZERO

    max_discount = balance * point_value(program)
    return max(min(max_discount, as_money(subtotal)), ZERO)


def points_earned(final_total, points_per_dollar) -> int:
    """floor(final_total x points_per_dollar); never negative"""
    earned = (as_money(final_total) * as_money(points_per_dollar)).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(earned), 0)


def plan_redemption(balance: int, amount_to_cover, program: LoyaltyProgram) -> RedemptionPlan:
    """
    Size a redemption so it covers the amount without overdrawing the balance.

    points_needed = ceil(amount / point_value)
    points_to_redeem = min(balance, points_needed)
    redeemed_value = min(amount, points_to_redeem x point_value)
    """
    amount = max(as_money(amount_to_cover), ZERO)
    value = point_value(program)
    balance = max(int(balance), 0)

    if value <= ZERO or amount <= ZERO:
        return RedemptionPlan(points_to_redeem=0, redeemed_value=ZERO, balance_before=balance, balance_after=balance)

    points_needed = int((amount / value).to_integral_value(rounding=ROUND_CEILING))
    points_to_redeem = min(balance, points_needed)
    redeemed_value = min(amount, points_to_redeem * value)

    return RedemptionPlan(
        points_to_redeem=points_to_redeem,
        redeemed_value=redeemed_value,
        balance_before=balance,
        balance_after=balance - points_to_redeem,
    )


def running_balance(entries: Iterable[LoyaltyLedgerEntry]) -> int:
    """Authoritative balance: sum(earned - redeemed) over the ledger, floored at zero"""
    balance = 0
    for entry in entries:
        balance += entry.points_earned or 0
        balance -= entry.points_redeemed or 0
    return max(balance, 0)

