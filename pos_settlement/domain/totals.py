"""Checkout totals: subtotal -> discount -> tax -> final total"""

from decimal import Decimal
from typing import Iterable, Optional

from pos_settlement.domain.models import CartItem, Discount, DiscountKind, TotalsBreakdown
from pos_settlement.domain.money import ZERO, as_money


def subtotal_of(items: Iterable[CartItem]) -> Decimal:
    """Sum of price x quantity over every cart line"""
    return sum((as_money(item.unit_price) * item.quantity for item in items), ZERO)


def discount_amount_for(subtotal: Decimal, discount: Optional[Discount]) -> Decimal:
    """
    Manual discount in dollars, never more than the subtotal.

    Percentage discounts apply to the subtotal; fixed discounts are taken as-is.
    """
    if discount is None:
        return ZERO

    value = as_money(discount.value)
    if discount.kind == DiscountKind.PERCENTAGE:
        amount = subtotal * value / Decimal(100)
    else:
        amount = value

    return max(min(subtotal, amount), ZERO)


def calculate_totals(
    items: Iterable[CartItem],
    discount: Optional[Discount] = None,
    tax_rate=0,
    loyalty_discount=0,
) -> TotalsBreakdown:
    """
    Derive checkout totals. Pure: the same inputs always give the same breakdown.

    Requirements:
    - subtotal = sum(price x qty)
    - discount capped at subtotal
    - loyalty discount taken after the manual discount, before tax
    - tax = after-discount amount x rate / 100

    Values are not rounded; amounts are rounded to cents only when money is
    sent to a card collaborator. The after-discount amount is floored at zero
    so a loyalty discount larger than what remains cannot produce negative tax.

    Example:
        $100 cart, 10% discount, 6.75% tax
        discount 10, after discount 90, tax 6.075, final 96.075
    """
    items = list(items)
    subtotal = subtotal_of(items)
    discount_amount = discount_amount_for(subtotal, discount)
    loyalty = max(as_money(loyalty_discount), ZERO)

    after_discount = max(subtotal - discount_amount - loyalty, ZERO)
    tax_amount = after_discount * as_money(tax_rate) / Decimal(100)
    final_total = after_discount + tax_amount

    return TotalsBreakdown(
        subtotal=subtotal,
        discount_amount=discount_amount,
        after_discount=after_discount,
        tax_amount=tax_amount,
        final_total=final_total,
        loyalty_discount=loyalty,
    )


def is_zero_dollar(totals: TotalsBreakdown) -> bool:
    """Discounts fully cover the purchase, so no tender is needed"""
    return totals.final_total <= ZERO
