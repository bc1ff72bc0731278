"""Split tender allocation and refund proration"""

from decimal import Decimal
from typing import List, Sequence

from pos_settlement.domain.exceptions import SplitMismatchError
from pos_settlement.domain.models import ProratedSplit, SplitPayment
from pos_settlement.domain.money import ZERO, as_money

DEFAULT_TOLERANCE = Decimal("0.01")


def prepaid_amount(splits: Sequence[SplitPayment]) -> Decimal:
    """Total already covered by the split legs"""
    return sum((as_money(split.amount) for split in splits), ZERO)


def validate_split(
    splits: Sequence[SplitPayment],
    final_total: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Decimal:
    """
    Check that split legs add up to the final total within tolerance.

    Returns the summed amount.

    Raises:
        SplitMismatchError: If |sum - final_total| > tolerance
    """
    total = prepaid_amount(splits)
    if abs(total - as_money(final_total)) > as_money(tolerance):
        raise SplitMismatchError(expected=as_money(final_total), actual=total)
    return total


def prorate_refund(splits: Sequence[SplitPayment], refund_total) -> List[ProratedSplit]:
    """
    Distribute a refund across split legs in proportion to what each leg paid.

    adjusted[i] = amount[i] - refund_total * amount[i] / sum(amount)

    Used for display and reporting only; refunds are recorded elsewhere.

    Example:
        $40 cash + $60 gift card, $10 refund -> -$4 cash, -$6 gift card
    """
    refund = as_money(refund_total)
    total = prepaid_amount(splits)

    prorated = []
    for split in splits:
        amount = as_money(split.amount)
        share = refund * amount / total if total > ZERO else ZERO
        prorated.append(
            ProratedSplit(
                method=split.method,
                amount=amount,
                refund_share=share,
                adjusted_amount=amount - share,
                gift_card_id=split.gift_card_id,
            )
        )
    return prorated
