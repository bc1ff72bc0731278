"""Settlement handlers for tenders settled without a card collaborator"""

from decimal import Decimal
from typing import Iterable, List

from sqlalchemy.orm import Session

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import (
    GiftCardNotFoundError,
    InvalidCartError,
    LoyaltyProgramUnavailableError,
    NoActiveShiftError,
)
from pos_settlement.domain.models import PaymentMethod, SettlementResult
from pos_settlement.domain.money import ZERO, as_money
from pos_settlement.domain.split import validate_split
from pos_settlement.infrastructure.database.repositories import LoyaltyRepository, ShiftRepository
from pos_settlement.settlement.writer import (
    CheckoutContext,
    GiftCardDebit,
    SettlementPlan,
    SettlementWriter,
    debits_by_card,
    gift_card_debits,
)


class SettlementHandler:
    """
    Base handler: validation shared by every tender.

    validate() runs before any write and raises a SettlementValidationError;
    settle() hands a SettlementPlan to the writer.
    """

    method: PaymentMethod
    split_methods = (PaymentMethod.CASH, PaymentMethod.GIFT_CARD)

    def __init__(self, db: Session, writer: SettlementWriter, split_tolerance=None):
        self.db = db
        self.writer = writer
        self.inventory = writer.inventory
        self.gift_cards = writer.gift_cards
        self.loyalty = writer.loyalty
        self.shifts = ShiftRepository(db)
        self.customers = LoyaltyRepository(db)
        self.split_tolerance = as_money(split_tolerance if split_tolerance is not None else settings.split_tolerance)

    def validate_cart(self, ctx: CheckoutContext) -> None:
        request = ctx.request
        if not request.items:
            raise InvalidCartError("Cart is empty")
        for item in request.items:
            if item.quantity <= 0:
                raise InvalidCartError(f"Item {item.id} has a non-positive quantity")
            if as_money(item.unit_price) < ZERO:
                raise InvalidCartError(f"Item {item.id} has a negative price")

        if request.customer_id is not None and self.customers.get_customer(request.customer_id) is None:
            raise InvalidCartError(f"Customer {request.customer_id} not found")

        self.inventory.validate_availability(request.items)

    def validate_loyalty(self, ctx: CheckoutContext) -> None:
        if ctx.totals.loyalty_discount > ZERO and ctx.program is None:
            raise LoyaltyProgramUnavailableError("No active loyalty program to redeem points against")

    def validate_split_legs(
        self,
        ctx: CheckoutContext,
        allowed: Iterable[PaymentMethod],
        require_gift_card: bool = False,
    ) -> None:
        """
        Every leg must be a tender this handler can settle. Gift card legs
        name their card and no other leg may carry one.
        """
        allowed = set(allowed)
        legs = ctx.request.split_payments
        for index, leg in enumerate(legs):
            if leg.method not in allowed:
                raise InvalidCartError(
                    f"Split leg {index} uses {leg.method.value}, which cannot be settled with {self.method.value}"
                )
            if leg.method == PaymentMethod.GIFT_CARD and leg.gift_card_id is None:
                raise GiftCardNotFoundError(f"Split leg {index} has no gift card")
            if leg.method != PaymentMethod.GIFT_CARD and leg.gift_card_id is not None:
                raise InvalidCartError(f"Split leg {index} names a gift card but pays with {leg.method.value}")

        if require_gift_card and legs and not any(leg.method == PaymentMethod.GIFT_CARD for leg in legs):
            raise InvalidCartError("Gift card split has no gift card leg")

    def validate_gift_card_debits(self, debits: List[GiftCardDebit]) -> None:
        for card_id, amount in debits_by_card(debits).items():
            self.gift_cards.check_redeemable(card_id, amount)
        for debit in debits:
            self.gift_cards.guard_duplicate(debit.card_id, debit.amount, debit.idempotency_key)

    def loyalty_redemption(self, ctx: CheckoutContext) -> Decimal:
        """Amount the redemption must cover: exactly the loyalty discount applied"""
        if ctx.customer_id is None or ctx.program is None:
            return ZERO
        return ctx.totals.loyalty_discount


class CashHandler(SettlementHandler):
    """Cash, optionally split with gift card legs; requires an open shift"""

    method = PaymentMethod.CASH

    def validate(self, ctx: CheckoutContext) -> None:
        request = ctx.request
        if request.shift is None or self.shifts.get_active(request.shift.id) is None:
            raise NoActiveShiftError("Cash payments require an active shift")

        self.validate_cart(ctx)
        self.validate_loyalty(ctx)
        if request.split_payments:
            self.validate_split_legs(ctx, self.split_methods)
            validate_split(request.split_payments, ctx.totals.chargeable_total, self.split_tolerance)
            self.validate_gift_card_debits(gift_card_debits(request))

    def settle(self, ctx: CheckoutContext) -> SettlementResult:
        redemption = self.loyalty_redemption(ctx)
        plan = SettlementPlan(
            method=self.method,
            stored_method=PaymentMethod.CASH.value,
            loyalty_redemption=redemption,
            earn_points=redemption <= ZERO,
        )
        return self.writer.write(ctx, plan)


class GiftCardHandler(SettlementHandler):
    """Gift card as the sole tender or as legs of a split"""

    method = PaymentMethod.GIFT_CARD

    def primary_amount(self, ctx: CheckoutContext) -> Decimal:
        if ctx.request.split_payments:
            return ZERO
        return ctx.totals.chargeable_total

    def validate(self, ctx: CheckoutContext) -> None:
        request = ctx.request
        if not request.split_payments and request.gift_card_id is None:
            raise GiftCardNotFoundError("No gift card selected")

        self.validate_cart(ctx)
        self.validate_loyalty(ctx)
        if request.split_payments:
            self.validate_split_legs(ctx, self.split_methods, require_gift_card=True)
            validate_split(request.split_payments, ctx.totals.chargeable_total, self.split_tolerance)
        self.validate_gift_card_debits(gift_card_debits(request, self.primary_amount(ctx)))

    def settle(self, ctx: CheckoutContext) -> SettlementResult:
        redemption = self.loyalty_redemption(ctx)
        stored = PaymentMethod.SPLIT if ctx.request.split_payments else PaymentMethod.GIFT_CARD
        plan = SettlementPlan(
            method=self.method,
            stored_method=stored.value,
            gift_card_amount=self.primary_amount(ctx),
            loyalty_redemption=redemption,
            earn_points=redemption <= ZERO,
        )
        return self.writer.write(ctx, plan)


class LoyaltyOnlyHandler(SettlementHandler):
    """
    Zero-dollar fast path: discounts cover the whole purchase.

    No tender is involved. Items and inventory are written as usual and the
    redemption covers the total before the loyalty discount.
    """

    method = PaymentMethod.LOYALTY_POINTS

    def validate(self, ctx: CheckoutContext) -> None:
        self.validate_cart(ctx)
        if ctx.totals.loyalty_discount > ZERO:
            if ctx.customer_id is None:
                raise InvalidCartError("Loyalty redemption requires a customer")
            self.validate_loyalty(ctx)

    def settle(self, ctx: CheckoutContext) -> SettlementResult:
        redemption = ctx.pre_loyalty_total if ctx.totals.loyalty_discount > ZERO else ZERO
        plan = SettlementPlan(
            method=self.method,
            stored_method=PaymentMethod.LOYALTY_POINTS.value,
            loyalty_redemption=max(redemption, ZERO),
            earn_points=False,
        )
        return self.writer.write(ctx, plan)
