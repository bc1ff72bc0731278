"""Shared settlement write sequence with commit-then-best-effort side effects"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import ConcurrencyError, DomainException, LoyaltyRedemptionError, PartialWriteError
from pos_settlement.domain.loyalty import point_value
from pos_settlement.domain.models import (
    CardPaymentDetails,
    CheckoutRequest,
    ItemKind,
    LoyaltyProgram,
    PaymentMethod,
    SettlementResult,
    TotalsBreakdown,
)
from pos_settlement.domain.money import ZERO, as_money
from pos_settlement.infrastructure.database.repositories import SettlementIssueRepository, TransactionRepository
from pos_settlement.infrastructure.observability.metrics import record_partial_write
from pos_settlement.settlement.gift_card_ledger import GiftCardLedger
from pos_settlement.settlement.inventory_guard import InventoryGuard
from pos_settlement.settlement.loyalty_engine import LoyaltyEngine

logger = logging.getLogger(__name__)


@dataclass
class CheckoutContext:
    """A checkout with its totals resolved, ready for validation and writing"""

    request: CheckoutRequest
    totals: TotalsBreakdown
    pre_loyalty_total: Decimal
    tax_rate: Decimal
    program: Optional[LoyaltyProgram] = None
    location_id: Optional[str] = None

    @property
    def customer_id(self) -> Optional[int]:
        return self.request.customer_id


@dataclass(frozen=True)
class GiftCardDebit:
    card_id: int
    amount: Decimal
    idempotency_key: Optional[str] = None


@dataclass
class SettlementPlan:
    """What a handler asks the writer to record"""

    method: PaymentMethod
    stored_method: str
    gift_card_amount: Decimal = ZERO
    loyalty_redemption: Decimal = ZERO
    earn_points: bool = True
    card_amount: Decimal = ZERO
    card_details: Optional[CardPaymentDetails] = None
    extra_warnings: List[str] = field(default_factory=list)


def gift_card_debits(request: CheckoutRequest, primary_amount: Decimal = ZERO) -> List[GiftCardDebit]:
    """
    Gift card debits implied by a checkout: the primary card, then every
    split leg that names a card. Leg keys are derived from the request key.
    """
    debits = []
    if request.gift_card_id is not None and primary_amount > ZERO:
        debits.append(GiftCardDebit(request.gift_card_id, as_money(primary_amount), request.idempotency_key))

    for index, leg in enumerate(request.split_payments):
        if leg.gift_card_id is None or leg.method != PaymentMethod.GIFT_CARD:
            continue
        key = f"{request.idempotency_key}:{index}" if request.idempotency_key else None
        debits.append(GiftCardDebit(leg.gift_card_id, as_money(leg.amount), key))
    return debits


def debits_by_card(debits: List[GiftCardDebit]) -> Dict[int, Decimal]:
    totals: Dict[int, Decimal] = {}
    for debit in debits:
        totals[debit.card_id] = totals.get(debit.card_id, ZERO) + debit.amount
    return totals


class SettlementWriter:
    """
    Runs the write sequence every tender shares:

    recheck balances -> transaction -> items -> inventory decrement ->
    discount record -> split legs / gift card / loyalty ledgers ->
    card audit -> receipt

    Only the transaction row and a loyalty redemption are fatal. Every other
    step that fails after the transaction row is committed is logged,
    counted, recorded as an open settlement issue, and reported as a warning.
    """

    def __init__(
        self,
        db: Session,
        inventory: InventoryGuard,
        gift_cards: GiftCardLedger,
        loyalty: LoyaltyEngine,
        receipt_template: str | None = None,
    ):
        self.db = db
        self.inventory = inventory
        self.gift_cards = gift_cards
        self.loyalty = loyalty
        self.transactions = TransactionRepository(db)
        self.issues = SettlementIssueRepository(db)
        self.receipt_template = receipt_template or settings.receipt_default_template

    def write(self, ctx: CheckoutContext, plan: SettlementPlan) -> SettlementResult:
        request = ctx.request
        debits = gift_card_debits(request, plan.gift_card_amount)

        self.recheck_balances(ctx, plan, debits)

        transaction_id = self._insert_transaction(ctx, plan, debits)
        result = SettlementResult(
            transaction_id=transaction_id,
            payment_method=plan.method,
            totals=ctx.totals,
            warnings=list(plan.extra_warnings),
        )

        self._step(result, "transaction_items", lambda: self.transactions.add_items(
            transaction_id, request.items, ctx.location_id
        ))

        for item in request.items:
            if item.kind != ItemKind.INVENTORY:
                continue
            try:
                if not self.inventory.decrement(item.id, item.quantity):
                    self._record_issue(
                        result, "inventory_decrement", f"No stock row adjusted for item {item.id}", str(item.id)
                    )
            except SQLAlchemyError as e:
                self._record_issue(result, "inventory_decrement", str(e), str(item.id))

        if request.discount is not None and ctx.totals.discount_amount > ZERO:
            self._step(result, "discount_record", lambda: self.transactions.add_discount(
                transaction_id, request.discount.id, ctx.totals.discount_amount, ctx.location_id
            ))

        for leg in request.split_payments:
            self._step(result, "payment_split", lambda leg=leg: self.transactions.add_split(
                transaction_id, leg.method.value, as_money(leg.amount), leg.gift_card_id, ctx.location_id
            ))
        if request.split_payments and plan.card_amount > ZERO:
            self._step(result, "payment_split", lambda: self.transactions.add_split(
                transaction_id, plan.method.value, plan.card_amount, None, ctx.location_id
            ))

        for debit in debits:
            self._redeem_gift_card(result, debit, ctx.location_id)

        self._post_loyalty(result, ctx, plan)

        if plan.card_details is not None:
            details = plan.card_details
            self._step(result, "card_audit", lambda: self.transactions.add_card_payment(
                transaction_id,
                plan.card_amount,
                payment_intent_id=details.payment_intent_id,
                payment_method_id=details.payment_method_id,
                card_last4=details.last4,
                card_brand=details.brand,
            ))

        receipt = self._step(result, "receipt", lambda: self.transactions.create_receipt(
            transaction_id, self.receipt_template, ctx.location_id
        ))
        if receipt is not None:
            result.receipt_id = receipt.id

        return result

    def recheck_balances(self, ctx: CheckoutContext, plan: SettlementPlan, debits: List[GiftCardDebit]) -> None:
        """
        Re-read balances immediately before the first write.

        Raises:
            ConcurrencyError: If a balance dropped below what validation saw
        """
        for card_id, amount in debits_by_card(debits).items():
            balance = self.gift_cards.resolve_balance(self.gift_cards.get_card(card_id))
            if amount > balance:
                raise ConcurrencyError(
                    f"Gift card {card_id} balance changed to {balance:.2f}; {amount:.2f} is no longer available"
                )

        if plan.loyalty_redemption > ZERO and ctx.customer_id is not None and ctx.program is not None:
            available = self.loyalty.balance(ctx.customer_id) * point_value(ctx.program)
            if available < ctx.totals.loyalty_discount:
                raise ConcurrencyError(
                    f"Loyalty balance for customer {ctx.customer_id} no longer covers the "
                    f"{ctx.totals.loyalty_discount:.2f} discount"
                )

    def _insert_transaction(self, ctx: CheckoutContext, plan: SettlementPlan, debits: List[GiftCardDebit]) -> int:
        request = ctx.request
        gift_card_id = request.gift_card_id
        if gift_card_id is None and debits:
            gift_card_id = debits[0].card_id

        try:
            row = self.transactions.create_transaction(
                payment_method=plan.stored_method,
                status="completed",
                total_amount=ctx.totals.chargeable_total,
                subtotal=ctx.totals.subtotal,
                tax_amount=ctx.totals.tax_amount,
                tax_rate=ctx.tax_rate,
                discount_total=ctx.totals.discount_amount + ctx.totals.loyalty_discount,
                is_split_payment=bool(request.split_payments),
                use_loyalty_points=plan.loyalty_redemption > ZERO,
                shift_id=request.shift.id if request.shift else None,
                customer_id=request.customer_id,
                gift_card_id=gift_card_id,
                loyalty_program_id=ctx.program.id if ctx.program else None,
                discount_id=request.discount.id if request.discount else None,
                cashier_id=request.cashier_id,
                location_id=ctx.location_id,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PartialWriteError(
                step="transaction", transaction_id=None, message=f"Failed to record transaction: {e}"
            ) from e

        logger.info(
            "Transaction recorded",
            extra={"step": "transaction", "transaction_id": row.id, "payment_method": plan.stored_method},
        )
        return row.id

    def _redeem_gift_card(self, result: SettlementResult, debit: GiftCardDebit, location_id: str | None) -> None:
        try:
            redemption = self.gift_cards.redeem(
                debit.card_id,
                debit.amount,
                transaction_id=result.transaction_id,
                idempotency_key=debit.idempotency_key,
                location_id=location_id,
            )
        except (DomainException, SQLAlchemyError) as e:
            self._record_issue(result, "gift_card_redeem", str(e), str(debit.card_id))
            return

        if not redemption.cache_refreshed:
            self._record_issue(
                result, "gift_card_cache", "Cached gift card balance was not refreshed", str(debit.card_id)
            )

    def _post_loyalty(self, result: SettlementResult, ctx: CheckoutContext, plan: SettlementPlan) -> None:
        if ctx.customer_id is None:
            return

        if plan.loyalty_redemption > ZERO:
            try:
                redemption = self.loyalty.redeem(
                    ctx.customer_id,
                    plan.loyalty_redemption,
                    ctx.program,
                    transaction_id=result.transaction_id,
                    location_id=ctx.location_id,
                )
            except LoyaltyRedemptionError as e:
                self._record_issue(result, "loyalty_redeem", str(e), str(ctx.customer_id))
                raise
            result.loyalty_points_redeemed = redemption.points_to_redeem
            return

        if not plan.earn_points:
            return
        try:
            result.loyalty_points_earned = self.loyalty.earn(
                ctx.customer_id,
                ctx.totals.chargeable_total,
                ctx.program,
                transaction_id=result.transaction_id,
                location_id=ctx.location_id,
            )
        except SQLAlchemyError as e:
            self._record_issue(result, "loyalty_earn", str(e), str(ctx.customer_id))

    def _step(self, result: SettlementResult, step: str, write):
        """Run one best-effort write and commit it; failures become settlement issues"""
        try:
            value = write()
            self.db.commit()
            return value
        except SQLAlchemyError as e:
            self._record_issue(result, step, str(e))
            return None

    def _record_issue(self, result: SettlementResult, step: str, detail: str, reference: str = "") -> None:
        self.db.rollback()
        record_partial_write(step)
        logger.error(
            "Settlement step failed after transaction was recorded",
            extra={"step": step, "transaction_id": result.transaction_id, "reference": reference, "detail": detail},
        )
        result.warnings.append(f"{step} failed: {detail}")

        try:
            self.issues.record(step, result.transaction_id, detail, reference)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to record settlement issue",
                extra={"step": step, "transaction_id": result.transaction_id},
            )

    def record_unsettled_charge(
        self, details: CardPaymentDetails, detail: str, transaction_id: int | None = None
    ) -> None:
        """
        A card was charged but the sale did not finish writing. The intent id
        is logged and kept as an open settlement issue so the charge can be
        reconciled or refunded.
        """
        self.db.rollback()
        record_partial_write("card_charge")
        logger.error(
            "Card charged but settlement did not complete",
            extra={
                "step": "card_charge",
                "transaction_id": transaction_id,
                "payment_intent_id": details.payment_intent_id,
                "detail": detail,
            },
        )

        try:
            self.issues.record("card_charge", transaction_id, detail, details.payment_intent_id or "")
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to record unsettled card charge",
                extra={"step": "card_charge", "payment_intent_id": details.payment_intent_id},
            )
