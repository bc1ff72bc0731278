"""Card settlement: hosted two-phase intents and card-present readers"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import (
    DomainException,
    GatewayError,
    NoReaderAvailableError,
    PartialWriteError,
    SplitMismatchError,
)
from pos_settlement.domain.models import (
    CardPaymentDetails,
    CheckoutRequest,
    Discount,
    DiscountKind,
    PaymentMethod,
    PendingTransaction,
    SettlementResult,
    Shift,
    TerminalReader,
    TotalsBreakdown,
)
from pos_settlement.domain.money import ZERO, as_money, to_cents
from pos_settlement.domain.split import prepaid_amount
from pos_settlement.domain.totals import calculate_totals
from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient
from pos_settlement.settlement.handlers import SettlementHandler
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.settlement.writer import CheckoutContext, SettlementPlan, gift_card_debits

logger = logging.getLogger(__name__)

FREE_TRANSACTION_SECRET = "free_transaction"


def amount_to_charge(totals: TotalsBreakdown, request: CheckoutRequest) -> Decimal:
    """Remainder left for the card after split legs are pre-paid"""
    return max(totals.chargeable_total - prepaid_amount(request.split_payments), ZERO)


def context_from_pending(pending: PendingTransaction) -> CheckoutContext:
    """Rebuild a checkout context from what phase one stored"""
    discount = None
    if pending.discount_id is not None:
        discount = Discount(id=pending.discount_id, kind=DiscountKind.FIXED, value=pending.discount_amount)

    totals = calculate_totals(pending.items, discount, pending.tax_rate, pending.loyalty_discount)
    pre_loyalty = calculate_totals(pending.items, discount, pending.tax_rate).final_total
    request = CheckoutRequest(
        items=list(pending.items),
        payment_method=PaymentMethod.CARD,
        customer_id=pending.customer_id,
        use_points=pending.use_points,
        discount=discount,
        gift_card_id=pending.gift_card_id,
        split_payments=list(pending.split_payments),
        shift=Shift(id=pending.shift_id, location_id=pending.location_id) if pending.shift_id is not None else None,
        cashier_id=pending.cashier_id,
        idempotency_key=pending.idempotency_key,
        tax_rate=pending.tax_rate,
    )
    return CheckoutContext(
        request=request,
        totals=totals,
        pre_loyalty_total=pre_loyalty,
        tax_rate=as_money(pending.tax_rate),
        location_id=pending.location_id,
    )


class CardHandler(SettlementHandler):
    """
    Hosted card-not-present payments in two phases.

    Phase one validates the cart and reserves a payment intent for the
    remainder after split legs. Phase two runs after the gateway confirms the
    payment out-of-band and performs the shared write sequence.
    """

    method = PaymentMethod.CARD

    def __init__(
        self,
        db,
        writer,
        gateway: PaymentGatewayClient,
        pending_store: PendingTransactionStore,
        split_tolerance=None,
        free_charge_threshold=None,
    ):
        super().__init__(db, writer, split_tolerance)
        self.gateway = gateway
        self.pending_store = pending_store
        self.free_charge_threshold = as_money(
            free_charge_threshold if free_charge_threshold is not None else settings.free_charge_threshold
        )

    def validate(self, ctx: CheckoutContext) -> None:
        request = ctx.request
        self.validate_cart(ctx)
        self.validate_loyalty(ctx)
        if request.split_payments:
            self.validate_split_legs(ctx, self.split_methods)
            prepaid = prepaid_amount(request.split_payments)
            if prepaid - ctx.totals.chargeable_total > self.split_tolerance:
                raise SplitMismatchError(expected=ctx.totals.chargeable_total, actual=prepaid)
            self.validate_gift_card_debits(gift_card_debits(request))

    def is_free(self, amount: Decimal) -> bool:
        return amount <= self.free_charge_threshold

    async def create_pending_card_transaction(self, ctx: CheckoutContext) -> PendingTransaction:
        """
        Validate and reserve a payment intent.

        Remainders at or below the free-charge threshold skip the gateway and
        are marked with the free_transaction client secret.

        Raises:
            SettlementValidationError: Before any gateway call
            GatewayError: If the intent could not be created
        """
        self.validate(ctx)

        request = ctx.request
        charge = amount_to_charge(ctx.totals, request)
        pending = PendingTransaction(
            amount=ctx.totals.chargeable_total,
            amount_to_charge=charge,
            items=list(request.items),
            subtotal=ctx.totals.subtotal,
            tax_amount=ctx.totals.tax_amount,
            tax_rate=ctx.tax_rate,
            customer_id=request.customer_id,
            use_points=request.use_points,
            shift_id=request.shift.id if request.shift else None,
            location_id=ctx.location_id,
            loyalty_program_id=ctx.program.id if ctx.program else None,
            split_payments=list(request.split_payments),
            gift_card_id=request.gift_card_id,
            discount_id=request.discount.id if request.discount else None,
            discount_amount=ctx.totals.discount_amount,
            loyalty_discount=ctx.totals.loyalty_discount,
            cashier_id=request.cashier_id,
            idempotency_key=request.idempotency_key,
        )

        if self.is_free(charge):
            pending.client_secret = FREE_TRANSACTION_SECRET
            logger.info("Card charge fully covered, skipping payment intent", extra={"step": "create_payment_intent"})
        else:
            intent = await self.gateway.create_payment_intent(
                charge,
                metadata={
                    "customer_id": request.customer_id,
                    "location_id": ctx.location_id,
                    "item_count": len(request.items),
                    "is_split": bool(request.split_payments),
                },
            )
            pending.client_secret = intent.client_secret
            pending.payment_intent_id = intent.id

        return self.pending_store.put(pending)

    def plan_for(
        self,
        ctx: CheckoutContext,
        details: CardPaymentDetails | None = None,
        method: PaymentMethod = PaymentMethod.CARD,
    ) -> SettlementPlan:
        charge = amount_to_charge(ctx.totals, ctx.request)
        charged = not self.is_free(charge)
        redemption = self.loyalty_redemption(ctx)
        stored = PaymentMethod.SPLIT if ctx.request.split_payments else method

        return SettlementPlan(
            method=method,
            stored_method=stored.value,
            loyalty_redemption=redemption,
            earn_points=redemption <= ZERO,
            card_amount=charge if charged else ZERO,
            card_details=(details or CardPaymentDetails()) if charged else None,
        )

    def settle(
        self,
        ctx: CheckoutContext,
        details: CardPaymentDetails | None = None,
        method: PaymentMethod = PaymentMethod.CARD,
    ) -> SettlementResult:
        """
        Write path shared by hosted and card-present payments once the card
        has been charged. If the write fails after a real charge, the charge
        is recorded as an open settlement issue before the error propagates.
        """
        plan = self.plan_for(ctx, details, method)
        try:
            return self.writer.write(ctx, plan)
        except (DomainException, SQLAlchemyError) as e:
            if plan.card_details is not None and plan.card_details.payment_intent_id is not None:
                transaction_id = e.transaction_id if isinstance(e, PartialWriteError) else None
                self.writer.record_unsettled_charge(plan.card_details, str(e), transaction_id)
            raise

    def context_for(self, pending: PendingTransaction) -> CheckoutContext:
        ctx = context_from_pending(pending)
        if pending.loyalty_program_id is not None:
            ctx.program = self.customers.get_program(pending.loyalty_program_id)
        return ctx


def with_intent(details: CardPaymentDetails | None, pending: PendingTransaction) -> CardPaymentDetails:
    """Fill in the intent id reserved in phase one when the confirmation omits it"""
    details = details or CardPaymentDetails()
    if details.payment_intent_id is None and pending.payment_intent_id is not None:
        return CardPaymentDetails(
            payment_intent_id=pending.payment_intent_id,
            payment_method_id=details.payment_method_id,
            last4=details.last4,
            brand=details.brand,
        )
    return details


class CardReaderHandler:
    """
    Card-present payments. The terminal service owns authorization, so no
    payment intent is created here; a succeeded charge goes through the
    hosted-card write path.
    """

    method = PaymentMethod.CARD_READER

    def __init__(self, card_handler: CardHandler, terminal: TerminalClient):
        self.card_handler = card_handler
        self.terminal = terminal
        self.shifts = card_handler.shifts

    def validate(self, ctx: CheckoutContext) -> None:
        self.card_handler.validate(ctx)

    async def resolve_reader(self, location_id: str | None) -> TerminalReader:
        """
        Pick a reader: the location's configured default if it is or can be
        brought online, otherwise any online reader.

        Raises:
            NoReaderAvailableError: If no online reader can be found
        """
        config = self.shifts.default_reader(location_id)
        if config is not None:
            try:
                reader = await self.terminal.get_reader(config.reader_id)
                if reader.status != "online":
                    reader = await self.terminal.connect_by_id(config.reader_id)
                if reader.status == "online":
                    return reader
            except GatewayError as e:
                logger.warning(
                    "Default card reader unavailable, scanning for another",
                    extra={"step": "resolve_reader", "reader_id": config.reader_id, "error": str(e)},
                )

        for reader in await self.terminal.list_readers():
            if reader.status == "online":
                return reader

        raise NoReaderAvailableError("No online card reader available")

    async def authorize(self, ctx: CheckoutContext) -> Optional[CardPaymentDetails]:
        """
        Charge the remainder at the reader.

        Returns None when nothing is left to charge.

        Raises:
            NoReaderAvailableError: If no reader can be resolved
            GatewayError: If the terminal reports anything but succeeded
        """
        charge = amount_to_charge(ctx.totals, ctx.request)
        if self.card_handler.is_free(charge):
            return None

        reader = await self.resolve_reader(ctx.location_id)
        result = await self.terminal.process_payment(
            reader.id, to_cents(charge), description=f"POS sale, {len(ctx.request.items)} item(s)"
        )
        if not result.succeeded:
            raise GatewayError(result.error_message or f"Card reader payment {result.status}")

        return CardPaymentDetails(
            payment_intent_id=result.payment_intent_id,
            payment_method_id=result.payment_method_id,
            last4=result.card_last4,
            brand=result.card_brand,
        )

    def recheck_balances(self, ctx: CheckoutContext) -> None:
        """
        Re-read gift card and loyalty balances right before the reader is
        charged, so a lost race fails while nothing has been captured yet.

        Raises:
            ConcurrencyError: If a balance dropped since validation
        """
        plan = self.card_handler.plan_for(ctx, method=PaymentMethod.CARD_READER)
        debits = gift_card_debits(ctx.request, plan.gift_card_amount)
        self.card_handler.writer.recheck_balances(ctx, plan, debits)

    def settle(self, ctx: CheckoutContext, details: CardPaymentDetails | None = None) -> SettlementResult:
        return self.card_handler.settle(ctx, details, method=PaymentMethod.CARD_READER)

    async def process(self, ctx: CheckoutContext) -> SettlementResult:
        """Validate, charge at the reader, and write the sale once the charge succeeded"""
        self.validate(ctx)
        self.recheck_balances(ctx)
        details = await self.authorize(ctx)
        return self.settle(ctx, details)
