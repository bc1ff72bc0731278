"""Payment router: resolves totals, picks the settlement path, and drives the state machine"""

import logging
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from pos_settlement.config import settings
from pos_settlement.domain.exceptions import InvalidCartError, PartialWriteError
from pos_settlement.domain.models import (
    CardPaymentDetails,
    CheckoutRequest,
    PaymentMethod,
    PendingTransaction,
    SettlementResult,
)
from pos_settlement.domain.money import as_money
from pos_settlement.domain.state_machine import SettlementStateMachine
from pos_settlement.domain.totals import calculate_totals, is_zero_dollar, subtotal_of
from pos_settlement.infrastructure.clients.payment_gateway import PaymentGatewayClient
from pos_settlement.infrastructure.clients.terminal import TerminalClient
from pos_settlement.infrastructure.database.repositories import ShiftRepository
from pos_settlement.infrastructure.observability.logging import log_settlement
from pos_settlement.infrastructure.observability.metrics import record_settlement
from pos_settlement.settlement.card import CardHandler, CardReaderHandler, with_intent
from pos_settlement.settlement.gift_card_ledger import GiftCardLedger
from pos_settlement.settlement.handlers import CashHandler, GiftCardHandler, LoyaltyOnlyHandler
from pos_settlement.settlement.inventory_guard import BarcodeLookupCache, InventoryGuard
from pos_settlement.settlement.loyalty_engine import LoyaltyEngine
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.settlement.writer import CheckoutContext, SettlementWriter

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[SettlementResult], None]


class PaymentRouter:
    """
    Entry point for settling a cart.

    Totals and the loyalty preview are resolved first. A checkout whose
    discounts cover the whole purchase takes the zero-dollar fast path no
    matter which tender was selected; everything else goes to the handler for
    the selected tender. Each settlement runs through its own state machine,
    so nothing is written unless validation passed.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayClient,
        terminal: TerminalClient,
        pending_store: PendingTransactionStore,
        barcode_cache: BarcodeLookupCache | None = None,
        request_id: str | None = None,
    ):
        self.db = db
        self.pending_store = pending_store
        self.request_id = request_id
        self.shifts = ShiftRepository(db)

        self.inventory = InventoryGuard(db, barcode_cache)
        self.gift_cards = GiftCardLedger(db)
        self.loyalty = LoyaltyEngine(db)
        self.writer = SettlementWriter(db, self.inventory, self.gift_cards, self.loyalty)

        self.cash = CashHandler(db, self.writer)
        self.gift_card = GiftCardHandler(db, self.writer)
        self.loyalty_only = LoyaltyOnlyHandler(db, self.writer)
        self.card = CardHandler(db, self.writer, gateway, pending_store)
        self.card_reader = CardReaderHandler(self.card, terminal)

        self.last_machine: Optional[SettlementStateMachine] = None

    def prepare(self, request: CheckoutRequest) -> CheckoutContext:
        """Resolve tax rate, location, loyalty program and totals for a request"""
        tax_rate = as_money(request.tax_rate if request.tax_rate is not None else settings.tax_rate)

        location_id = None
        if request.shift is not None:
            shift = self.shifts.get_active(request.shift.id)
            location_id = shift.location_id if shift is not None else request.shift.location_id

        program = self.loyalty.active_program(location_id)
        loyalty_discount = self.loyalty.preview_discount(
            request.customer_id, request.use_points, subtotal_of(request.items), program
        )

        return CheckoutContext(
            request=request,
            totals=calculate_totals(request.items, request.discount, tax_rate, loyalty_discount),
            pre_loyalty_total=calculate_totals(request.items, request.discount, tax_rate).final_total,
            tax_rate=tax_rate,
            program=program,
            location_id=location_id,
        )

    async def checkout(self, request: CheckoutRequest, on_complete: CompletionCallback | None = None) -> SettlementResult:
        """
        Settle a cart with cash, gift card or a card reader.

        Hosted card payments are two-phase and go through create_card_intent
        and finalize_card instead.
        """
        ctx = self.prepare(request)

        if is_zero_dollar(ctx.totals):
            handler = self.loyalty_only
            return await self._run(PaymentMethod.LOYALTY_POINTS, ctx, _sync(handler.validate, ctx),
                                   lambda: handler.settle(ctx), on_complete)

        method = request.payment_method
        if method == PaymentMethod.CASH:
            handler = self.cash
        elif method == PaymentMethod.GIFT_CARD:
            handler = self.gift_card
        elif method == PaymentMethod.CARD_READER:
            return await self._checkout_with_reader(ctx, on_complete)
        else:
            raise InvalidCartError(f"Payment method {method.value} cannot be settled in one step")

        return await self._run(method, ctx, _sync(handler.validate, ctx), lambda: handler.settle(ctx), on_complete)

    async def _checkout_with_reader(self, ctx: CheckoutContext, on_complete: CompletionCallback | None) -> SettlementResult:
        authorized = {}

        async def validate_and_charge():
            self.card_reader.validate(ctx)
            self.card_reader.recheck_balances(ctx)
            authorized["details"] = await self.card_reader.authorize(ctx)

        return await self._run(
            PaymentMethod.CARD_READER,
            ctx,
            validate_and_charge,
            lambda: self.card_reader.settle(ctx, authorized.get("details")),
            on_complete,
        )

    async def create_card_intent(self, request: CheckoutRequest) -> PendingTransaction:
        """Hosted card phase one; nothing is written to the store"""
        return await self.card.create_pending_card_transaction(self.prepare(request))

    async def finalize_card(
        self,
        pending_id: str,
        details: CardPaymentDetails | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> SettlementResult:
        """Hosted card phase two, after the gateway confirmed payment out-of-band"""
        pending = self.pending_store.get(pending_id)
        ctx = self.card.context_for(pending)

        if is_zero_dollar(ctx.totals):
            handler = self.loyalty_only
            result = await self._run(PaymentMethod.LOYALTY_POINTS, ctx, _sync(handler.validate, ctx),
                                     lambda: handler.settle(ctx), on_complete)
        else:
            result = await self._run(
                PaymentMethod.CARD,
                ctx,
                _sync(self.card.validate, ctx),
                lambda: self.card.settle(ctx, with_intent(details, pending)),
                on_complete,
            )

        self.pending_store.discard(pending_id)
        return result

    async def _run(
        self,
        method: PaymentMethod,
        ctx: CheckoutContext,
        validate: Callable[[], Awaitable[None]],
        write: Callable[[], SettlementResult],
        on_complete: CompletionCallback | None,
    ) -> SettlementResult:
        machine = SettlementStateMachine()
        self.last_machine = machine
        machine.select_method(method)
        started = time.perf_counter()

        try:
            machine.begin_validation()
            await validate()
            machine.begin_writing()
            result = write()
            machine.settle()
        except Exception as e:
            machine.fail(str(e))
            record_settlement(method.value, settled=False)
            log_settlement(
                transaction_id=e.transaction_id if isinstance(e, PartialWriteError) else None,
                payment_method=method.value,
                settled=False,
                final_total=float(ctx.totals.final_total),
                duration_ms=(time.perf_counter() - started) * 1000,
                request_id=self.request_id,
            )
            raise

        record_settlement(method.value, settled=True, final_total=ctx.totals.chargeable_total)
        log_settlement(
            transaction_id=result.transaction_id,
            payment_method=method.value,
            settled=True,
            final_total=float(ctx.totals.final_total),
            duration_ms=(time.perf_counter() - started) * 1000,
            warnings=len(result.warnings),
            request_id=self.request_id,
        )

        if on_complete is not None:
            try:
                on_complete(result)
            except Exception as e:
                logger.exception(
                    "Completion callback failed",
                    extra={"step": "completion_callback", "transaction_id": result.transaction_id},
                )
                result.warnings.append(f"completion_callback failed: {e}")

        return result


def _sync(validate: Callable[[CheckoutContext], None], ctx: CheckoutContext) -> Callable[[], Awaitable[None]]:
    async def run() -> None:
        validate(ctx)

    return run
