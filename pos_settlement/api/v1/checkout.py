"""POST /v1/checkout - settle a cart, plus totals preview and the hosted-card phases"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from pos_settlement.api.dependencies import get_payment_router, get_request_id
from pos_settlement.api.v1.errors import http_error_for
from pos_settlement.api.v1.schemas import (
    CardFinalizeRequest,
    CardIntentResponse,
    CheckoutRequestSchema,
    CheckoutResponse,
    TotalsPreviewResponse,
    TotalsSchema,
)
from pos_settlement.domain.exceptions import DomainException
from pos_settlement.domain.models import (
    CardPaymentDetails,
    CartItem,
    CheckoutRequest,
    Discount,
    SettlementResult,
    Shift,
    SplitPayment,
    TotalsBreakdown,
)
from pos_settlement.domain.totals import is_zero_dollar
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.router import PaymentRouter

router = APIRouter()


def to_checkout_request(body: CheckoutRequestSchema) -> CheckoutRequest:
    return CheckoutRequest(
        items=[
            CartItem(id=item.id, kind=item.kind, unit_price=item.price, quantity=item.quantity, name=item.name)
            for item in body.items
        ],
        payment_method=body.payment_method,
        customer_id=body.customer_id,
        use_points=body.use_points,
        discount=Discount(id=body.discount.id, kind=body.discount.kind, value=body.discount.value)
        if body.discount
        else None,
        gift_card_id=body.gift_card_id,
        split_payments=[
            SplitPayment(method=leg.method, amount=leg.amount, gift_card_id=leg.gift_card_id)
            for leg in body.split_payments
        ],
        shift=Shift(id=body.shift.id, location_id=body.shift.location_id) if body.shift else None,
        cashier_id=body.cashier_id,
        idempotency_key=body.idempotency_key,
        tax_rate=body.tax_rate,
    )


def to_totals_schema(totals: TotalsBreakdown) -> TotalsSchema:
    return TotalsSchema(
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        loyalty_discount=totals.loyalty_discount,
        after_discount=totals.after_discount,
        tax_amount=totals.tax_amount,
        final_total=totals.final_total,
    )


def to_checkout_response(result: SettlementResult) -> CheckoutResponse:
    return CheckoutResponse(
        transaction_id=result.transaction_id,
        payment_method=result.payment_method,
        totals=to_totals_schema(result.totals),
        receipt_id=result.receipt_id,
        loyalty_points_earned=result.loyalty_points_earned,
        loyalty_points_redeemed=result.loyalty_points_redeemed,
        warnings=result.warnings,
    )


def _fail(error: Exception, db: Session, request_id: str) -> HTTPException:
    db.rollback()
    if isinstance(error, DomainException):
        logging.warning(f"Checkout rejected: {error}", extra={"request_id": request_id})
        return http_error_for(error)

    logging.exception(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/checkout/totals", response_model=TotalsPreviewResponse)
def preview_totals(
    request_body: CheckoutRequestSchema,
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """Totals the register should display, including the loyalty preview"""
    ctx = payment_router.prepare(to_checkout_request(request_body))
    return TotalsPreviewResponse(
        totals=to_totals_schema(ctx.totals),
        tax_rate=ctx.tax_rate,
        pre_loyalty_total=ctx.pre_loyalty_total,
        zero_dollar=is_zero_dollar(ctx.totals),
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    request_body: CheckoutRequestSchema,
    request: Request,
    db: Session = Depends(get_db),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """
    Settle a cart with cash, gift card or the card reader.

    Flow:
    1. Compute totals and the loyalty discount preview
    2. Zero-dollar carts settle as loyalty-only regardless of the tender
    3. Validate stock, shift and balances before anything is written
    4. Write the transaction, then the best-effort side effects
    5. Return the settlement; failed side effects are listed as warnings
    """
    request_id = get_request_id(request)
    try:
        result = await payment_router.checkout(to_checkout_request(request_body))
    except Exception as e:
        raise _fail(e, db, request_id)

    return to_checkout_response(result)


@router.post("/checkout/card/intent", response_model=CardIntentResponse)
async def create_card_intent(
    request_body: CheckoutRequestSchema,
    request: Request,
    db: Session = Depends(get_db),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """Hosted card phase one: validate the cart and reserve a payment intent"""
    request_id = get_request_id(request)
    try:
        pending = await payment_router.create_card_intent(to_checkout_request(request_body))
    except Exception as e:
        raise _fail(e, db, request_id)

    return CardIntentResponse(
        pending_id=pending.id,
        client_secret=pending.client_secret,
        amount=pending.amount,
        amount_to_charge=pending.amount_to_charge,
        payment_intent_id=pending.payment_intent_id,
    )


@router.post("/checkout/card/{pending_id}/finalize", response_model=CheckoutResponse)
async def finalize_card_payment(
    pending_id: str,
    request: Request,
    request_body: CardFinalizeRequest | None = None,
    db: Session = Depends(get_db),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """Hosted card phase two, called once the gateway has confirmed the payment"""
    request_id = get_request_id(request)
    details = None
    if request_body is not None:
        details = CardPaymentDetails(
            payment_intent_id=request_body.payment_intent_id,
            payment_method_id=request_body.payment_method_id,
            last4=request_body.card_last4,
            brand=request_body.card_brand,
        )

    try:
        result = await payment_router.finalize_card(pending_id, details)
    except Exception as e:
        raise _fail(e, db, request_id)

    return to_checkout_response(result)
