"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from pos_settlement.domain.models import DiscountKind, ItemKind, PaymentMethod


class CartItemSchema(BaseModel):
    """Single cart line"""

    id: int
    kind: ItemKind
    price: Decimal = Field(..., ge=0, description="Unit price in dollars")
    quantity: int = Field(..., gt=0)
    name: Optional[str] = None


class DiscountSchema(BaseModel):
    id: str = Field(..., min_length=1)
    kind: DiscountKind
    value: Decimal = Field(..., ge=0, description="Percent for percentage discounts, dollars for fixed")


class SplitPaymentSchema(BaseModel):
    """One tender leg of a split payment"""

    method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    gift_card_id: Optional[int] = None


class ShiftSchema(BaseModel):
    id: int
    location_id: Optional[str] = None


class CheckoutRequestSchema(BaseModel):
    """Request body for POST /v1/checkout and POST /v1/checkout/card/intent"""

    items: List[CartItemSchema] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CASH
    customer_id: Optional[int] = None
    use_points: bool = False
    discount: Optional[DiscountSchema] = None
    gift_card_id: Optional[int] = None
    split_payments: List[SplitPaymentSchema] = Field(default_factory=list)
    shift: Optional[ShiftSchema] = None
    cashier_id: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=100)
    tax_rate: Optional[Decimal] = Field(None, ge=0, description="Overrides the configured tax percentage")


class TotalsSchema(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    loyalty_discount: Decimal
    after_discount: Decimal
    tax_amount: Decimal
    final_total: Decimal


class TotalsPreviewResponse(BaseModel):
    """Response for POST /v1/checkout/totals"""

    totals: TotalsSchema
    tax_rate: Decimal
    pre_loyalty_total: Decimal
    zero_dollar: bool


class CheckoutResponse(BaseModel):
    """Response for a settled checkout"""

    transaction_id: int
    payment_method: PaymentMethod
    totals: TotalsSchema
    receipt_id: Optional[int] = None
    loyalty_points_earned: int = 0
    loyalty_points_redeemed: int = 0
    warnings: List[str] = Field(default_factory=list)


class CardIntentResponse(BaseModel):
    """Response for POST /v1/checkout/card/intent"""

    pending_id: str
    client_secret: str
    amount: Decimal
    amount_to_charge: Decimal
    payment_intent_id: Optional[str] = None


class CardFinalizeRequest(BaseModel):
    """Gateway confirmation details for POST /v1/checkout/card/{pending_id}/finalize"""

    payment_intent_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    card_last4: Optional[str] = Field(None, min_length=4, max_length=4)
    card_brand: Optional[str] = None


class GiftCardCreateRequest(BaseModel):
    """Request body for POST /v1/gift-cards"""

    card_number: str = Field(..., min_length=1, max_length=64)
    initial_balance: Decimal = Field(..., ge=0)
    notes: Optional[str] = None
    location_id: Optional[str] = None


class GiftCardResponse(BaseModel):
    id: int
    card_number: str
    initial_balance: Decimal
    balance: Decimal = Field(..., description="Balance resolved from the latest ledger entry")
    is_active: bool


class LoyaltyBalanceResponse(BaseModel):
    customer_id: int
    points_balance: int
    cached_points: int


class SplitLegSchema(BaseModel):
    method: str
    amount: Decimal
    refund_share: Decimal
    adjusted_amount: Decimal
    gift_card_id: Optional[int] = None


class TransactionSplitsResponse(BaseModel):
    """Response for GET /v1/transactions/{transaction_id}/splits"""

    transaction_id: int
    total_amount: Decimal
    refunded_amount: Decimal
    splits: List[SplitLegSchema]


class BarcodeResponse(BaseModel):
    item_id: int
    barcode: str
    name: str
    price: Decimal


class CacheClearedResponse(BaseModel):
    cleared: int
