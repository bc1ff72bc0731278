"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pos_settlement.domain.money import ZERO


class ItemKind(str, Enum):
    SERVICE = "service"
    INVENTORY = "inventory"


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    CARD_READER = "card_reader"
    GIFT_CARD = "gift_card"
    LOYALTY_POINTS = "loyalty_points"
    SPLIT = "split"


class GiftCardEntryType(str, Enum):
    REDEEM = "redeem"
    ACTIVATE = "activate"
    PURCHASE = "purchase"


class LoyaltyEntryType(str, Enum):
    EARN = "earn"
    REDEEM = "redeem"


@dataclass(frozen=True)
class CartItem:
    """Read-only cart line supplied by the register"""

    id: int
    kind: ItemKind
    unit_price: Decimal
    quantity: int
    name: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Discount:
    """Manual discount selected at the register"""

    id: str
    kind: DiscountKind
    value: Decimal


@dataclass(frozen=True)
class TotalsBreakdown:
    """Derived checkout totals, recomputed on every call"""

    subtotal: Decimal
    discount_amount: Decimal
    after_discount: Decimal
    tax_amount: Decimal
    final_total: Decimal
    loyalty_discount: Decimal = ZERO

    @property
    def chargeable_total(self) -> Decimal:
        """Final total clamped at zero, the most any tender may be asked for"""
        return max(self.final_total, ZERO)


@dataclass(frozen=True)
class SplitPayment:
    """One tender leg of a split checkout"""

    method: PaymentMethod
    amount: Decimal
    gift_card_id: Optional[int] = None


@dataclass(frozen=True)
class ProratedSplit:
    """Split leg with its share of refunds applied"""

    method: PaymentMethod
    amount: Decimal
    refund_share: Decimal
    adjusted_amount: Decimal
    gift_card_id: Optional[int] = None


@dataclass(frozen=True)
class Shift:
    id: int
    location_id: Optional[str] = None


@dataclass(frozen=True)
class LoyaltyProgram:
    """Earn and redemption rates for points"""

    id: int
    points_per_dollar: Decimal
    minimum_points_redeem: int
    points_value_cents: Decimal
    is_active: bool = True
    name: Optional[str] = None


@dataclass(frozen=True)
class LoyaltyLedgerEntry:
    customer_id: int
    transaction_id: Optional[int]
    type: LoyaltyEntryType
    points_balance: int
    points_earned: Optional[int] = None
    points_redeemed: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RedemptionPlan:
    """Points redemption sized against an amount to cover"""

    points_to_redeem: int
    redeemed_value: Decimal
    balance_before: int
    balance_after: int


@dataclass(frozen=True)
class GiftCard:
    id: int
    card_number: str
    initial_balance: Decimal
    current_balance: Decimal
    is_active: bool


@dataclass(frozen=True)
class GiftCardLedgerEntry:
    gift_card_id: int
    transaction_id: Optional[int]
    type: GiftCardEntryType
    amount: Decimal
    balance_after: Decimal
    created_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class PaymentIntent:
    """Hosted-card payment intent returned by the gateway"""

    id: str
    client_secret: str


@dataclass(frozen=True)
class TerminalReader:
    id: str
    status: str
    label: Optional[str] = None


@dataclass(frozen=True)
class CardPaymentDetails:
    """Gateway identifiers kept on the transaction for audit"""

    payment_intent_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    last4: Optional[str] = None
    brand: Optional[str] = None


@dataclass(frozen=True)
class TerminalPaymentResult:
    status: str
    payment_intent_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class PendingTransaction:
    """Card checkout awaiting gateway confirmation"""

    amount: Decimal
    amount_to_charge: Decimal
    items: List[CartItem]
    subtotal: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    customer_id: Optional[int] = None
    use_points: bool = False
    shift_id: Optional[int] = None
    location_id: Optional[str] = None
    loyalty_program_id: Optional[int] = None
    split_payments: List[SplitPayment] = field(default_factory=list)
    gift_card_id: Optional[int] = None
    discount_id: Optional[str] = None
    discount_amount: Decimal = ZERO
    loyalty_discount: Decimal = ZERO
    cashier_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_split(self) -> bool:
        return bool(self.split_payments)


@dataclass
class CheckoutRequest:
    """Everything the router needs to settle one cart"""

    items: List[CartItem]
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    use_points: bool = False
    discount: Optional[Discount] = None
    gift_card_id: Optional[int] = None
    split_payments: List[SplitPayment] = field(default_factory=list)
    shift: Optional[Shift] = None
    cashier_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    tax_rate: Optional[Decimal] = None


@dataclass
class SettlementResult:
    """Outcome of a finished settlement"""

    transaction_id: int
    payment_method: PaymentMethod
    totals: TotalsBreakdown
    receipt_id: Optional[int] = None
    loyalty_points_earned: int = 0
    loyalty_points_redeemed: int = 0
    warnings: List[str] = field(default_factory=list)
