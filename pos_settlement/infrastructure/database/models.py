"""SQLAlchemy ORM models for the shared point-of-sale store"""

from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Numeric, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from pos_settlement.utils.date_utils import utcnow

Base = declarative_base()

Money = Numeric(14, 4, asdecimal=True)


class InventoryItem(Base):
    """Stock-tracked product; quantity only moves through signed adjustments"""

    __tablename__ = "inventory_item"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    barcode = Column(String(64), nullable=True, unique=True, index=True)
    price = Column(Money, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=0)
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Customer(Base):
    """Customer with a cached loyalty balance mirrored from the ledger"""

    __tablename__ = "customer"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    loyalty_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loyalty_entries = relationship("LoyaltyLedgerEntryRow", back_populates="customer")


class LoyaltyProgramRow(Base):
    """Loyalty program configuration"""

    __tablename__ = "loyalty_program"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=True)
    points_per_dollar = Column(Numeric(10, 4), nullable=False, default=1)
    minimum_points_redeem = Column(Integer, nullable=False, default=100)
    points_value_cents = Column(Numeric(10, 4), nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class LoyaltyLedgerEntryRow(Base):
    """Append-only loyalty points ledger"""

    __tablename__ = "loyalty_ledger_entry"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=True)
    loyalty_program_id = Column(Integer, ForeignKey("loyalty_program.id"), nullable=True)
    type = Column(Text, nullable=False)
    points_earned = Column(Integer, nullable=True)
    points_redeemed = Column(Integer, nullable=True)
    points_balance = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    customer = relationship("Customer", back_populates="loyalty_entries")


class GiftCardRow(Base):
    """Store-issued gift card; current_balance caches the latest ledger entry"""

    __tablename__ = "gift_card"

    id = Column(Integer, primary_key=True)
    card_number = Column(String(64), nullable=False, unique=True, index=True)
    initial_balance = Column(Money, nullable=False)
    current_balance = Column(Money, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    location_id = Column(Text, nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries = relationship("GiftCardLedgerEntryRow", back_populates="gift_card", order_by="GiftCardLedgerEntryRow.id")


class GiftCardLedgerEntryRow(Base):
    """Append-only gift card ledger; never updated or deleted"""

    __tablename__ = "gift_card_ledger_entry"

    id = Column(Integer, primary_key=True)
    gift_card_id = Column(Integer, ForeignKey("gift_card.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=True)
    type = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    idempotency_key = Column(String(128), nullable=True, unique=True)
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    gift_card = relationship("GiftCardRow", back_populates="entries")


class ShiftRow(Base):
    """Register shift; cash settlement requires an active one"""

    __tablename__ = "shift"

    id = Column(Integer, primary_key=True)
    location_id = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CardReaderConfiguration(Base):
    """Saved card-present reader per location"""

    __tablename__ = "card_reader_configuration"

    id = Column(Integer, primary_key=True)
    reader_id = Column(Text, nullable=False)
    location_id = Column(Text, nullable=True, index=True)
    is_default = Column(Boolean, nullable=False, default=False)
    label = Column(Text, nullable=True)


class TransactionRow(Base):
    """Finalized sale; immutable apart from refunded_amount"""

    __tablename__ = "pos_transaction"

    id = Column(Integer, primary_key=True)
    payment_method = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="completed")
    total_amount = Column(Money, nullable=False)
    subtotal = Column(Money, nullable=False)
    tax_amount = Column(Money, nullable=False)
    tax_rate = Column(Numeric(8, 4), nullable=False)
    discount_total = Column(Money, nullable=False, default=0)
    refunded_amount = Column(Money, nullable=False, default=0)
    is_split_payment = Column(Boolean, nullable=False, default=False)
    use_loyalty_points = Column(Boolean, nullable=False, default=False)
    shift_id = Column(Integer, ForeignKey("shift.id"), nullable=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=True)
    gift_card_id = Column(Integer, ForeignKey("gift_card.id"), nullable=True)
    loyalty_program_id = Column(Integer, ForeignKey("loyalty_program.id"), nullable=True)
    discount_id = Column(Text, nullable=True)
    cashier_id = Column(Text, nullable=True)
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship("TransactionItemRow", back_populates="transaction")
    splits = relationship("PaymentSplitRow", back_populates="transaction", order_by="PaymentSplitRow.id")


class TransactionItemRow(Base):
    """Sold line; exactly one of service_id / inventory_id is set"""

    __tablename__ = "transaction_item"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=False, index=True)
    service_id = Column(Integer, nullable=True)
    inventory_id = Column(Integer, ForeignKey("inventory_item.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Money, nullable=False)
    location_id = Column(Text, nullable=True)

    transaction = relationship("TransactionRow", back_populates="items")


class PaymentSplitRow(Base):
    """One tender leg of a split transaction"""

    __tablename__ = "payment_split"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=False, index=True)
    payment_method = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    gift_card_id = Column(Integer, ForeignKey("gift_card.id"), nullable=True)
    location_id = Column(Text, nullable=True)

    transaction = relationship("TransactionRow", back_populates="splits")


class TransactionDiscount(Base):
    """Manual discount applied to a transaction"""

    __tablename__ = "transaction_discount"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=False, index=True)
    discount_id = Column(Text, nullable=False)
    discount_amount = Column(Money, nullable=False)
    location_id = Column(Text, nullable=True)


class CardPayment(Base):
    """Gateway identifiers recorded for audit of a card-settled transaction"""

    __tablename__ = "card_payment"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    payment_intent_id = Column(Text, nullable=True)
    payment_method_id = Column(Text, nullable=True)
    payment_status = Column(Text, nullable=False, default="succeeded")
    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Receipt(Base):
    """Receipt stub; rendering and printing happen downstream"""

    __tablename__ = "receipt"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=False, index=True)
    template = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    location_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SettlementIssue(Base):
    """Follow-up queue for side effects that failed after a sale was committed"""

    __tablename__ = "settlement_issue"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("pos_transaction.id"), nullable=True, index=True)
    step = Column(Text, nullable=False)
    reference = Column(Text, nullable=False, default="")
    detail = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="open")
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
