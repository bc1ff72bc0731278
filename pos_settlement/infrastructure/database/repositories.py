"""Data access layer for settlement entities"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pos_settlement.domain.models import (
    CartItem,
    GiftCard,
    GiftCardEntryType,
    GiftCardLedgerEntry,
    ItemKind,
    LoyaltyEntryType,
    LoyaltyLedgerEntry,
    LoyaltyProgram,
)
from pos_settlement.domain.money import as_money
from pos_settlement.infrastructure.database.models import (
    CardPayment,
    CardReaderConfiguration,
    Customer,
    GiftCardLedgerEntryRow,
    GiftCardRow,
    InventoryItem,
    LoyaltyLedgerEntryRow,
    LoyaltyProgramRow,
    PaymentSplitRow,
    Receipt,
    SettlementIssue,
    ShiftRow,
    TransactionDiscount,
    TransactionItemRow,
    TransactionRow,
)


def to_gift_card(row: GiftCardRow) -> GiftCard:
    return GiftCard(
        id=row.id,
        card_number=row.card_number,
        initial_balance=as_money(row.initial_balance),
        current_balance=as_money(row.current_balance),
        is_active=row.is_active,
    )


def to_gift_card_entry(row: GiftCardLedgerEntryRow) -> GiftCardLedgerEntry:
    return GiftCardLedgerEntry(
        id=row.id,
        gift_card_id=row.gift_card_id,
        transaction_id=row.transaction_id,
        type=GiftCardEntryType(row.type),
        amount=as_money(row.amount),
        balance_after=as_money(row.balance_after),
        created_at=row.created_at,
        idempotency_key=row.idempotency_key,
    )


def to_loyalty_program(row: LoyaltyProgramRow) -> LoyaltyProgram:
    return LoyaltyProgram(
        id=row.id,
        name=row.name,
        points_per_dollar=as_money(row.points_per_dollar),
        minimum_points_redeem=row.minimum_points_redeem,
        points_value_cents=as_money(row.points_value_cents),
        is_active=row.is_active,
    )


def to_loyalty_entry(row: LoyaltyLedgerEntryRow) -> LoyaltyLedgerEntry:
    return LoyaltyLedgerEntry(
        customer_id=row.customer_id,
        transaction_id=row.transaction_id,
        type=LoyaltyEntryType(row.type),
        points_balance=row.points_balance,
        points_earned=row.points_earned,
        points_redeemed=row.points_redeemed,
        created_at=row.created_at,
    )


class InventoryRepository:
    """Repository for stock counts"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, item_id: int) -> Optional[InventoryItem]:
        return self.db.get(InventoryItem, item_id)

    def find_by_barcode(self, barcode: str) -> Optional[InventoryItem]:
        return self.db.execute(select(InventoryItem).where(InventoryItem.barcode == barcode)).scalar_one_or_none()

    def adjust_quantity(self, item_id: int, delta: int) -> bool:
        """
        Apply a signed delta in a single UPDATE statement.

        The guard in the WHERE clause keeps the count from going negative when
        other registers decrement the same item concurrently.

        Returns:
            True if a row was adjusted
        """
        result = self.db.execute(
            update(InventoryItem)
            .where(InventoryItem.id == item_id, InventoryItem.quantity + delta >= 0)
            .values(quantity=InventoryItem.quantity + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class LoyaltyRepository:
    """Repository for customers, loyalty programs and the points ledger"""

    def __init__(self, db: Session):
        self.db = db

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.db.get(Customer, customer_id)

    def active_program(self, location_id: str | None = None) -> Optional[LoyaltyProgram]:
        """Most recently created active program, scoped to a location when given"""
        query = select(LoyaltyProgramRow).where(LoyaltyProgramRow.is_active.is_(True))
        if location_id is not None:
            query = query.where(
                (LoyaltyProgramRow.location_id == location_id) | (LoyaltyProgramRow.location_id.is_(None))
            )
        query = query.order_by(LoyaltyProgramRow.created_at.desc(), LoyaltyProgramRow.id.desc()).limit(1)
        row = self.db.execute(query).scalar_one_or_none()
        return to_loyalty_program(row) if row else None

    def get_program(self, program_id: int) -> Optional[LoyaltyProgram]:
        row = self.db.get(LoyaltyProgramRow, program_id)
        return to_loyalty_program(row) if row else None

    def ledger_entries(self, customer_id: int) -> List[LoyaltyLedgerEntry]:
        """Customer's ledger in posting order"""
        rows = self.db.execute(
            select(LoyaltyLedgerEntryRow)
            .where(LoyaltyLedgerEntryRow.customer_id == customer_id)
            .order_by(LoyaltyLedgerEntryRow.created_at.asc(), LoyaltyLedgerEntryRow.id.asc())
        ).scalars().all()
        return [to_loyalty_entry(row) for row in rows]

    def add_entry(
        self,
        customer_id: int,
        entry_type: LoyaltyEntryType,
        points_balance: int,
        transaction_id: int | None = None,
        points_earned: int | None = None,
        points_redeemed: int | None = None,
        loyalty_program_id: int | None = None,
        location_id: str | None = None,
        description: str | None = None,
    ) -> LoyaltyLedgerEntryRow:
        row = LoyaltyLedgerEntryRow(
            customer_id=customer_id,
            transaction_id=transaction_id,
            type=entry_type.value,
            points_earned=points_earned,
            points_redeemed=points_redeemed,
            points_balance=points_balance,
            loyalty_program_id=loyalty_program_id,
            location_id=location_id,
            description=description,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def set_cached_points(self, customer_id: int, points: int) -> None:
        self.db.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(loyalty_points=points)
            .execution_options(synchronize_session=False)
        )


class GiftCardRepository:
    """Repository for gift cards and their ledger"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, card_id: int) -> Optional[GiftCard]:
        row = self.db.get(GiftCardRow, card_id)
        return to_gift_card(row) if row else None

    def get_by_number(self, card_number: str) -> Optional[GiftCard]:
        row = self.db.execute(select(GiftCardRow).where(GiftCardRow.card_number == card_number)).scalar_one_or_none()
        return to_gift_card(row) if row else None

    def entries(self, card_id: int, limit: int | None = None) -> List[GiftCardLedgerEntry]:
        """Ledger entries, newest first"""
        query = (
            select(GiftCardLedgerEntryRow)
            .where(GiftCardLedgerEntryRow.gift_card_id == card_id)
            .order_by(GiftCardLedgerEntryRow.created_at.desc(), GiftCardLedgerEntryRow.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return [to_gift_card_entry(row) for row in self.db.execute(query).scalars().all()]

    def find_entry_by_key(self, idempotency_key: str) -> Optional[GiftCardLedgerEntry]:
        row = self.db.execute(
            select(GiftCardLedgerEntryRow).where(GiftCardLedgerEntryRow.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return to_gift_card_entry(row) if row else None

    def create_card(
        self,
        card_number: str,
        initial_balance: Decimal,
        notes: str | None = None,
        location_id: str | None = None,
    ) -> GiftCardRow:
        row = GiftCardRow(
            card_number=card_number,
            initial_balance=initial_balance,
            current_balance=initial_balance,
            is_active=True,
            notes=notes,
            location_id=location_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def add_entry(
        self,
        card_id: int,
        entry_type: GiftCardEntryType,
        amount: Decimal,
        balance_after: Decimal,
        transaction_id: int | None = None,
        idempotency_key: str | None = None,
        location_id: str | None = None,
    ) -> GiftCardLedgerEntryRow:
        row = GiftCardLedgerEntryRow(
            gift_card_id=card_id,
            transaction_id=transaction_id,
            type=entry_type.value,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            location_id=location_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def update_cache(self, card_id: int, balance: Decimal, last_used_at: datetime) -> None:
        self.db.execute(
            update(GiftCardRow)
            .where(GiftCardRow.id == card_id)
            .values(current_balance=balance, last_used_at=last_used_at)
            .execution_options(synchronize_session=False)
        )


class ShiftRepository:
    """Repository for register shifts and reader configuration"""

    def __init__(self, db: Session):
        self.db = db

    def get_active(self, shift_id: int) -> Optional[ShiftRow]:
        row = self.db.get(ShiftRow, shift_id)
        return row if row is not None and row.is_active else None

    def default_reader(self, location_id: str | None) -> Optional[CardReaderConfiguration]:
        query = select(CardReaderConfiguration).where(CardReaderConfiguration.is_default.is_(True))
        if location_id is not None:
            query = query.where(CardReaderConfiguration.location_id == location_id)
        return self.db.execute(query.limit(1)).scalar_one_or_none()


class TransactionRepository:
    """Repository for transactions and the records hanging off them"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(self, **fields) -> TransactionRow:
        """Persist the transaction header"""
        row = TransactionRow(**fields)
        self.db.add(row)
        self.db.flush()  # Get ID without committing
        return row

    def add_items(self, transaction_id: int, items: Iterable[CartItem], location_id: str | None = None) -> None:
        for item in items:
            self.db.add(
                TransactionItemRow(
                    transaction_id=transaction_id,
                    service_id=item.id if item.kind == ItemKind.SERVICE else None,
                    inventory_id=item.id if item.kind == ItemKind.INVENTORY else None,
                    quantity=item.quantity,
                    price=item.unit_price,
                    location_id=location_id,
                )
            )
        self.db.flush()

    def add_split(
        self,
        transaction_id: int,
        payment_method: str,
        amount: Decimal,
        gift_card_id: int | None = None,
        location_id: str | None = None,
    ) -> PaymentSplitRow:
        row = PaymentSplitRow(
            transaction_id=transaction_id,
            payment_method=payment_method,
            amount=amount,
            gift_card_id=gift_card_id,
            location_id=location_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def add_discount(
        self, transaction_id: int, discount_id: str, amount: Decimal, location_id: str | None = None
    ) -> TransactionDiscount:
        row = TransactionDiscount(
            transaction_id=transaction_id,
            discount_id=discount_id,
            discount_amount=amount,
            location_id=location_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def add_card_payment(self, transaction_id: int, amount: Decimal, **details) -> CardPayment:
        row = CardPayment(transaction_id=transaction_id, amount=amount, **details)
        self.db.add(row)
        self.db.flush()
        return row

    def create_receipt(self, transaction_id: int, template: str, location_id: str | None = None) -> Receipt:
        row = Receipt(transaction_id=transaction_id, template=template, location_id=location_id, status="pending")
        self.db.add(row)
        self.db.flush()
        return row

    def get(self, transaction_id: int) -> Optional[TransactionRow]:
        return self.db.get(TransactionRow, transaction_id)

    def splits(self, transaction_id: int) -> List[PaymentSplitRow]:
        return list(
            self.db.execute(
                select(PaymentSplitRow)
                .where(PaymentSplitRow.transaction_id == transaction_id)
                .order_by(PaymentSplitRow.id)
            ).scalars().all()
        )


class SettlementIssueRepository:
    """Repository for post-commit failures awaiting follow-up"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, step: str, transaction_id: int | None, detail: str, reference: str = "") -> SettlementIssue:
        row = SettlementIssue(
            transaction_id=transaction_id,
            step=step,
            reference=reference,
            detail=detail,
            status="open",
            attempts=1,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def open_issues(self, transaction_id: int | None = None) -> List[SettlementIssue]:
        query = select(SettlementIssue).where(SettlementIssue.status == "open")
        if transaction_id is not None:
            query = query.where(SettlementIssue.transaction_id == transaction_id)
        return list(self.db.execute(query.order_by(SettlementIssue.id)).scalars().all())
