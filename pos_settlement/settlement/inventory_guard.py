"""Stock validation before settlement and atomic decrements after it"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from pos_settlement.domain.exceptions import InsufficientStockError, InventoryItemNotFoundError
from pos_settlement.domain.models import CartItem, ItemKind
from pos_settlement.domain.money import as_money
from pos_settlement.infrastructure.database.repositories import InventoryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BarcodeMatch:
    item_id: int
    barcode: str
    name: str
    price: Decimal


class BarcodeLookupCache:
    """
    Barcode -> item cache owned by whoever creates it.

    Stock counts are never cached; only the identity and price of an item.
    Clear it at shift boundaries so price edits are picked up.
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, BarcodeMatch]" = OrderedDict()

    def get(self, barcode: str) -> Optional[BarcodeMatch]:
        match = self._entries.get(barcode)
        if match is not None:
            self._entries.move_to_end(barcode)
        return match

    def put(self, match: BarcodeMatch) -> None:
        self._entries[match.barcode] = match
        self._entries.move_to_end(match.barcode)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped"""
        dropped = len(self._entries)
        self._entries.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._entries)


class InventoryGuard:
    """Keeps inventory from being oversold"""

    def __init__(self, db: Session, barcode_cache: BarcodeLookupCache | None = None):
        self.db = db
        self.repo = InventoryRepository(db)
        self.barcode_cache = barcode_cache if barcode_cache is not None else BarcodeLookupCache()

    def validate_availability(self, items: Iterable[CartItem]) -> None:
        """
        Check every inventory line against current stock before any write.

        Lines for the same item are added up so a cart cannot split one
        oversized request across several lines. Service lines are ignored.

        Raises:
            InventoryItemNotFoundError: If an item no longer exists
            InsufficientStockError: If stock < requested quantity
        """
        requested: Dict[int, int] = {}
        names: Dict[int, Optional[str]] = {}
        for item in items:
            if item.kind != ItemKind.INVENTORY:
                continue
            requested[item.id] = requested.get(item.id, 0) + item.quantity
            names.setdefault(item.id, item.name)

        for item_id, quantity in requested.items():
            row = self.repo.get(item_id)
            if row is None:
                raise InventoryItemNotFoundError(item_id)
            if row.quantity < quantity:
                raise InsufficientStockError(
                    item_id=item_id,
                    available=row.quantity,
                    requested=quantity,
                    name=names[item_id] or row.name,
                )

    def decrement(self, item_id: int, quantity: int) -> bool:
        """
        Take sold units off the shelf with a signed-delta update.

        Returns:
            False if the guarded update matched no row (item gone or stock
            already below quantity); the caller decides how to report it
        """
        adjusted = self.repo.adjust_quantity(item_id, -quantity)
        self.db.commit()

        if not adjusted:
            logger.warning(
                "Inventory decrement matched no row",
                extra={"step": "inventory_decrement", "item_id": item_id, "quantity": quantity},
            )
        return adjusted

    def lookup_barcode(self, barcode: str) -> Optional[BarcodeMatch]:
        match = self.barcode_cache.get(barcode)
        if match is not None:
            return match

        row = self.repo.find_by_barcode(barcode)
        if row is None:
            return None

        match = BarcodeMatch(item_id=row.id, barcode=row.barcode, name=row.name, price=as_money(row.price))
        self.barcode_cache.put(match)
        return match
