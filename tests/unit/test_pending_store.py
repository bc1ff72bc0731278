"""Unit tests for the pending card transaction store and the barcode cache"""

import pytest
from datetime import timedelta
from decimal import Decimal
from pos_settlement.domain.exceptions import PendingTransactionNotFound
from pos_settlement.domain.models import PendingTransaction
from pos_settlement.settlement.inventory_guard import BarcodeLookupCache, BarcodeMatch
from pos_settlement.settlement.pending import PendingTransactionStore
from pos_settlement.utils.date_utils import utcnow


def _pending():
    return PendingTransaction(
        amount=Decimal("20"),
        amount_to_charge=Decimal("20"),
        items=[],
        subtotal=Decimal("20"),
        tax_amount=Decimal("0"),
        tax_rate=Decimal("0"),
    )


def test_put_assigns_id_and_get_returns_it():
    store = PendingTransactionStore(ttl_seconds=60)
    pending = store.put(_pending())

    assert pending.id
    assert store.get(pending.id) is pending


def test_unknown_id_raises():
    with pytest.raises(PendingTransactionNotFound):
        PendingTransactionStore(ttl_seconds=60).get("missing")


def test_expired_entries_are_purged():
    store = PendingTransactionStore(ttl_seconds=60)
    pending = store.put(_pending())
    pending.created_at = utcnow() - timedelta(seconds=120)

    with pytest.raises(PendingTransactionNotFound):
        store.get(pending.id)
    assert len(store) == 0


def test_discard_removes_entry():
    store = PendingTransactionStore(ttl_seconds=60)
    pending = store.put(_pending())
    store.discard(pending.id)

    assert len(store) == 0


def test_barcode_cache_evicts_least_recent():
    cache = BarcodeLookupCache(max_entries=2)
    for code in ("A", "B"):
        cache.put(BarcodeMatch(item_id=1, barcode=code, name=code, price=Decimal("1")))
    cache.get("A")
    cache.put(BarcodeMatch(item_id=3, barcode="C", name="C", price=Decimal("1")))

    assert cache.get("B") is None
    assert cache.get("A") is not None
    assert cache.clear() == 2
    assert len(cache) == 0
