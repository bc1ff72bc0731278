"""Barcode lookup backed by the application's barcode cache"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pos_settlement.api.dependencies import get_barcode_cache
from pos_settlement.api.v1.schemas import BarcodeResponse, CacheClearedResponse
from pos_settlement.infrastructure.database.session import get_db
from pos_settlement.settlement.inventory_guard import BarcodeLookupCache, InventoryGuard

router = APIRouter()


@router.get("/inventory/barcode/{barcode}", response_model=BarcodeResponse)
def lookup_barcode(
    barcode: str,
    db: Session = Depends(get_db),
    cache: BarcodeLookupCache = Depends(get_barcode_cache),
):
    match = InventoryGuard(db, cache).lookup_barcode(barcode)
    if match is None:
        raise HTTPException(status_code=404, detail="No inventory item with that barcode")

    return BarcodeResponse(item_id=match.item_id, barcode=match.barcode, name=match.name, price=match.price)


@router.delete("/inventory/barcode-cache", response_model=CacheClearedResponse)
def clear_barcode_cache(cache: BarcodeLookupCache = Depends(get_barcode_cache)):
    """Signalled at shift boundaries"""
    cleared = cache.clear()
    logging.info("Barcode cache cleared", extra={"entries": cleared})
    return CacheClearedResponse(cleared=cleared)
