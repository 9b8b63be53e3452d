# Overview: Barcode generation for inventory items and production guides.

from __future__ import annotations

import secrets

from ..extensions import db
from ..models import InventoryItem, ProductionGuide
from prodflow.time_utils import utcnow


ITEM_BARCODE_PREFIX = "MAG"
ITEM_BARCODE_DIGITS = 8
GUIDE_BARCODE_PREFIX = "PROD"
MAX_ATTEMPTS = 20


def normalize_barcode(value: str) -> str:
    """Trim whitespace; barcodes are compared case-sensitively."""
    return (value or "").strip()


def barcode_in_use(barcode: str, *, exclude_item_id: int | None = None) -> bool:
    """A barcode is unique across items and guides."""
    query = db.session.query(InventoryItem.id).filter(InventoryItem.barcode == barcode)
    if exclude_item_id is not None:
        query = query.filter(InventoryItem.id != exclude_item_id)
    if query.first():
        return True
    return db.session.query(ProductionGuide.id).filter(ProductionGuide.barcode == barcode).first() is not None


def generate_item_barcode() -> str:
    """Item barcode: MAG + 8 random digits, retried until unused."""
    for _ in range(MAX_ATTEMPTS):
        digits = "".join(str(secrets.randbelow(10)) for _ in range(ITEM_BARCODE_DIGITS))
        candidate = f"{ITEM_BARCODE_PREFIX}{digits}"
        if not barcode_in_use(candidate):
            return candidate
    raise RuntimeError("Could not generate a unique item barcode")


def generate_guide_barcode() -> str:
    """
    Sequential per-year guide barcode: PROD-YYYY-NNNN.

    Sequence is the count of existing barcodes for the year plus one,
    skipping forward past numbers freed and re-taken by deletions.
    """
    prefix = f"{GUIDE_BARCODE_PREFIX}-{utcnow().year}-"
    count = (
        db.session.query(db.func.count(ProductionGuide.id))
        .filter(ProductionGuide.barcode.like(f"{prefix}%"))
        .scalar()
        or 0
    )
    seq = count + 1
    for _ in range(MAX_ATTEMPTS):
        candidate = f"{prefix}{seq:04d}"
        if not barcode_in_use(candidate):
            return candidate
        seq += 1
    raise RuntimeError("Could not generate a unique guide barcode")
