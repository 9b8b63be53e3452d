# Overview: Service-layer operations for inventory; ledger operations and item management.

"""
Inventory Ledger Invariants (authoritative)

Counters:
- quantity: total on hand; reserved: held for guides; available = quantity - reserved.
- 0 <= reserved <= quantity after every operation.

Operations (each one InventoryTransaction row + one counter mutation, one DB transaction):
- ADD / RETURN:        n > 0                      quantity += n
- REMOVE:              available >= n             quantity -= n
- RESERVE:             available >= n             reserved += n
- RELEASE:             reserved >= n              reserved -= n
- REMOVE_RESERVED:     reserved >= n              quantity -= n; reserved -= n
- ISSUE:               reserved >= n              same as REMOVE_RESERVED, tied to a guide
- ADJUST:              n >= reserved, level 2     quantity := n (delta recorded)
- FORCE:               n >= 0, level 2            quantity := n; reserved := min(reserved, n)
- FORCE_REMOVE:        n <= quantity, level 2     quantity -= n; reserved := min(reserved, quantity)

Concurrency:
- The item row is locked (FOR UPDATE where supported) and version-checked;
  preconditions are evaluated under the lock. Stale writes are retried by
  run_with_retry; business failures are not.

Audit:
- Every operation writes an audit row in the same transaction.
- Transactions are append-only and survive item deletion (item_name snapshot).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryItem, InventoryTransaction, GuideInventory
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    enforce_rules_item,
    parse_number,
    pagination_dict,
)
from .audit_service import log_audit
from .barcode_service import generate_item_barcode, barcode_in_use, normalize_barcode
from .concurrency import lock_for_update, run_with_retry
from .notification_service import notify_users
from .permission_service import has_permission, users_with_permission, PermissionDeniedError


logger = logging.getLogger(__name__)

OPERATIONS = (
    "ADD",
    "REMOVE",
    "RESERVE",
    "RELEASE",
    "REMOVE_RESERVED",
    "ISSUE",
    "RETURN",
    "ADJUST",
    "FORCE",
    "FORCE_REMOVE",
)
ELEVATED_OPERATIONS = {"ADJUST", "FORCE", "FORCE_REMOVE"}
ABSOLUTE_OPERATIONS = {"ADJUST", "FORCE"}
QUANTITY_DECREASING = {"REMOVE", "REMOVE_RESERVED", "ISSUE", "FORCE_REMOVE"}

# Float tolerance for counter comparisons (units like kg)
EPSILON = 1e-9
PRECISION = 6


class InsufficientStockError(ValidationError):
    """available (or quantity, for FORCE_REMOVE) is below the requested amount."""


class InsufficientReservationError(ValidationError):
    """reserved is below the requested amount."""


def _round(value: float) -> float:
    value = round(value, PRECISION)
    return 0.0 if abs(value) < EPSILON else value


def lock_item(item_id: int) -> InventoryItem:
    item = lock_for_update(db.session.query(InventoryItem).filter(InventoryItem.id == item_id)).first()
    if item is None:
        raise NotFoundError("Item not found")
    return item


def _get_item_or_404(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    return item


def parse_operation_quantity(operation: str, value) -> float:
    """ADJUST/FORCE accept zero (absolute targets); everything else must be positive."""
    return parse_number(value, field="quantity", allow_zero=operation in ABSOLUTE_OPERATIONS)


def apply_operation_inner(
    item: InventoryItem,
    operation: str,
    quantity: float,
    *,
    user_id: int | None,
    guide_id: int | None = None,
    reason: str | None = None,
) -> InventoryTransaction:
    """
    Core ledger logic without locking, retry, audit, or commit.

    Caller must hold the item row lock. Raises before mutating anything.
    Called by apply_operation() and by guide inventory flows that combine
    several operations in one transaction.
    """
    n = quantity
    q = item.quantity or 0.0
    r = item.reserved or 0.0
    available = q - r

    if operation in ("ADD", "RETURN"):
        delta = n
        q += n
    elif operation == "REMOVE":
        if n - available > EPSILON:
            raise InsufficientStockError(
                f"Insufficient stock for {item.name}: available {_round(available)}, requested {n}"
            )
        delta = -n
        q -= n
    elif operation == "RESERVE":
        if n - available > EPSILON:
            raise InsufficientStockError(
                f"Insufficient stock for {item.name}: available {_round(available)}, requested {n}"
            )
        delta = -n
        r += n
    elif operation == "RELEASE":
        if n - r > EPSILON:
            raise InsufficientReservationError(
                f"Insufficient reservation for {item.name}: reserved {_round(r)}, requested {n}"
            )
        delta = n
        r -= n
    elif operation in ("REMOVE_RESERVED", "ISSUE"):
        if n - r > EPSILON:
            raise InsufficientReservationError(
                f"Insufficient reservation for {item.name}: reserved {_round(r)}, requested {n}"
            )
        delta = -n
        q -= n
        r -= n
    elif operation == "ADJUST":
        if r - n > EPSILON:
            raise ValidationError(f"Cannot adjust {item.name} below its reserved quantity ({_round(r)})")
        delta = n - q
        q = n
    elif operation == "FORCE":
        delta = n - q
        q = n
        r = min(r, n)
    elif operation == "FORCE_REMOVE":
        if n - q > EPSILON:
            raise InsufficientStockError(
                f"Insufficient stock for {item.name}: quantity {_round(q)}, requested {n}"
            )
        delta = -n
        q -= n
        r = min(r, q)
    else:
        raise ValidationError(f"Unknown operation: {operation}")

    item.quantity = max(_round(q), 0.0)
    item.reserved = min(max(_round(r), 0.0), item.quantity)

    tx = InventoryTransaction(
        item_id=item.id,
        item_name=item.name,
        user_id=user_id,
        guide_id=guide_id,
        type=operation,
        quantity=_round(delta),
        quantity_after=item.quantity,
        reserved_after=item.reserved,
        reason=reason,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _decreases_quantity(tx: InventoryTransaction) -> bool:
    if tx.type in QUANTITY_DECREASING:
        return True
    return tx.type in ABSOLUTE_OPERATIONS and tx.quantity < 0


def notify_if_low_stock(item_id: int, *, actor_id: int | None) -> int:
    """
    Best effort: tell inventory managers (inventory.manage >= 2) that an item
    fell to or below min_quantity. The actor is excluded.
    """
    try:
        item = db.session.get(InventoryItem, item_id)
        if item is None or not item.is_low_stock:
            return 0
        recipients = users_with_permission("inventory", "manage", 2)
    except SQLAlchemyError:
        logger.warning("Low-stock check failed for item %s", item_id, exc_info=True)
        return 0

    return notify_users(
        recipients,
        f"Low stock: {item.name} ({item.quantity} {item.unit}, minimum {item.min_quantity})",
        link=f"/inventory/{item.id}",
        type="INVENTORY",
        exclude_user_id=actor_id,
    )


def apply_operation(
    *,
    item_id: int,
    operation: str,
    quantity,
    user_id: int | None,
    guide_id: int | None = None,
    reason: str | None = None,
    permissions=None,
) -> InventoryTransaction:
    """
    Run one ledger operation atomically.

    permissions is the caller's PermissionSnapshot; it is only consulted for
    ADJUST/FORCE/FORCE_REMOVE, which need inventory.manage >= 2.
    """
    operation = (operation or "").upper()
    if operation not in OPERATIONS:
        raise ValidationError(f"Unknown operation: {operation}")

    if operation in ELEVATED_OPERATIONS and not has_permission(permissions, "inventory", "manage", 2):
        raise PermissionDeniedError(f"{operation} requires inventory.manage level 2")

    n = parse_operation_quantity(operation, quantity)
    reason = (reason or "").strip() or None

    def _op():
        item = lock_item(item_id)
        tx = apply_operation_inner(item, operation, n, user_id=user_id, guide_id=guide_id, reason=reason)
        log_audit(
            user_id=user_id,
            action=operation.lower(),
            module="inventory",
            target_id=item.id,
            meta={
                "item": item.name,
                "quantity": tx.quantity,
                "quantity_after": tx.quantity_after,
                "reserved_after": tx.reserved_after,
                "guide_id": guide_id,
                "reason": reason,
            },
        )
        db.session.commit()
        return tx

    tx = run_with_retry(_op)

    if _decreases_quantity(tx):
        notify_if_low_stock(item_id, actor_id=user_id)
    return tx


def add_stock(item_id: int, quantity, *, user_id: int, reason: str | None = None) -> InventoryTransaction:
    return apply_operation(item_id=item_id, operation="ADD", quantity=quantity, user_id=user_id, reason=reason)


def remove_stock(
    item_id: int,
    quantity,
    *,
    user_id: int,
    reason: str | None = None,
    force: bool = False,
    permissions=None,
) -> InventoryTransaction:
    """REMOVE from available stock, or FORCE_REMOVE (eats into reservations) when force."""
    return apply_operation(
        item_id=item_id,
        operation="FORCE_REMOVE" if force else "REMOVE",
        quantity=quantity,
        user_id=user_id,
        reason=reason,
        permissions=permissions,
    )


def reserve_stock(item_id: int, quantity, *, user_id: int, guide_id: int | None = None, reason: str | None = None):
    return apply_operation(
        item_id=item_id, operation="RESERVE", quantity=quantity, user_id=user_id, guide_id=guide_id, reason=reason
    )


def release_stock(item_id: int, quantity, *, user_id: int, guide_id: int | None = None, reason: str | None = None):
    return apply_operation(
        item_id=item_id, operation="RELEASE", quantity=quantity, user_id=user_id, guide_id=guide_id, reason=reason
    )


def remove_reserved_stock(item_id: int, quantity, *, user_id: int, guide_id: int | None = None, reason: str | None = None):
    return apply_operation(
        item_id=item_id, operation="REMOVE_RESERVED", quantity=quantity, user_id=user_id, guide_id=guide_id, reason=reason
    )


def issue_stock(item_id: int, quantity, *, user_id: int, guide_id: int | None = None, reason: str | None = None):
    return apply_operation(
        item_id=item_id, operation="ISSUE", quantity=quantity, user_id=user_id, guide_id=guide_id, reason=reason
    )


def return_stock(item_id: int, quantity, *, user_id: int, guide_id: int | None = None, reason: str | None = None):
    return apply_operation(
        item_id=item_id, operation="RETURN", quantity=quantity, user_id=user_id, guide_id=guide_id, reason=reason
    )


def adjust_stock(item_id: int, quantity, *, user_id: int, permissions, reason: str | None = None, force: bool = False):
    """Set quantity to an absolute value. force=True also trims reservations (FORCE)."""
    return apply_operation(
        item_id=item_id,
        operation="FORCE" if force else "ADJUST",
        quantity=quantity,
        user_id=user_id,
        reason=reason,
        permissions=permissions,
    )


# =============================================================================
# ITEM MANAGEMENT
# =============================================================================

def create_item(*, patch: dict, user_id: int) -> InventoryItem:
    """
    Create an item from a validated patch.

    A missing barcode is generated; an initial quantity posts an ADD
    transaction in the same DB transaction.
    """
    patch = dict(patch)
    initial = patch.pop("quantity", None) or 0.0
    enforce_rules_item(patch)

    barcode = normalize_barcode(patch.pop("barcode", None) or "")
    if barcode:
        if barcode_in_use(barcode):
            raise ConflictError("Barcode already in use")
    else:
        barcode = generate_item_barcode()

    def _op():
        item = InventoryItem(barcode=barcode, quantity=0.0, reserved=0.0, **patch)
        db.session.add(item)
        db.session.flush()

        if initial > 0:
            apply_operation_inner(item, "ADD", initial, user_id=user_id, reason="Initial stock")

        log_audit(
            user_id=user_id,
            action="create",
            module="inventory",
            target_id=item.id,
            meta={"name": item.name, "barcode": barcode, "quantity": item.quantity},
        )
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_item(item_id: int, *, patch: dict, user_id: int) -> InventoryItem:
    """
    Update descriptive fields of an item.

    quantity/reserved are rejected by enforce_rules_item: corrections go
    through ADJUST so the transaction log stays complete.
    """
    enforce_rules_item(patch)
    patch = dict(patch)

    if "barcode" in patch:
        patch["barcode"] = normalize_barcode(patch["barcode"] or "")
        if not patch["barcode"]:
            raise ValidationError("barcode cannot be blank")
        if barcode_in_use(patch["barcode"], exclude_item_id=item_id):
            raise ConflictError("Barcode already in use")

    def _op():
        item = lock_item(item_id)
        changes = {}
        for key, value in patch.items():
            old = getattr(item, key)
            if old != value:
                changes[key] = [old, value]
                setattr(item, key, value)

        if changes:
            log_audit(user_id=user_id, action="update", module="inventory", target_id=item.id, meta=changes)
        db.session.commit()
        return item

    item = run_with_retry(_op)
    if "min_quantity" in patch:
        notify_if_low_stock(item.id, actor_id=user_id)
    return item


def delete_item(item_id: int, *, user_id: int) -> None:
    """
    Hard delete. Rejected while the item is attached to a guide or holds
    reservations. Its transactions remain in the log.
    """
    item = _get_item_or_404(item_id)

    attached = db.session.query(GuideInventory.id).filter(GuideInventory.item_id == item.id).first()
    if attached:
        raise ConflictError("Item is attached to a production guide and cannot be deleted")
    if (item.reserved or 0) > EPSILON:
        raise ConflictError("Item has reserved stock and cannot be deleted")

    def _op():
        log_audit(
            user_id=user_id,
            action="delete",
            module="inventory",
            target_id=item.id,
            meta={"name": item.name, "barcode": item.barcode, "quantity": item.quantity},
        )
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


def get_item(item_id: int, *, recent: int = 10) -> dict:
    item = _get_item_or_404(item_id)
    data = item.to_dict()
    txs = (
        db.session.query(InventoryTransaction)
        .filter(InventoryTransaction.item_id == item.id)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .limit(recent)
        .all()
    )
    data["recent_transactions"] = [t.to_dict() for t in txs]
    data["guides"] = [
        {
            "guide_id": gi.guide_id,
            "quantity": gi.quantity,
            "reserved": gi.reserved,
            "withdrawn": gi.is_withdrawn,
        }
        for gi in item.guide_items
    ]
    return data


def _low_stock_filter():
    return db.and_(InventoryItem.min_quantity.isnot(None), InventoryItem.quantity <= InventoryItem.min_quantity)


def _filtered_items(*, search: str | None = None, category: str | None = None, low_stock: bool = False):
    query = db.session.query(InventoryItem)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                InventoryItem.name.ilike(pattern),
                InventoryItem.barcode.ilike(pattern),
                InventoryItem.location.ilike(pattern),
                InventoryItem.description.ilike(pattern),
            )
        )
    if category:
        query = query.filter(InventoryItem.category == category)
    if low_stock:
        query = query.filter(_low_stock_filter())
    return query


def list_items(
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
) -> dict:
    query = _filtered_items(search=search, category=category, low_stock=low_stock)
    total = query.count()
    items = query.order_by(InventoryItem.name, InventoryItem.id).offset((page - 1) * limit).limit(limit).all()

    total_items, total_reserved = db.session.query(
        func.count(InventoryItem.id),
        func.coalesce(func.sum(InventoryItem.reserved), 0.0),
    ).one()
    low = db.session.query(func.count(InventoryItem.id)).filter(_low_stock_filter()).scalar() or 0

    return {
        "items": [i.to_dict() for i in items],
        "stats": {
            "totalItems": total_items,
            "lowStock": low,
            "totalReserved": _round(float(total_reserved)),
        },
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def list_categories() -> list[str]:
    rows = (
        db.session.query(InventoryItem.category)
        .filter(InventoryItem.category.isnot(None), InventoryItem.category != "")
        .distinct()
        .order_by(InventoryItem.category)
        .all()
    )
    return [r[0] for r in rows]


def list_transactions(
    *,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    item_id: int | None = None,
    user_id: int | None = None,
    guide_id: int | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict:
    query = db.session.query(InventoryTransaction)

    if type:
        types = [t.strip().upper() for t in type.split(",") if t.strip()]
        unknown = [t for t in types if t not in OPERATIONS]
        if unknown:
            raise ValidationError(f"Unknown transaction type: {unknown[0]}")
        query = query.filter(InventoryTransaction.type.in_(types))
    if item_id:
        query = query.filter(InventoryTransaction.item_id == item_id)
    if user_id:
        query = query.filter(InventoryTransaction.user_id == user_id)
    if guide_id:
        query = query.filter(InventoryTransaction.guide_id == guide_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(InventoryTransaction.item_name.ilike(pattern), InventoryTransaction.reason.ilike(pattern))
        )
    if date_from:
        query = query.filter(InventoryTransaction.created_at >= date_from)
    if date_to:
        if date_to.hour == 0 and date_to.minute == 0 and date_to.second == 0:
            query = query.filter(InventoryTransaction.created_at < date_to + timedelta(days=1))
        else:
            query = query.filter(InventoryTransaction.created_at <= date_to)

    total = query.count()
    txs = (
        query.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "transactions": [t.to_dict() for t in txs],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def get_item_transactions(item_id: int, *, page: int = 1, limit: int = 50) -> dict:
    # Deleted items keep their history: only require that some record exists
    exists = db.session.get(InventoryItem, item_id) is not None or (
        db.session.query(InventoryTransaction.id).filter(InventoryTransaction.item_id == item_id).first() is not None
    )
    if not exists:
        raise NotFoundError("Item not found")
    return list_transactions(page=page, limit=limit, item_id=item_id)


def stock_status(item: InventoryItem) -> str:
    if (item.quantity or 0) <= 0:
        return "OUT_OF_STOCK"
    if item.is_low_stock:
        return "LOW"
    return "OK"


def inventory_report(*, category: str | None = None, low_stock: bool = False) -> dict:
    """Per-item stock status with totals. Value uses price where set."""
    items = _filtered_items(category=category, low_stock=low_stock).order_by(
        InventoryItem.category, InventoryItem.name
    ).all()

    rows = []
    totals = {
        "items": 0,
        "quantity": 0.0,
        "reserved": 0.0,
        "available": 0.0,
        "value": 0.0,
        "low_stock": 0,
        "out_of_stock": 0,
    }
    for item in items:
        status = stock_status(item)
        value = _round((item.quantity or 0) * item.price) if item.price is not None else None
        row = item.to_dict()
        row["status"] = status
        row["value"] = value
        rows.append(row)

        totals["items"] += 1
        totals["quantity"] += item.quantity or 0
        totals["reserved"] += item.reserved or 0
        totals["available"] += item.available
        totals["value"] += value or 0
        if status == "LOW":
            totals["low_stock"] += 1
        elif status == "OUT_OF_STOCK":
            totals["out_of_stock"] += 1

    for key in ("quantity", "reserved", "available", "value"):
        totals[key] = _round(totals[key])

    return {"items": rows, "totals": totals}
