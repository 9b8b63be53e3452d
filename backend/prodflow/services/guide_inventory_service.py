# Overview: Service-layer operations for inventory attached to production guides.

"""
Guide Inventory

Attaching an item reserves stock through the ledger; withdrawing converts the
reservation into an ISSUE. Every counter change goes through
apply_operation_inner under the item row lock, in the same DB transaction as
the GuideInventory row it belongs to.

Only users assigned to the guide (or holding production.manageAll) may withdraw.
"""

from __future__ import annotations

from ..extensions import db
from ..models import GuideInventory, ProductionStep
from ..validation import ValidationError, NotFoundError, parse_number
from .audit_service import log_audit
from .concurrency import run_with_retry
from .guide_service import get_guide_or_404, ensure_not_archived, record_change, WorkflowError
from .inventory_service import apply_operation_inner, lock_item, notify_if_low_stock
from .permission_service import has_permission, PermissionDeniedError
from prodflow.time_utils import utcnow


def _get_row_or_404(guide_id: int, item_id: int) -> GuideInventory:
    row = db.session.query(GuideInventory).filter_by(guide_id=guide_id, item_id=item_id).first()
    if row is None:
        raise NotFoundError("Item is not attached to this guide")
    return row


def _parse_line(line) -> tuple[int, float, int | None]:
    if not isinstance(line, dict):
        raise ValidationError("Each item must be an object")
    item_id = line.get("itemId", line.get("item_id"))
    if isinstance(item_id, bool) or not isinstance(item_id, int):
        raise ValidationError("itemId must be an integer")
    quantity = parse_number(line.get("quantity"), field="quantity")
    step_id = line.get("stepId", line.get("step_id"))
    if step_id is not None and (isinstance(step_id, bool) or not isinstance(step_id, int)):
        raise ValidationError("stepId must be an integer")
    return item_id, quantity, step_id


def list_guide_inventory(guide_id: int) -> list[dict]:
    guide = get_guide_or_404(guide_id)
    result = []
    for row in guide.inventory:
        data = row.to_dict()
        data["available"] = row.item.available if row.item else None
        result.append(data)
    return result


def _attach_one(guide, item_id: int, quantity: float, step_id: int | None, *, user_id: int) -> GuideInventory:
    if step_id is not None:
        step = db.session.get(ProductionStep, step_id)
        if step is None or step.guide_id != guide.id:
            raise ValidationError("Step does not belong to this guide")

    def _op():
        item = lock_item(item_id)
        row = db.session.query(GuideInventory).filter_by(guide_id=guide.id, item_id=item.id).first()
        reason = f"Guide {guide.barcode}"

        if row is None:
            apply_operation_inner(item, "RESERVE", quantity, user_id=user_id, guide_id=guide.id, reason=reason)
            row = GuideInventory(guide_id=guide.id, item_id=item.id, step_id=step_id, quantity=quantity, reserved=True)
            db.session.add(row)
            record_change(guide, user_id=user_id, change_type="UPDATE", field_name="inventory",
                          new_value=f"{item.name} x {quantity}")
        else:
            if row.is_withdrawn:
                raise WorkflowError(f"{item.name} was already withdrawn for this guide")
            old_quantity = row.quantity
            if row.reserved:
                # Re-reserve the new amount: RELEASE old, RESERVE new
                apply_operation_inner(item, "RELEASE", old_quantity, user_id=user_id, guide_id=guide.id, reason=reason)
                apply_operation_inner(item, "RESERVE", quantity, user_id=user_id, guide_id=guide.id, reason=reason)
            row.quantity = quantity
            if step_id is not None:
                row.step_id = step_id
            record_change(guide, user_id=user_id, change_type="UPDATE", field_name="inventory",
                          old_value=f"{item.name} x {old_quantity}", new_value=f"{item.name} x {quantity}")

        log_audit(user_id=user_id, action="attach_item", module="production", target_id=guide.id,
                  meta={"item_id": item.id, "quantity": quantity})
        db.session.commit()
        return row

    return run_with_retry(_op)


def attach_items(guide_id: int, items, *, user_id: int) -> dict:
    """
    Attach items to a guide, reserving stock.

    Each line commits on its own; failures are collected per item:
    {"success": bool, "results": [...], "errors": [{"itemId", "error"}]}.
    """
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    results, errors = [], []
    for line in items:
        raw_id = line.get("itemId", line.get("item_id")) if isinstance(line, dict) else None
        try:
            item_id, quantity, step_id = _parse_line(line)
            row = _attach_one(guide, item_id, quantity, step_id, user_id=user_id)
            results.append(row.to_dict())
        except ValueError as e:
            errors.append({"itemId": raw_id, "error": str(e)})

    return {"success": not errors, "results": results, "errors": errors}


def detach_item(guide_id: int, item_id: int, *, user_id: int) -> None:
    """Remove an attachment; a still-reserved quantity is RELEASEd."""
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)
    row = _get_row_or_404(guide.id, item_id)

    def _op():
        item = lock_item(item_id)
        if row.reserved and not row.is_withdrawn:
            apply_operation_inner(item, "RELEASE", row.quantity, user_id=user_id, guide_id=guide.id,
                                  reason=f"Detached from guide {guide.barcode}")
        record_change(guide, user_id=user_id, change_type="UPDATE", field_name="inventory",
                      old_value=f"{item.name} x {row.quantity}")
        log_audit(user_id=user_id, action="detach_item", module="production", target_id=guide.id,
                  meta={"item_id": item_id, "quantity": row.quantity, "released": bool(row.reserved)})
        db.session.delete(row)
        db.session.commit()

    run_with_retry(_op)


def set_reservation(guide_id: int, item_id: int, reserved: bool, *, user_id: int) -> GuideInventory:
    """Toggle the reservation with RESERVE/RELEASE. No-op when unchanged."""
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)
    row = _get_row_or_404(guide.id, item_id)
    reserved = bool(reserved)

    if row.is_withdrawn:
        raise WorkflowError("Item was already withdrawn")
    if row.reserved == reserved:
        return row

    def _op():
        item = lock_item(item_id)
        operation = "RESERVE" if reserved else "RELEASE"
        apply_operation_inner(item, operation, row.quantity, user_id=user_id, guide_id=guide.id,
                              reason=f"Guide {guide.barcode}")
        row.reserved = reserved
        log_audit(user_id=user_id, action=operation.lower(), module="production", target_id=guide.id,
                  meta={"item_id": item_id, "quantity": row.quantity})
        db.session.commit()
        return row

    return run_with_retry(_op)


def withdraw_items(guide_id: int, *, user, permissions, item_ids: list[int] | None = None) -> dict:
    """
    Convert reservations into ISSUE transactions.

    Only assigned users (or production.manageAll) may withdraw. Each reserved,
    not yet withdrawn row (optionally limited to item_ids) posts ISSUE and is
    stamped withdrawn_by/withdrawn_date. All rows move in one transaction.
    """
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)

    if user.id not in guide.assigned_user_ids and not has_permission(permissions, "production", "manageAll", 1):
        raise PermissionDeniedError("Only users assigned to this guide can withdraw its items")
    if item_ids is not None and not isinstance(item_ids, list):
        raise ValidationError("itemIds must be a list")

    rows = [
        row for row in guide.inventory
        if row.reserved and not row.is_withdrawn and (item_ids is None or row.item_id in item_ids)
    ]
    if not rows:
        raise WorkflowError("Nothing to withdraw")

    def _op():
        now = utcnow()
        withdrawn = []
        for row in rows:
            item = lock_item(row.item_id)
            tx = apply_operation_inner(item, "ISSUE", row.quantity, user_id=user.id, guide_id=guide.id,
                                       reason=f"Withdrawn for guide {guide.barcode}")
            row.reserved = False
            row.withdrawn_by_id = user.id
            row.withdrawn_date = now
            withdrawn.append({"item_id": row.item_id, "quantity": row.quantity, "transaction_id": tx.id})

        record_change(guide, user_id=user.id, change_type="UPDATE", field_name="inventory",
                      new_value=f"withdrawn {len(withdrawn)} item(s)")
        log_audit(user_id=user.id, action="withdraw_items", module="production", target_id=guide.id,
                  meta={"items": withdrawn})
        db.session.commit()
        return withdrawn

    withdrawn = run_with_retry(_op)

    for entry in withdrawn:
        notify_if_low_stock(entry["item_id"], actor_id=user.id)
    return {"withdrawn": withdrawn, "count": len(withdrawn)}

