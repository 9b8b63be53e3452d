# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/prodflow/routes/inventory.py
"""
Inventory item and ledger routes.

Counters never change through item edits: every change is a ledger operation
(add, remove, reserve, release, return, adjust) that appends a transaction.

SECURITY:
- Read operations require inventory.read
- Item edits require inventory.create / update / delete at level 2
- Stock movements require inventory.update at level 2
- forceRemove and adjust require inventory.manage at level 2
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import InventoryItem
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    parse_pagination,
    ValidationError,
)
from ..decorators import require_auth, require_permission
from prodflow.time_utils import parse_iso_datetime
from . import error_response, arg_bool, DOMAIN_ERRORS

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "barcode", "quantity", "unit", "min_quantity",
        "location", "category", "price", "description",
    },
    required_on_create={"name"},
    aliases={"minQuantity": "min_quantity"},
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _operation_body() -> tuple[object, str | None, int | None]:
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        raise ValidationError("quantity is required")
    guide_id = data.get("guideId", data.get("guide_id"))
    if guide_id is not None and (isinstance(guide_id, bool) or not isinstance(guide_id, int)):
        raise ValidationError("guideId must be an integer")
    return data["quantity"], data.get("reason"), guide_id


def _operation_response(tx):
    item = inventory_service.get_item(tx.item_id, recent=0)
    item.pop("recent_transactions", None)
    return jsonify({"transaction": tx.to_dict(), "item": item}), 200


# =============================================================================
# ITEMS
# =============================================================================

@inventory_bp.get("/items")
@require_auth
@require_permission("inventory", "read")
def list_items():
    """
    Query params:
    - page, limit
    - search: name, barcode, location or description
    - category: exact match
    - low_stock: bool
    """
    try:
        page, limit = parse_pagination(request.args)
        result = inventory_service.list_items(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            category=request.args.get("category"),
            low_stock=arg_bool(request.args, "low_stock"),
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@inventory_bp.get("/categories")
@require_auth
@require_permission("inventory", "read")
def list_categories():
    return jsonify({"categories": inventory_service.list_categories()}), 200


@inventory_bp.get("/items/<int:item_id>")
@require_auth
@require_permission("inventory", "read")
def get_item(item_id: int):
    try:
        return jsonify({"item": inventory_service.get_item(item_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@inventory_bp.post("/items")
@require_auth
@require_permission("inventory", "create", 2)
def create_item():
    """
    Create an item. A missing barcode is generated ("MAG" + 8 digits).
    An initial quantity is posted as an ADD transaction.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=False)
        item = inventory_service.create_item(patch=patch, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"item": item.to_dict()}), 201


@inventory_bp.put("/items/<int:item_id>")
@require_auth
@require_permission("inventory", "update", 2)
def update_item(item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=True)
        item = inventory_service.update_item(item_id, patch=patch, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.delete("/items/<int:item_id>")
@require_auth
@require_permission("inventory", "delete", 2)
def delete_item(item_id: int):
    try:
        inventory_service.delete_item(item_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Item deleted"}), 200


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

@inventory_bp.post("/items/<int:item_id>/add")
@require_auth
@require_permission("inventory", "update", 2)
def add_stock(item_id: int):
    try:
        quantity, reason, _ = _operation_body()
        tx = inventory_service.add_stock(item_id, quantity, user_id=g.current_user.id, reason=reason)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


@inventory_bp.post("/items/<int:item_id>/remove")
@require_auth
@require_permission("inventory", "update", 2)
def remove_stock(item_id: int):
    """
    Remove from available stock. {"forceRemove": true} may eat into
    reservations and requires inventory.manage level 2.
    """
    data = request.get_json(silent=True) or {}
    try:
        quantity, reason, _ = _operation_body()
        tx = inventory_service.remove_stock(
            item_id,
            quantity,
            user_id=g.current_user.id,
            reason=reason,
            force=bool(data.get("forceRemove", data.get("force_remove", False))),
            permissions=g.permissions,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


@inventory_bp.post("/items/<int:item_id>/reserve")
@require_auth
@require_permission("inventory", "update", 2)
def reserve_stock(item_id: int):
    try:
        quantity, reason, guide_id = _operation_body()
        tx = inventory_service.reserve_stock(
            item_id, quantity, user_id=g.current_user.id, guide_id=guide_id, reason=reason
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


@inventory_bp.post("/items/<int:item_id>/release")
@require_auth
@require_permission("inventory", "update", 2)
def release_stock(item_id: int):
    try:
        quantity, reason, guide_id = _operation_body()
        tx = inventory_service.release_stock(
            item_id, quantity, user_id=g.current_user.id, guide_id=guide_id, reason=reason
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


@inventory_bp.post("/items/<int:item_id>/return")
@require_auth
@require_permission("inventory", "update", 2)
def return_stock(item_id: int):
    try:
        quantity, reason, guide_id = _operation_body()
        tx = inventory_service.return_stock(
            item_id, quantity, user_id=g.current_user.id, guide_id=guide_id, reason=reason
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


@inventory_bp.post("/items/<int:item_id>/adjust")
@require_auth
@require_permission("inventory", "manage", 2)
def adjust_stock(item_id: int):
    """
    Set quantity to an absolute value.

    ADJUST refuses to go below reserved; {"force": true} (FORCE) trims
    reservations instead.
    """
    data = request.get_json(silent=True) or {}
    try:
        quantity, reason, _ = _operation_body()
        tx = inventory_service.adjust_stock(
            item_id,
            quantity,
            user_id=g.current_user.id,
            permissions=g.permissions,
            reason=reason,
            force=bool(data.get("force", False)),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return _operation_response(tx)


# =============================================================================
# TRANSACTIONS AND REPORTS
# =============================================================================

@inventory_bp.get("/transactions/all")
@require_auth
@require_permission("inventory", "read")
def list_transactions():
    """
    Query params:
    - page, limit
    - type: comma separated operation names
    - item_id, user_id, guide_id: int
    - search: item name or reason
    - from, to: ISO-8601 dates (date-only "to" includes the whole day)
    """
    try:
        page, limit = parse_pagination(request.args)
        try:
            date_from = parse_iso_datetime(request.args.get("from"))
            date_to = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 dates")

        result = inventory_service.list_transactions(
            page=page,
            limit=limit,
            type=request.args.get("type"),
            item_id=request.args.get("item_id", type=int),
            user_id=request.args.get("user_id", type=int),
            guide_id=request.args.get("guide_id", type=int),
            search=request.args.get("search"),
            date_from=date_from,
            date_to=date_to,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@inventory_bp.get("/items/<int:item_id>/transactions")
@require_auth
@require_permission("inventory", "read")
def item_transactions(item_id: int):
    try:
        page, limit = parse_pagination(request.args)
        return jsonify(inventory_service.get_item_transactions(item_id, page=page, limit=limit)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@inventory_bp.get("/report")
@require_auth
@require_permission("statistics", "viewReports")
def inventory_report():
    report = inventory_service.inventory_report(
        category=request.args.get("category"),
        low_stock=arg_bool(request.args, "low_stock"),
    )
    return jsonify(report), 200
