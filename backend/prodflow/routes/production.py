# Overview: Flask API routes for production operations; parses input and returns JSON responses.

# backend/prodflow/routes/production.py
"""
Production guide, step, work-session and guide-inventory routes.

SECURITY:
- Reads require production.read
- Guide edits require production.create / update / delete at level 2
- Assignment requires production.assign at level 2
- Time tracking requires production.work; manual entries need production.manualWork level 2
- Withdrawing stock is limited to assigned users (or production.manageAll)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ProductionGuide, ProductionStep
from ..services import guide_service, step_service, work_service, guide_inventory_service
from ..services.permission_service import has_permission
from ..validation import ModelValidationPolicy, validate_payload, parse_pagination, ValidationError
from ..decorators import require_auth, require_permission, require_any_permission
from . import error_response, arg_bool, DOMAIN_ERRORS

GUIDE_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "priority", "status", "due_date"},
    required_on_create={"title"},
    aliases={"dueDate": "due_date"},
)

STEP_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "order", "estimated_time", "assigned_to_role_id", "status"},
    required_on_create={"title"},
    aliases={"estimatedTime": "estimated_time", "assignedToRoleId": "assigned_to_role_id"},
)

production_bp = Blueprint("production", __name__, url_prefix="/api/production")


def _pop(data: dict, *keys, default=None):
    """Remove the first present key (camelCase or snake_case) and return its value."""
    value = default
    found = False
    for key in keys:
        if key in data:
            v = data.pop(key)
            if not found:
                value, found = v, True
    return value


def _int_list(value, field: str) -> list[int] | None:
    if value is None:
        return None
    if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
        raise ValidationError(f"{field} must be a list of integers")
    return value


# =============================================================================
# GUIDES
# =============================================================================

@production_bp.get("/guides")
@require_auth
@require_permission("production", "read")
def list_guides():
    """
    Query params:
    - page, limit
    - status: comma separated statuses (ARCHIVED hidden unless asked for)
    - priority, search
    - include_archived: bool
    - mine: bool, only guides assigned to the caller
    """
    try:
        page, limit = parse_pagination(request.args)
        result = guide_service.list_guides(
            page=page,
            limit=limit,
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            search=request.args.get("search"),
            include_archived=arg_bool(request.args, "include_archived"),
            assigned_user_id=g.current_user.id if arg_bool(request.args, "mine") else None,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@production_bp.get("/guides/<int:guide_id>")
@require_auth
@require_permission("production", "read")
def get_guide(guide_id: int):
    try:
        return jsonify({"guide": guide_service.get_guide(guide_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@production_bp.post("/guides")
@require_auth
@require_permission("production", "create", 2)
def create_guide():
    """
    Request body: title (required), description, priority, dueDate, assignedUserIds.
    The guide starts in DRAFT with a generated PROD-YYYY-NNNN barcode.
    """
    data = dict(request.get_json(silent=True) or {})

    try:
        assigned = _int_list(_pop(data, "assignedUserIds", "assigned_user_ids"), "assignedUserIds")
        patch = validate_payload(model=ProductionGuide, payload=data, policy=GUIDE_POLICY, partial=False)
        guide = guide_service.create_guide(patch=patch, user_id=g.current_user.id, assigned_user_ids=assigned)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create guide")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"guide": guide.to_dict(include_details=True)}), 201


@production_bp.put("/guides/<int:guide_id>")
@require_auth
@require_permission("production", "update", 2)
def update_guide(guide_id: int):
    data = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=ProductionGuide, payload=data, policy=GUIDE_POLICY, partial=True)
        guide = guide_service.update_guide(guide_id, patch=patch, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update guide")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"guide": guide.to_dict(include_details=True)}), 200


@production_bp.delete("/guides/<int:guide_id>")
@require_auth
@require_permission("production", "delete", 2)
def delete_guide(guide_id: int):
    """Deleting a guide releases its reserved stock in the same transaction."""
    try:
        released = guide_service.delete_guide(guide_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Guide deleted", "released": released}), 200


@production_bp.post("/guides/<int:guide_id>/archive")
@require_auth
@require_permission("production", "update", 2)
def archive_guide(guide_id: int):
    try:
        guide = guide_service.archive_guide(guide_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"guide": guide.to_dict()}), 200


@production_bp.post("/guides/<int:guide_id>/restore")
@require_auth
@require_permission("production", "update", 2)
def restore_guide(guide_id: int):
    try:
        guide = guide_service.restore_guide(guide_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"guide": guide.to_dict()}), 200


@production_bp.post("/guides/<int:guide_id>/assign")
@require_auth
@require_permission("production", "assign", 2)
def assign_users(guide_id: int):
    """Request body: {"userIds": [...], "replace": false}"""
    data = request.get_json(silent=True) or {}
    try:
        user_ids = _int_list(data.get("userIds", data.get("user_ids")), "userIds")
        if user_ids is None:
            raise ValidationError("userIds is required")
        guide = guide_service.assign_users(
            guide_id,
            user_ids,
            user_id=g.current_user.id,
            replace=bool(data.get("replace", False)),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"guide": guide.to_dict(include_details=True)}), 200


@production_bp.delete("/guides/<int:guide_id>/assign/<int:user_id>")
@require_auth
@require_permission("production", "assign", 2)
def unassign_user(guide_id: int, user_id: int):
    try:
        guide_service.unassign_user(guide_id, user_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "User unassigned"}), 200


@production_bp.get("/guides/<int:guide_id>/history")
@require_auth
@require_permission("production", "read")
def guide_history(guide_id: int):
    try:
        return jsonify({"history": guide_service.get_change_history(guide_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


# =============================================================================
# STEPS
# =============================================================================

@production_bp.post("/guides/<int:guide_id>/steps")
@require_auth
@require_permission("production", "update", 2)
def add_step(guide_id: int):
    data = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=ProductionStep, payload=data, policy=STEP_POLICY, partial=False)
        step = step_service.add_step(guide_id, patch=patch, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add step")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"step": step.to_dict()}), 201


@production_bp.put("/steps/<int:step_id>")
@require_auth
@require_any_permission(("production", "update", 2), ("production", "work", 1))
def update_step(step_id: int):
    """
    Step fields plus optional notification controls:
    notifyCreator, notifyRole, recipientIds, message.

    Holders of production.work alone may only change the status.
    """
    data = dict(request.get_json(silent=True) or {})

    try:
        notify_creator = bool(_pop(data, "notifyCreator", "notify_creator", default=False))
        notify_role = bool(_pop(data, "notifyRole", "notify_role", default=False))
        recipient_ids = _int_list(_pop(data, "recipientIds", "recipient_ids"), "recipientIds")
        message = _pop(data, "message")

        patch = validate_payload(model=ProductionStep, payload=data, policy=STEP_POLICY, partial=True)
        if set(patch) - {"status"} and not has_permission(g.permissions, "production", "update", 2):
            return jsonify({
                "error": "Permission denied",
                "required_permission": "production.update",
                "required_level": 2,
            }), 403

        step = step_service.update_step(
            step_id,
            patch=patch,
            user_id=g.current_user.id,
            notify_creator=notify_creator,
            notify_role=notify_role,
            recipient_ids=recipient_ids,
            message=message,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update step")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"step": step.to_dict()}), 200


@production_bp.delete("/steps/<int:step_id>")
@require_auth
@require_permission("production", "update", 2)
def delete_step(step_id: int):
    try:
        step_service.delete_step(step_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Step deleted"}), 200


@production_bp.post("/steps/<int:step_id>/advance")
@require_auth
@require_any_permission(("production", "update", 2), ("production", "work", 1))
def advance_step(step_id: int):
    """PENDING -> IN_PROGRESS -> COMPLETED -> PENDING."""
    try:
        step = step_service.advance_step(step_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"step": step.to_dict(), "guide_status": step.guide.status}), 200


@production_bp.post("/steps/<int:step_id>/revert")
@require_auth
@require_any_permission(("production", "update", 2), ("production", "work", 1))
def revert_step(step_id: int):
    try:
        step = step_service.revert_step(step_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"step": step.to_dict(), "guide_status": step.guide.status}), 200


@production_bp.get("/steps/<int:step_id>/comments")
@require_auth
@require_permission("production", "read")
def list_comments(step_id: int):
    try:
        return jsonify({"comments": step_service.list_comments(step_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@production_bp.post("/steps/<int:step_id>/comments")
@require_auth
@require_permission("production", "read")
def add_comment(step_id: int):
    """Request body: {"content", "recipientIds"}"""
    data = request.get_json(silent=True) or {}
    try:
        comment = step_service.add_comment(
            step_id,
            user_id=g.current_user.id,
            content=data.get("content"),
            recipient_ids=data.get("recipientIds", data.get("recipient_ids")),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"comment": comment.to_dict()}), 201


# =============================================================================
# WORK SESSIONS
# =============================================================================

@production_bp.post("/steps/<int:step_id>/work/start")
@require_auth
@require_permission("production", "work")
def start_work(step_id: int):
    data = request.get_json(silent=True) or {}
    try:
        session = work_service.start_work(
            step_id, user=g.current_user, permissions=g.permissions, note=data.get("note")
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict()}), 201


@production_bp.post("/steps/<int:step_id>/work/end")
@require_auth
@require_permission("production", "work")
def end_work(step_id: int):
    """Request body: {"note", "completeStep"}"""
    data = request.get_json(silent=True) or {}
    try:
        session = work_service.end_work(
            step_id,
            user=g.current_user,
            note=data.get("note"),
            complete_step=bool(data.get("completeStep", data.get("complete_step", False))),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict(), "step": session.step.to_dict()}), 200


@production_bp.post("/steps/<int:step_id>/work/manual")
@require_auth
@require_permission("production", "manualWork", 2)
def add_manual_work(step_id: int):
    """Request body: {"minutes", "note"}"""
    data = request.get_json(silent=True) or {}
    try:
        session = work_service.add_manual_work(
            step_id,
            user=g.current_user,
            permissions=g.permissions,
            minutes=data.get("minutes"),
            note=data.get("note"),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict(), "step": session.step.to_dict()}), 201


@production_bp.get("/steps/<int:step_id>/work")
@require_auth
@require_permission("production", "read")
def list_work_sessions(step_id: int):
    try:
        return jsonify(work_service.list_work_sessions(step_id)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@production_bp.delete("/work-sessions/<int:session_id>")
@require_auth
@require_permission("production", "work")
def delete_work_session(session_id: int):
    try:
        work_service.delete_work_session(session_id, user_id=g.current_user.id, permissions=g.permissions)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Work session deleted"}), 200


@production_bp.get("/work/active")
@require_auth
@require_permission("production", "work")
def active_sessions():
    return jsonify({"sessions": work_service.get_active_sessions(g.current_user.id)}), 200


# =============================================================================
# GUIDE INVENTORY
# =============================================================================

@production_bp.get("/guides/<int:guide_id>/inventory")
@require_auth
@require_permission("production", "read")
def list_guide_inventory(guide_id: int):
    try:
        return jsonify({"inventory": guide_inventory_service.list_guide_inventory(guide_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@production_bp.post("/guides/<int:guide_id>/inventory")
@require_auth
@require_permission("production", "update", 2)
def attach_inventory(guide_id: int):
    """
    Request body: {"items": [{"itemId", "quantity", "stepId"?}, ...]}

    Each line reserves stock on its own; failed lines are reported in
    "errors" and the response is 207 when some lines failed.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = guide_inventory_service.attach_items(guide_id, data.get("items"), user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)

    if result["success"]:
        status = 200
    elif result["results"]:
        status = 207
    else:
        status = 400
    return jsonify(result), status


@production_bp.delete("/guides/<int:guide_id>/inventory/<int:item_id>")
@require_auth
@require_permission("production", "update", 2)
def detach_inventory(guide_id: int, item_id: int):
    try:
        guide_inventory_service.detach_item(guide_id, item_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Item detached"}), 200


@production_bp.patch("/guides/<int:guide_id>/inventory/<int:item_id>")
@require_auth
@require_permission("production", "update", 2)
def set_inventory_reservation(guide_id: int, item_id: int):
    """Request body: {"reserved": bool}"""
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("reserved"), bool):
        return jsonify({"error": "reserved must be a boolean"}), 400
    try:
        row = guide_inventory_service.set_reservation(
            guide_id, item_id, data["reserved"], user_id=g.current_user.id
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"item": row.to_dict()}), 200


@production_bp.post("/guides/<int:guide_id>/withdraw-items")
@require_auth
@require_permission("production", "work")
def withdraw_items(guide_id: int):
    """Request body: {"itemIds"?: [...]}; omitted means every reserved line."""
    data = request.get_json(silent=True) or {}
    try:
        result = guide_inventory_service.withdraw_items(
            guide_id,
            user=g.current_user,
            permissions=g.permissions,
            item_ids=data.get("itemIds", data.get("item_ids")),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify(result), 200
