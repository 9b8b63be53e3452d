# Overview: Flask API routes for production templates; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ProductionGuide
from ..services import template_service
from ..validation import ModelValidationPolicy, validate_payload, parse_pagination, ValidationError
from ..decorators import require_auth, require_permission
from . import error_response, DOMAIN_ERRORS

# Overrides applied to a guide created from a template
OVERRIDE_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "priority", "due_date"},
    aliases={"dueDate": "due_date"},
)

templates_bp = Blueprint("templates", __name__, url_prefix="/api/production")


@templates_bp.get("/templates")
@require_auth
@require_permission("templates", "read")
def list_templates():
    try:
        page, limit = parse_pagination(request.args)
        return jsonify(template_service.list_templates(page=page, limit=limit, search=request.args.get("search"))), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@templates_bp.get("/templates/<int:template_id>")
@require_auth
@require_permission("templates", "read")
def get_template(template_id: int):
    try:
        return jsonify({"template": template_service.get_template(template_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@templates_bp.post("/templates")
@require_auth
@require_permission("templates", "create", 2)
def create_template():
    """
    Request body:
    - name: str (required, unique)
    - description: str
    - data: {"guide": {...}, "steps": [...], "inventory": [...]}
    """
    data = request.get_json(silent=True) or {}
    try:
        template = template_service.create_template(
            name=data.get("name"),
            description=data.get("description"),
            data=data.get("data") or {},
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create template")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"template": template.to_dict()}), 201


@templates_bp.put("/templates/<int:template_id>")
@require_auth
@require_permission("templates", "update", 2)
def update_template(template_id: int):
    data = request.get_json(silent=True) or {}
    try:
        template = template_service.update_template(template_id, payload=data, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"template": template.to_dict()}), 200


@templates_bp.delete("/templates/<int:template_id>")
@require_auth
@require_permission("templates", "delete", 2)
def delete_template(template_id: int):
    try:
        template_service.delete_template(template_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Template deleted"}), 200


@templates_bp.post("/guides/<int:guide_id>/template")
@require_auth
@require_permission("templates", "create", 2)
def template_from_guide(guide_id: int):
    """Snapshot a guide into a new template. Request body: {"name", "description"?}"""
    data = request.get_json(silent=True) or {}
    try:
        template = template_service.template_from_guide(
            guide_id,
            name=data.get("name"),
            description=data.get("description"),
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"template": template.to_dict()}), 201


@templates_bp.post("/templates/<int:template_id>/guide")
@require_auth
@require_permission("production", "create", 2)
def guide_from_template(template_id: int):
    """
    Create a DRAFT guide from a template.

    Request body (all optional): title, description, priority, dueDate, assignedUserIds.
    Inventory lines that cannot be reserved are listed under inventory.errors.
    """
    data = dict(request.get_json(silent=True) or {})
    try:
        assigned = data.pop("assignedUserIds", data.pop("assigned_user_ids", None))
        if assigned is not None and not isinstance(assigned, list):
            raise ValidationError("assignedUserIds must be a list")
        overrides = validate_payload(model=ProductionGuide, payload=data, policy=OVERRIDE_POLICY, partial=True)
        overrides["assigned_user_ids"] = assigned
        result = template_service.guide_from_template(template_id, overrides=overrides, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create guide from template")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 201
