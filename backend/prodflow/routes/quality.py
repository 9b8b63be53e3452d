# Overview: Flask API routes for quality control; parses input and returns JSON responses.

"""
Quality Control Routes

SECURITY:
- Reads require quality.read
- Recording checks requires quality.create; templates need quality.create / update / delete at level 2
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import quality_service
from ..validation import parse_pagination
from ..decorators import require_auth, require_permission
from . import error_response, DOMAIN_ERRORS


quality_bp = Blueprint("quality", __name__, url_prefix="/api/quality")


@quality_bp.get("/templates")
@require_auth
@require_permission("quality", "read")
def list_templates():
    try:
        page, limit = parse_pagination(request.args)
        return jsonify(quality_service.list_templates(page=page, limit=limit, search=request.args.get("search"))), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@quality_bp.get("/templates/<int:template_id>")
@require_auth
@require_permission("quality", "read")
def get_template(template_id: int):
    try:
        return jsonify({"template": quality_service.get_template(template_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@quality_bp.post("/templates")
@require_auth
@require_permission("quality", "create", 2)
def create_template():
    """
    Request body:
    - name: str (required, unique)
    - description: str
    - items: [{"name", "description"}] (required, non-empty)
    """
    data = request.get_json(silent=True) or {}
    try:
        template = quality_service.create_template(
            name=data.get("name"),
            description=data.get("description"),
            items=data.get("items"),
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quality check template")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"template": template.to_dict()}), 201


@quality_bp.put("/templates/<int:template_id>")
@require_auth
@require_permission("quality", "update", 2)
def update_template(template_id: int):
    data = request.get_json(silent=True) or {}
    try:
        template = quality_service.update_template(template_id, payload=data, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"template": template.to_dict()}), 200


@quality_bp.delete("/templates/<int:template_id>")
@require_auth
@require_permission("quality", "delete", 2)
def delete_template(template_id: int):
    try:
        quality_service.delete_template(template_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Template deleted"}), 200


@quality_bp.post("/checks")
@require_auth
@require_permission("quality", "create")
def perform_check():
    """
    Request body:
    - templateId: int (required)
    - guideId, stepId: int (optional; stepId implies its guide)
    - results: [{"name", "passed", "notes"}] (required)
    - passed: bool (default: every result passed)
    - notes: str
    """
    data = request.get_json(silent=True) or {}
    try:
        check = quality_service.perform_check(
            template_id=data.get("templateId", data.get("template_id")),
            guide_id=data.get("guideId", data.get("guide_id")),
            step_id=data.get("stepId", data.get("step_id")),
            results=data.get("results"),
            passed=data.get("passed"),
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    current_app.logger.info("Quality check %s recorded (passed=%s)", check.id, check.passed)
    return jsonify({"check": check.to_dict()}), 201


@quality_bp.get("/checks/<int:check_id>")
@require_auth
@require_permission("quality", "read")
def get_check(check_id: int):
    try:
        return jsonify({"check": quality_service.get_check(check_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@quality_bp.get("/guides/<int:guide_id>/checks")
@require_auth
@require_permission("quality", "read")
def guide_checks(guide_id: int):
    try:
        return jsonify({"checks": quality_service.list_guide_checks(guide_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@quality_bp.get("/steps/<int:step_id>/checks")
@require_auth
@require_permission("quality", "read")
def step_checks(step_id: int):
    try:
        return jsonify({"checks": quality_service.list_step_checks(step_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@quality_bp.get("/stats")
@require_auth
@require_permission("quality", "read")
def stats():
    """Query: from, to (ISO dates; default: last 30 days)."""
    try:
        return jsonify(quality_service.get_stats(
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        )), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
