# Overview: Flask API routes for role operations; parses input and returns JSON responses.

# backend/prodflow/routes/roles.py
"""
Role management routes.

A role maps permission keys ("module.action") to levels 0-3. Updates replace
the whole permission set. Roles held by any user cannot be deleted.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import role_service
from ..validation import parse_pagination
from ..decorators import require_auth, require_permission
from . import error_response, arg_bool, DOMAIN_ERRORS

roles_bp = Blueprint("roles", __name__, url_prefix="/api/roles")


@roles_bp.get("")
@require_auth
@require_permission("roles", "read")
def list_roles():
    """
    Query params:
    - page, limit
    - search: substring of the role name
    """
    try:
        page, limit = parse_pagination(request.args)
        return jsonify(role_service.list_roles(page=page, limit=limit, search=request.args.get("search"))), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@roles_bp.get("/permissions")
@require_auth
@require_permission("roles", "read")
def list_permissions():
    """Permission catalog, flat and grouped by module. ?refresh=true bypasses the cache."""
    return jsonify(role_service.get_all_permissions(refresh=arg_bool(request.args, "refresh"))), 200


@roles_bp.get("/<int:role_id>")
@require_auth
@require_permission("roles", "read")
def get_role(role_id: int):
    try:
        return jsonify({"role": role_service.get_role(role_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@roles_bp.post("")
@require_auth
@require_permission("roles", "create", 2)
def create_role():
    """
    Request body:
    - name: str (required)
    - description: str
    - permissions: {"module.action": level}
    """
    data = request.get_json(silent=True) or {}

    try:
        role = role_service.create_role(
            name=data.get("name"),
            description=data.get("description"),
            permissions=data.get("permissions"),
            actor_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create role")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"role": role_service.role_to_dict(role)}), 201


@roles_bp.put("/<int:role_id>")
@require_auth
@require_permission("roles", "update", 2)
def update_role(role_id: int):
    data = request.get_json(silent=True) or {}

    try:
        role = role_service.update_role(
            role_id,
            name=data.get("name"),
            description=data.get("description"),
            permissions=data.get("permissions"),
            actor_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update role")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"role": role_service.role_to_dict(role)}), 200


@roles_bp.delete("/<int:role_id>")
@require_auth
@require_permission("roles", "delete", 2)
def delete_role(role_id: int):
    try:
        role_service.delete_role(role_id, actor_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)

    return jsonify({"message": "Role deleted"}), 200
