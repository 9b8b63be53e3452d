# Overview: Flask API routes for user operations; parses input and returns JSON responses.

# backend/prodflow/routes/users.py
"""
User management routes.

- /api/users[...] requires the users.* permissions
- /api/users/me and /api/users/me/password only require authentication
- Deactivation is a soft delete and revokes every session of the user
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import user_service
from ..validation import parse_pagination
from ..decorators import require_auth, require_permission
from . import error_response, arg_bool, DOMAIN_ERRORS

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_permission("users", "read")
def list_users():
    """
    Query params:
    - page, limit
    - search: login, email or name
    - role_id: int
    - include_inactive: bool (default false)
    """
    try:
        page, limit = parse_pagination(request.args)
        result = user_service.list_users(
            page=page,
            limit=limit,
            search=request.args.get("search"),
            role_id=request.args.get("role_id", type=int),
            include_inactive=arg_bool(request.args, "include_inactive"),
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@users_bp.get("/me")
@require_auth
def get_me():
    user = user_service.user_to_dict(g.current_user)
    user["permissions"] = g.permissions.to_payload()
    return jsonify({"user": user}), 200


@users_bp.put("/me")
@require_auth
def update_me():
    """Edit own first_name, last_name, phone_number and email."""
    try:
        user = user_service.update_my_profile(g.current_user, request.get_json(silent=True) or {})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"user": user_service.user_to_dict(user)}), 200


@users_bp.post("/me/password")
@require_auth
def change_my_password():
    """
    Request body: {"currentPassword", "newPassword"}

    Every session is revoked, so the client must log in again.
    """
    data = request.get_json(silent=True) or {}
    current_password = data.get("currentPassword") or data.get("current_password")
    new_password = data.get("newPassword") or data.get("new_password")

    if not current_password or not new_password:
        return jsonify({"error": "currentPassword and newPassword are required"}), 400

    try:
        revoked = user_service.change_password(
            g.current_user,
            current_password=current_password,
            new_password=new_password,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)

    return jsonify({"message": "Password changed", "sessions_revoked": revoked}), 200


@users_bp.get("/<int:user_id>")
@require_auth
@require_permission("users", "read")
def get_user(user_id: int):
    try:
        return jsonify({"user": user_service.get_user(user_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@users_bp.post("")
@require_auth
@require_permission("users", "create", 2)
def create_user():
    """
    Request body:
    - login, email, password: str (required)
    - firstName, lastName, phoneNumber: str
    - roleIds: list[int]
    """
    data = request.get_json(silent=True) or {}

    if not data.get("login") or not data.get("email") or not data.get("password"):
        return jsonify({"error": "login, email and password are required"}), 400

    try:
        user = user_service.create_user(
            login=data["login"],
            email=data["email"],
            password=data["password"],
            first_name=data.get("firstName", data.get("first_name", "")),
            last_name=data.get("lastName", data.get("last_name", "")),
            phone_number=data.get("phoneNumber", data.get("phone_number")),
            role_ids=data.get("roleIds", data.get("role_ids")),
            actor_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user_service.user_to_dict(user)}), 201


@users_bp.put("/<int:user_id>")
@require_auth
@require_permission("users", "update", 2)
def update_user(user_id: int):
    try:
        user = user_service.update_user(user_id, request.get_json(silent=True) or {}, actor_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user_service.user_to_dict(user)}), 200


def _deactivate(user_id: int):
    try:
        revoked = user_service.deactivate_user(user_id, actor_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "User deactivated", "sessions_revoked": revoked}), 200


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_permission("users", "delete", 2)
def deactivate_user(user_id: int):
    return _deactivate(user_id)


@users_bp.delete("/<int:user_id>")
@require_auth
@require_permission("users", "delete", 2)
def delete_user(user_id: int):
    """Alias of deactivate: users are never hard-deleted."""
    return _deactivate(user_id)


@users_bp.post("/<int:user_id>/reactivate")
@require_auth
@require_permission("users", "update", 2)
def reactivate_user(user_id: int):
    try:
        user = user_service.reactivate_user(user_id, actor_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"user": user_service.user_to_dict(user)}), 200
