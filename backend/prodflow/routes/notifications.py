# Overview: Flask API routes for notifications; parses input and returns JSON responses.

# backend/prodflow/routes/notifications.py
"""
Notification routes.

Every authenticated user reads and archives their own notifications.
Sending and scheduling require notifications.send.
"""

from flask import Blueprint, request, jsonify, g

from ..services import notification_service
from ..services.permission_service import has_permission
from ..validation import parse_pagination, ValidationError
from ..decorators import require_auth, require_permission
from prodflow.time_utils import parse_iso_datetime
from . import error_response, arg_bool, DOMAIN_ERRORS

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications():
    """
    Query params:
    - page, limit
    - include_archived: bool
    - unread: bool, only unread notifications
    """
    try:
        page, limit = parse_pagination(request.args)
        result = notification_service.list_notifications(
            user_id=g.current_user.id,
            include_archived=arg_bool(request.args, "include_archived"),
            unread_only=arg_bool(request.args, "unread"),
            page=page,
            limit=limit,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read(notification_id: int):
    try:
        n = notification_service.mark_read(notification_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"notification": n.to_dict()}), 200


@notifications_bp.post("/read-all")
@require_auth
def mark_all_read():
    count = notification_service.mark_all_read(user_id=g.current_user.id)
    return jsonify({"updated": count}), 200


@notifications_bp.post("/<int:notification_id>/archive")
@require_auth
def archive(notification_id: int):
    try:
        n = notification_service.archive(notification_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"notification": n.to_dict()}), 200


@notifications_bp.post("/archive-all")
@require_auth
def archive_all():
    count = notification_service.archive_all(user_id=g.current_user.id)
    return jsonify({"updated": count}), 200


@notifications_bp.post("/send")
@require_auth
@require_permission("notifications", "send")
def send():
    """Request body: {"userIds", "content", "link"?, "type"?}"""
    data = request.get_json(silent=True) or {}
    try:
        count = notification_service.send_manual(
            user_ids=data.get("userIds", data.get("user_ids")),
            content=data.get("content"),
            link=data.get("link"),
            type=data.get("type"),
            sender_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"sent": count}), 201


@notifications_bp.post("/schedule")
@require_auth
@require_permission("notifications", "send")
def schedule():
    """Request body: {"userIds", "content", "scheduledAt" (ISO-8601, future), "link"?, "type"?}"""
    data = request.get_json(silent=True) or {}
    try:
        raw = data.get("scheduledAt", data.get("scheduled_at"))
        if raw is not None and not isinstance(raw, str):
            raise ValidationError("scheduledAt must be an ISO-8601 datetime")
        try:
            scheduled_at = parse_iso_datetime(raw)
        except ValueError:
            raise ValidationError("scheduledAt must be an ISO-8601 datetime")

        created = notification_service.schedule_notification(
            user_ids=data.get("userIds", data.get("user_ids")),
            content=data.get("content"),
            scheduled_at=scheduled_at,
            link=data.get("link"),
            type=data.get("type"),
            created_by_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"scheduled": [n.to_dict() for n in created]}), 201


@notifications_bp.get("/scheduled")
@require_auth
@require_permission("notifications", "send")
def list_scheduled():
    """Pending scheduled notifications; only the caller's unless they hold notifications.send level 2."""
    mine_only = not has_permission(g.permissions, "notifications", "send", 2)
    result = notification_service.list_scheduled(created_by_id=g.current_user.id if mine_only else None)
    return jsonify({"scheduled": result}), 200


@notifications_bp.delete("/scheduled/<int:notification_id>")
@require_auth
@require_permission("notifications", "send")
def cancel_scheduled(notification_id: int):
    try:
        notification_service.cancel_scheduled(
            notification_id,
            user_id=g.current_user.id,
            can_manage_all=has_permission(g.permissions, "notifications", "send", 2),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"message": "Scheduled notification cancelled"}), 200
