# Overview: Flask API routes for work-day time tracking; parses input and returns JSON responses.

"""
Time Tracking Routes

SECURITY:
- Own sessions and summaries require timeTracking.read
- Starting a session requires timeTracking.create; ending it and breaks require timeTracking.update
- Other users' sessions require timeTracking.viewAll
- Settings changes require timeTracking.manageSettings; reports require timeTracking.viewReports
"""

from flask import Blueprint, request, jsonify, g

from ..services import timekeeping_service
from ..validation import parse_pagination
from ..decorators import require_auth, require_permission
from . import error_response, DOMAIN_ERRORS


timekeeping_bp = Blueprint("timekeeping", __name__, url_prefix="/api/time-tracking")


@timekeeping_bp.get("/settings")
@require_auth
@require_permission("timeTracking", "read")
def get_settings():
    return jsonify({"settings": timekeeping_service.get_settings().to_dict()}), 200


@timekeeping_bp.put("/settings")
@require_auth
@require_permission("timeTracking", "manageSettings")
def update_settings():
    data = request.get_json(silent=True)
    try:
        settings = timekeeping_service.update_settings(data, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"settings": settings.to_dict()}), 200


@timekeeping_bp.post("/sessions/start")
@require_auth
@require_permission("timeTracking", "create")
def start_session():
    data = request.get_json(silent=True) or {}
    try:
        session = timekeeping_service.start_session(user_id=g.current_user.id, notes=data.get("notes"))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict()}), 201


@timekeeping_bp.post("/sessions/end")
@require_auth
@require_permission("timeTracking", "update")
def end_session():
    data = request.get_json(silent=True) or {}
    try:
        session = timekeeping_service.end_session(user_id=g.current_user.id, notes=data.get("notes"))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict()}), 200


@timekeeping_bp.post("/breaks/start")
@require_auth
@require_permission("timeTracking", "update")
def start_break():
    try:
        brk = timekeeping_service.start_break(user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"break": brk.to_dict()}), 201


@timekeeping_bp.post("/breaks/end")
@require_auth
@require_permission("timeTracking", "update")
def end_break():
    try:
        brk = timekeeping_service.end_break(user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"break": brk.to_dict()}), 200


@timekeeping_bp.get("/sessions/current")
@require_auth
@require_permission("timeTracking", "read")
def current_session():
    return jsonify(timekeeping_service.get_current_session(g.current_user.id)), 200


@timekeeping_bp.get("/sessions")
@require_auth
@require_permission("timeTracking", "read")
def my_sessions():
    return _list_sessions(g.current_user.id)


@timekeeping_bp.get("/sessions/user/<int:user_id>")
@require_auth
@require_permission("timeTracking", "viewAll")
def user_sessions(user_id: int):
    return _list_sessions(user_id)


def _list_sessions(target_user_id: int):
    try:
        page, limit = parse_pagination(request.args)
        result = timekeeping_service.list_user_sessions(
            target_user_id,
            user_id=g.current_user.id,
            permissions=g.permissions,
            page=page,
            limit=limit,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify(result), 200


@timekeeping_bp.get("/sessions/active")
@require_auth
@require_permission("timeTracking", "viewAll")
def active_sessions():
    try:
        sessions = timekeeping_service.get_all_active_sessions(
            permissions=g.permissions,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
            search=request.args.get("search"),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"sessions": sessions}), 200


@timekeeping_bp.put("/sessions/<int:session_id>/notes")
@require_auth
@require_permission("timeTracking", "update")
def update_notes(session_id: int):
    data = request.get_json(silent=True) or {}
    try:
        session = timekeeping_service.update_session_notes(
            session_id, data.get("notes"), user_id=g.current_user.id, permissions=g.permissions
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"session": session.to_dict()}), 200


@timekeeping_bp.get("/daily-summaries")
@require_auth
@require_permission("timeTracking", "read")
def daily_summaries():
    """Query: year, month (default: current UTC month), userId (needs viewAll for others)."""
    try:
        year, month = timekeeping_service.parse_year_month(request.args)
        target = request.args.get("userId", type=int)
        summaries = timekeeping_service.get_daily_summaries(
            year=year,
            month=month,
            user_id=g.current_user.id,
            permissions=g.permissions,
            target_user_id=target,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"year": year, "month": month, "days": summaries}), 200


@timekeeping_bp.post("/report")
@require_auth
@require_permission("timeTracking", "viewReports")
def report():
    """
    Request body:
    - userIds: [int] (required)
    - startDate, endDate: ISO dates (required, inclusive)
    """
    data = request.get_json(silent=True) or {}
    try:
        result = timekeeping_service.get_report(
            user_ids=data.get("userIds", data.get("user_ids")),
            start_date=data.get("startDate", data.get("start_date")),
            end_date=data.get("endDate", data.get("end_date")),
            user_id=g.current_user.id,
            permissions=g.permissions,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"report": result}), 200
