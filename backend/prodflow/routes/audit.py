# Overview: Flask API routes for the audit log; read-only.

from flask import Blueprint, request, jsonify

from ..services import audit_service
from ..validation import parse_pagination, ValidationError
from ..decorators import require_auth, require_permission
from prodflow.time_utils import parse_iso_datetime
from . import error_response, DOMAIN_ERRORS

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_permission("audit", "read")
def list_audit_logs():
    """
    Query params:
    - page, limit
    - module, action, target_id
    - user: substring of login or name
    - from, to: ISO-8601 dates (date-only "to" includes the whole day)
    """
    try:
        page, limit = parse_pagination(request.args)
        try:
            date_from = parse_iso_datetime(request.args.get("from"))
            date_to = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 dates")

        result = audit_service.list_audit_logs(
            page=page,
            limit=limit,
            module=request.args.get("module"),
            action=request.args.get("action"),
            target_id=request.args.get("target_id"),
            user=request.args.get("user"),
            date_from=date_from,
            date_to=date_to,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
