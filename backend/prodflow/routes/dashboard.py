# Overview: Flask API routes for the dashboard; read-only aggregates.

from flask import Blueprint, jsonify

from ..services import reporting_service
from ..decorators import require_auth, require_permission

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
@require_auth
@require_permission("statistics", "read")
def stats():
    return jsonify(reporting_service.dashboard_stats()), 200
