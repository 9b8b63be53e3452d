# backend/prodflow/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User, Role, Permission, SessionToken
from ..permissions import ADMIN_ROLE
from prodflow.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "roles": db.session.query(Role).count(),
            "permissions": db.session.query(Permission).count(),
            "active_sessions": db.session.query(SessionToken).filter(
                SessionToken.is_revoked.is_(False),
                SessionToken.expires_at > utcnow(),
            ).count(),
        }
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }

    status = "healthy"
    warning = None
    if details["permissions"] == 0:
        status, warning = "degraded", "Permission catalog not initialized"
    elif not db.session.query(Role).filter_by(name=ADMIN_ROLE).first():
        status, warning = "degraded", f"Missing role: {ADMIN_ROLE}"

    result = {
        "status": status,
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": details,
    }
    if warning:
        result["warning"] = warning
    return result


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
