# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError
from .permissions import permission_key


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'permissions')


def _client_context() -> dict:
    return {
        "resource": request.path,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def require_auth(f):
    """
    Require a valid access token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.permissions: PermissionSnapshot built once for this request
    - g.session_context: The full SessionContext object

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.permissions = permission_service.snapshot_for_user(context.user)
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(module: str, action: str, level: int = 1):
    """
    Require module.action at `level` or above.

    Denials are logged to security_events by the permission service.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(g.permissions, module, action, level, **_client_context())
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_key(module, action),
                    "required_level": level,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*requirements):
    """
    Require any of the given (module, action, level) triples.

    Usage:
        @require_any_permission(("production", "read", 1), ("production", "work", 1))
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if any(permission_service.has_permission(g.permissions, m, a, lvl) for m, a, lvl in requirements):
                return f(*args, **kwargs)

            keys = [f"{permission_key(m, a)}>={lvl}" for m, a, lvl in requirements]
            context = _client_context()
            permission_service.log_security_event(
                user_id=g.current_user.id,
                event_type="PERMISSION_DENIED",
                success=False,
                resource=context["resource"],
                action=f"ANY_OF:{','.join(keys)}",
                reason=f"Missing any of: {', '.join(keys)}",
                ip_address=context["ip_address"],
                user_agent=context["user_agent"],
            )
            return jsonify({
                "error": "Permission denied",
                "required_permissions": keys,
                "message": f"Requires any of: {', '.join(keys)}",
            }), 403

        return decorated_function
    return decorator
