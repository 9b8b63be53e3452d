# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/prodflow/routes/auth.py
"""
Authentication API routes

- Login returns a short-lived access token in the body and sets a one-time
  refresh token as an HTTP-only cookie.
- refresh-token rotates the pair; reuse of a consumed refresh token revokes
  every session of the user.
- Self-registration does not exist: administrators create users.
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..services.auth_service import AuthError
from ..services.user_service import user_to_dict
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

REFRESH_COOKIE_PATH = "/api/auth"


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def _refresh_token_from_request() -> str | None:
    token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if token:
        return token
    data = request.get_json(silent=True) or {}
    return data.get("refreshToken") or data.get("refresh_token")


def _set_refresh_cookie(response, token: str):
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        token,
        max_age=int(timedelta(days=current_app.config["REFRESH_TOKEN_TTL_DAYS"]).total_seconds()),
        httponly=True,
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
        samesite="Lax",
        path=REFRESH_COOKIE_PATH,
    )
    return response


def _clear_refresh_cookie(response):
    response.delete_cookie(current_app.config["REFRESH_COOKIE_NAME"], path=REFRESH_COOKIE_PATH)
    return response


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create an access/refresh pair.

    Request body: {"login" | "email", "password"}

    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("login") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not identifier or not password:
            return jsonify({"error": "login/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(identifier, password)

        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {identifier[:64]}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        pair = session_service.create_session_pair(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        response = jsonify({
            "user": user_to_dict(user, include_permissions=True),
            "accessToken": pair.access_token,
            "expires_at": pair.session.to_dict()["expires_at"],
            "message": "Login successful",
        })
        return _set_refresh_cookie(response, pair.refresh_token), 200

    except AuthError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/refresh-token")
def refresh_token_route():
    """Exchange the refresh cookie for a new pair. The presented token is consumed."""
    refresh_token = _refresh_token_from_request()
    if not refresh_token:
        return jsonify({"error": "Refresh token required"}), 401

    try:
        user, pair = session_service.rotate_refresh_token(
            refresh_token,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except AuthError as e:
        return _clear_refresh_cookie(jsonify({"error": str(e)})), 401
    except Exception:
        current_app.logger.exception("Failed to refresh token")
        return jsonify({"error": "Internal server error"}), 500

    response = jsonify({
        "user": user_to_dict(user, include_permissions=True),
        "accessToken": pair.access_token,
        "expires_at": pair.session.to_dict()["expires_at"],
    })
    return _set_refresh_cookie(response, pair.refresh_token), 200


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the access token (header) and the refresh token (cookie).
    """
    try:
        access_token = _bearer_token()
        refresh_token = _refresh_token_from_request()

        if not access_token and not refresh_token:
            return jsonify({"error": "Authorization header required"}), 401

        session_service.revoke_session(
            access_token=access_token,
            refresh_token=refresh_token,
            reason="User logout",
        )
        return _clear_refresh_cookie(jsonify({"message": "Logout successful"})), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user with roles and the {"module.action": level} permission map."""
    user = user_to_dict(g.current_user)
    user["permissions"] = g.permissions.to_payload()
    return jsonify({"user": user}), 200
