# Overview: Flask blueprints for the JSON API; shared response helpers.

from ..validation import ValidationError, ConflictError, NotFoundError
from ..services.permission_service import PermissionDeniedError
from ..services.auth_service import AuthError


def error_response(e: Exception):
    """Map a domain error to ({"error": message}, status)."""
    if isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, ConflictError):
        status = 409
    elif isinstance(e, AuthError):
        status = 401
    elif isinstance(e, PermissionDeniedError):
        status = 403
    else:
        status = 400
    return {"error": str(e)}, status


def arg_bool(args, name: str, default: bool = False) -> bool:
    value = args.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


DOMAIN_ERRORS = (ValueError, PermissionDeniedError)

__all__ = ["error_response", "arg_bool", "DOMAIN_ERRORS", "ValidationError"]
