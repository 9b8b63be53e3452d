# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication Service

WHY: Every ledger row and work session must be attributable. Uses bcrypt for
secure password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session and refresh tokens managed separately (see session_service.py)
- Inactive users never authenticate
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from prodflow.time_utils import utcnow


class AuthError(ValueError):
    """Raised when credentials or tokens are rejected (401)."""
    pass


class PasswordValidationError(ValueError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.?'\":{}|<>_\-+=\[\]]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. Malformed hashes verify as False.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate user by login or email.

    Returns User if credentials valid and the account is active, None otherwise.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.login == identifier, User.email == identifier),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        now = utcnow()
        user.last_login_at = now
        user.last_activity_at = now
        db.session.commit()
        return user

    return None
