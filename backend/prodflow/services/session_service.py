# Overview: Service-layer operations for session; access and refresh token lifecycle.

"""
Session Token Management Service

WHY: Short-lived access tokens plus one-time refresh tokens. Tokens are
cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Access token absolute timeout (ACCESS_TOKEN_TTL_MINUTES)
- Refresh token absolute timeout (REFRESH_TOKEN_TTL_DAYS), one-time use
- Reuse of a rotated refresh token revokes every session of the user
- Tracks client IP and user agent for security monitoring
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, RefreshToken, User
from .auth_service import AuthError
from .permission_service import log_security_event
from prodflow.time_utils import utcnow


@dataclass
class SessionContext:
    """Session context returned by validate_session."""
    user: User
    session: SessionToken


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    session: SessionToken
    refresh: RefreshToken


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _access_ttl() -> timedelta:
    return timedelta(minutes=current_app.config.get("ACCESS_TOKEN_TTL_MINUTES", 30))


def _refresh_ttl() -> timedelta:
    return timedelta(days=current_app.config.get("REFRESH_TOKEN_TTL_DAYS", 14))


def _revoke(record, now, reason: str) -> None:
    record.is_revoked = True
    record.revoked_at = now
    record.revoked_reason = reason


def _issue_pair(user_id: int, user_agent: str | None, ip_address: str | None) -> TokenPair:
    """Add a refresh token and an access token to the session. Caller commits."""
    now = utcnow()

    refresh_plain = generate_token()
    refresh = RefreshToken(
        user_id=user_id,
        token_hash=hash_token(refresh_plain),
        created_at=now,
        expires_at=now + _refresh_ttl(),
        is_revoked=False,
    )
    db.session.add(refresh)
    db.session.flush()

    access_plain = generate_token()
    session = SessionToken(
        user_id=user_id,
        refresh_token_id=refresh.id,
        token_hash=hash_token(access_plain),
        created_at=now,
        last_used_at=now,
        expires_at=now + _access_ttl(),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)

    return TokenPair(access_token=access_plain, refresh_token=refresh_plain, session=session, refresh=refresh)


def create_session_pair(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> TokenPair:
    """
    Create an access token and a refresh token for user.

    Client receives the plaintext tokens, database stores only the hashes.
    Raises AuthError if user missing or inactive.
    """
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthError("User not found or inactive")

    pair = _issue_pair(user_id, user_agent, ip_address)
    db.session.commit()
    return pair


def validate_session(token: str) -> SessionContext | None:
    """
    Validate access token and return SessionContext if valid.

    Returns None if:
    - Token is invalid, expired, or revoked
    - User account is deactivated (is_active=False)

    Updates last_used_at on success (activity tracking).
    """
    if not token:
        return None

    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, now, "User account deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    user.last_activity_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def rotate_refresh_token(
    refresh_token: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[User, TokenPair]:
    """
    Exchange a refresh token for a new access/refresh pair.

    The presented token is revoked and linked to its replacement.
    A token that was already revoked signals theft: every session of the
    user is revoked and AuthError is raised.
    """
    if not refresh_token:
        raise AuthError("Refresh token required")

    now = utcnow()
    record = db.session.query(RefreshToken).filter_by(token_hash=hash_token(refresh_token)).first()

    if not record:
        raise AuthError("Invalid refresh token")

    if record.is_revoked:
        revoke_all_user_sessions(record.user_id, reason="Refresh token reuse")
        log_security_event(
            user_id=record.user_id,
            event_type="REFRESH_TOKEN_REUSE",
            success=False,
            reason="Revoked refresh token presented",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise AuthError("Refresh token reuse detected")

    if record.expires_at < now:
        raise AuthError("Refresh token expired")

    user = record.user
    if not user or not user.is_active:
        _revoke(record, now, "User account deactivated")
        db.session.commit()
        raise AuthError("User not found or inactive")

    pair = _issue_pair(user.id, user_agent, ip_address)
    _revoke(record, now, "Rotated")
    record.replaced_by_id = pair.refresh.id

    # Access tokens minted by the old refresh token die with it
    db.session.query(SessionToken).filter_by(
        refresh_token_id=record.id,
        is_revoked=False,
    ).update(
        {"is_revoked": True, "revoked_at": now, "revoked_reason": "Rotated"},
        synchronize_session=False,
    )

    db.session.commit()
    return user, pair


def revoke_session(
    access_token: str | None = None,
    refresh_token: str | None = None,
    reason: str = "User logout",
) -> bool:
    """
    Revoke an access token and/or a refresh token (logout).

    Revoking an access token also revokes its refresh token.
    Returns True if anything was revoked.
    """
    now = utcnow()
    revoked = False

    if access_token:
        session = db.session.query(SessionToken).filter_by(
            token_hash=hash_token(access_token),
            is_revoked=False,
        ).first()
        if session:
            _revoke(session, now, reason)
            revoked = True
            if session.refresh_token_id:
                parent = db.session.get(RefreshToken, session.refresh_token_id)
                if parent and not parent.is_revoked:
                    _revoke(parent, now, reason)

    if refresh_token:
        record = db.session.query(RefreshToken).filter_by(
            token_hash=hash_token(refresh_token),
            is_revoked=False,
        ).first()
        if record:
            _revoke(record, now, reason)
            revoked = True

    db.session.commit()
    return revoked


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """
    Revoke all active access and refresh tokens for a user.

    Returns count of access tokens revoked.
    Forces re-authentication on all devices.
    """
    now = utcnow()
    values = {"is_revoked": True, "revoked_at": now, "revoked_reason": reason}

    count = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False,
    ).update(values, synchronize_session=False)

    db.session.query(RefreshToken).filter_by(
        user_id=user_id,
        is_revoked=False,
    ).update(values, synchronize_session=False)

    db.session.commit()
    return count


def cleanup_expired_sessions(days: int = 30) -> int:
    """
    Delete expired or revoked tokens older than `days`.

    Returns count of access tokens deleted.
    Run periodically (`flask maintenance cleanup-sessions`).
    """
    now = utcnow()
    cutoff = now - timedelta(days=days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)

    # Refresh tokens still referenced by a surviving access token stay
    referenced = db.session.query(SessionToken.refresh_token_id).filter(
        SessionToken.refresh_token_id.isnot(None)
    )
    stale_refresh = db.session.query(RefreshToken).filter(
        db.or_(
            RefreshToken.expires_at < now,
            RefreshToken.is_revoked.is_(True),
        ),
        RefreshToken.created_at < cutoff,
        RefreshToken.id.notin_(referenced),
    )
    # replaced_by_id is a self reference; clear it before deleting the chain
    stale_ids = [r.id for r in stale_refresh.all()]
    if stale_ids:
        db.session.query(RefreshToken).filter(RefreshToken.replaced_by_id.in_(stale_ids)).update(
            {"replaced_by_id": None}, synchronize_session=False
        )
        db.session.query(RefreshToken).filter(RefreshToken.id.in_(stale_ids)).delete(synchronize_session=False)

    db.session.commit()
    return deleted
