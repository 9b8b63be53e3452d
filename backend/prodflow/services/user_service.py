# Overview: Service-layer operations for users; account CRUD, role assignment and profile.

from __future__ import annotations

import re

from sqlalchemy import func, or_

from ..extensions import db
from ..models import User, Role, UserRole
from ..validation import ValidationError, ConflictError, NotFoundError, pagination_dict
from .audit_service import log_audit
from .auth_service import hash_password, verify_password, PasswordValidationError
from .permission_service import snapshot_for_user
from .session_service import revoke_all_user_sessions


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PROFILE_FIELDS = ("first_name", "last_name", "phone_number", "email")


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _clean_login(login) -> str:
    if not isinstance(login, str) or not login.strip():
        raise ValidationError("login is required")
    login = login.strip()
    if len(login) > 64:
        raise ValidationError("login exceeds max length 64")
    return login


def _clean_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise ValidationError("A valid email is required")
    return email.strip().lower()


def _check_unique(*, login: str | None = None, email: str | None = None, exclude_id: int | None = None) -> None:
    if login is not None:
        query = db.session.query(User).filter(func.lower(User.login) == login.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise ConflictError("Login already in use")
    if email is not None:
        query = db.session.query(User).filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise ConflictError("Email already in use")


def _resolve_roles(role_ids) -> list[Role]:
    if role_ids is None:
        return []
    if not isinstance(role_ids, (list, tuple)):
        raise ValidationError("roleIds must be a list")
    ids = []
    for rid in role_ids:
        if isinstance(rid, bool) or not isinstance(rid, int):
            raise ValidationError("roleIds must be integers")
        ids.append(rid)
    roles = db.session.query(Role).filter(Role.id.in_(ids)).all() if ids else []
    missing = sorted(set(ids) - {r.id for r in roles})
    if missing:
        raise ValidationError(f"Unknown role ids: {', '.join(str(m) for m in missing)}")
    return roles


def _replace_roles(user: User, roles: list[Role]) -> None:
    db.session.query(UserRole).filter_by(user_id=user.id).delete()
    for role in roles:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))


def user_roles(user_id: int) -> list[dict]:
    roles = (
        db.session.query(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [{"id": r.id, "name": r.name, "is_superuser": r.is_superuser} for r in roles]


def user_to_dict(user: User, *, include_permissions: bool = False) -> dict:
    """User with roles; optionally the effective permission payload."""
    data = user.to_dict()
    data["roles"] = user_roles(user.id)
    if include_permissions:
        data["permissions"] = snapshot_for_user(user).to_payload()
    return data


def create_user(
    *,
    login: str,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    phone_number: str | None = None,
    role_ids: list[int] | None = None,
    is_superuser: bool = False,
    actor_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises ValidationError/ConflictError for bad or duplicate login/email,
    PasswordValidationError if the password is weak.
    """
    login = _clean_login(login)
    email = _clean_email(email)
    _check_unique(login=login, email=email)
    roles = _resolve_roles(role_ids)

    user = User(
        login=login,
        email=email,
        password_hash=hash_password(password),
        first_name=(first_name or "").strip(),
        last_name=(last_name or "").strip(),
        phone_number=phone_number or None,
        is_active=True,
        is_superuser=bool(is_superuser),
    )
    db.session.add(user)
    db.session.flush()

    for role in roles:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))

    log_audit(
        user_id=actor_id,
        action="create",
        module="users",
        target_id=user.id,
        meta={"login": login, "role_ids": [r.id for r in roles]},
    )
    db.session.commit()
    return user


def update_user(user_id: int, payload: dict, *, actor_id: int | None = None) -> User:
    """
    Update user details.

    Accepted keys: email, first_name/firstName, last_name/lastName,
    phone_number/phoneNumber, is_active/isActive, role_ids/roleIds, password.
    Role list is a full replacement. A password change revokes sessions.
    """
    user = _get_user_or_404(user_id)
    data = _normalize_keys(payload)
    changes: dict = {}

    if "email" in data:
        email = _clean_email(data["email"])
        _check_unique(email=email, exclude_id=user.id)
        if email != user.email:
            changes["email"] = [user.email, email]
            user.email = email

    for field in ("first_name", "last_name", "phone_number"):
        if field in data:
            raw = data[field]
            value = str(raw).strip() if raw is not None else ""
            if field == "phone_number":
                value = value or None
            if value != getattr(user, field):
                changes[field] = [getattr(user, field), value]
                setattr(user, field, value)

    revoke = False
    if "is_active" in data:
        active = bool(data["is_active"])
        if active != user.is_active:
            if not active and actor_id == user.id:
                raise ValidationError("Cannot deactivate your own account")
            changes["is_active"] = [user.is_active, active]
            user.is_active = active
            revoke = not active

    if "role_ids" in data:
        roles = _resolve_roles(data["role_ids"])
        changes["role_ids"] = [[r["id"] for r in user_roles(user.id)], [r.id for r in roles]]
        _replace_roles(user, roles)

    if data.get("password"):
        user.password_hash = hash_password(data["password"])
        changes["password"] = "changed"
        revoke = True

    log_audit(user_id=actor_id, action="update", module="users", target_id=user.id, meta=changes)
    db.session.commit()

    if revoke:
        revoke_all_user_sessions(user.id, reason="Account updated by admin")
    return user


def deactivate_user(user_id: int, *, actor_id: int | None = None) -> int:
    """
    Soft delete: set is_active=False and revoke all sessions.

    Returns count of sessions revoked.
    """
    user = _get_user_or_404(user_id)
    if not user.is_active:
        raise ValidationError("User is already deactivated")
    if actor_id == user.id:
        raise ValidationError("Cannot deactivate your own account")

    user.is_active = False
    log_audit(user_id=actor_id, action="deactivate", module="users", target_id=user.id, meta={"login": user.login})
    db.session.commit()

    return revoke_all_user_sessions(user.id, reason="Account deactivated")


def reactivate_user(user_id: int, *, actor_id: int | None = None) -> User:
    user = _get_user_or_404(user_id)
    if user.is_active:
        raise ValidationError("User is already active")
    user.is_active = True
    log_audit(user_id=actor_id, action="reactivate", module="users", target_id=user.id, meta={"login": user.login})
    db.session.commit()
    return user


def get_user(user_id: int) -> dict:
    return user_to_dict(_get_user_or_404(user_id), include_permissions=True)


def list_users(
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    role_id: int | None = None,
    include_inactive: bool = False,
) -> dict:
    query = db.session.query(User)

    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                User.login.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    if role_id:
        query = query.join(UserRole, UserRole.user_id == User.id).filter(UserRole.role_id == role_id)

    total = query.count()
    users = query.order_by(User.last_name, User.first_name, User.login).offset((page - 1) * limit).limit(limit).all()

    return {
        "users": [user_to_dict(u) for u in users],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def update_my_profile(user: User, payload: dict) -> User:
    """Self-service edit of name, phone and email. Roles and flags are not writable here."""
    data = _normalize_keys(payload)
    unknown = set(data) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {sorted(unknown)[0]}")
    return update_user(user.id, data, actor_id=user.id)


def change_password(user: User, *, current_password: str, new_password: str) -> int:
    """
    Change own password after verifying the current one.

    Revokes every session (including the caller's); returns count revoked.
    """
    if not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")
    if current_password == new_password:
        raise PasswordValidationError("New password must differ from the current one")

    user.password_hash = hash_password(new_password)
    log_audit(user_id=user.id, action="change_password", module="users", target_id=user.id)
    db.session.commit()

    return revoke_all_user_sessions(user.id, reason="Password changed")


_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phoneNumber": "phone_number",
    "isActive": "is_active",
    "roleIds": "role_ids",
}


def _normalize_keys(payload) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return {_ALIASES.get(k, k): v for k, v in payload.items()}
