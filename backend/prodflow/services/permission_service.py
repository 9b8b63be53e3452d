# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Evaluation and Security Event Logging

WHY: Enforce role-based access control and keep a trail of denials.

MODEL:
- A permission key is "module.action"; a role maps keys to levels 0-3.
- A user's effective level for a key is the max over their roles.
- Superusers (User.is_superuser, or a role with is_superuser) hold the
  reserved "*.*" key at level 3 and pass every check.

DESIGN PRINCIPLES:
- Fail closed: absent keys are level 0, malformed snapshots deny
- Log denials only: grants are not logged
- Evaluation is pure over a PermissionSnapshot built once per request
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, PermissionLevel, WILDCARD_KEY, permission_key
from prodflow.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission level."""
    pass


@dataclass(frozen=True)
class PermissionSnapshot:
    """Effective permissions of one user at one point in time."""
    user_id: int
    is_superuser: bool
    permissions: Mapping[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, int]:
        """Client payload shape: {"module.action": level}."""
        payload = dict(self.permissions)
        if self.is_superuser:
            payload[WILDCARD_KEY] = PermissionLevel.FULL
        return payload


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to the security trail.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - REFRESH_TOKEN_REUSE
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def _user_has_superuser_role(user_id: int) -> bool:
    row = (
        db.session.query(Role.id)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id, Role.is_superuser.is_(True))
        .first()
    )
    return row is not None


def get_user_permissions(user_id: int) -> dict[str, int]:
    """
    Get the effective permission map for a user.

    Returns {"module.action": level} with the max level over all the
    user's roles. Keys at level 0 are absent.
    """
    rows = (
        db.session.query(Permission.module, Permission.action, db.func.max(RolePermission.value))
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .group_by(Permission.module, Permission.action)
        .all()
    )
    return {permission_key(module, action): int(level) for module, action, level in rows if level}


def is_superuser(user: User) -> bool:
    if user is None:
        return False
    return bool(user.is_superuser) or _user_has_superuser_role(user.id)


def snapshot_for_user(user: User) -> PermissionSnapshot:
    return PermissionSnapshot(
        user_id=user.id,
        is_superuser=is_superuser(user),
        permissions=get_user_permissions(user.id),
    )


def has_permission(user: Any, module: str, action: str, level: int = 1) -> bool:
    """
    Decide whether a user may perform action on module at level.

    user is a PermissionSnapshot, or any object/mapping exposing
    `permissions` ({"module.action": level}) and optionally `is_superuser`.
    Never raises: unexpected shapes evaluate to False.
    """
    if user is None:
        return False
    try:
        if isinstance(user, Mapping):
            superuser = bool(user.get("is_superuser"))
            permissions = user.get("permissions") or {}
        else:
            superuser = bool(getattr(user, "is_superuser", False))
            permissions = getattr(user, "permissions", None) or {}

        if superuser or permissions.get(WILDCARD_KEY) == PermissionLevel.FULL:
            return True

        value = permissions.get(permission_key(module, action), 0)
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        return value >= level
    except (AttributeError, TypeError):
        return False


def require_permission(
    user: PermissionSnapshot,
    module: str,
    action: str,
    level: int = 1,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require user to hold module.action >= level, raise PermissionDeniedError if not.

    Denials are logged to security_events.

    Usage:
        require_permission(g.permissions, "inventory", "manage", 2, resource=request.path)
    """
    if has_permission(user, module, action, level):
        return

    key = permission_key(module, action)
    log_security_event(
        user_id=getattr(user, "user_id", None),
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=f"{key}>={level}",
        reason=f"Missing permission: {key} (level {level})",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise PermissionDeniedError(f"Permission denied: {key} requires level {level}")


def users_with_permission(module: str, action: str, level: int = 1) -> list[int]:
    """
    User ids whose effective level for module.action is >= level.

    Includes active superusers. Used for notification fan-out.
    """
    rows = (
        db.session.query(UserRole.user_id)
        .join(RolePermission, RolePermission.role_id == UserRole.role_id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .join(User, User.id == UserRole.user_id)
        .filter(
            Permission.module == module,
            Permission.action == action,
            RolePermission.value >= level,
            User.is_active.is_(True),
        )
        .distinct()
        .all()
    )
    user_ids = {r[0] for r in rows}

    superusers = (
        db.session.query(User.id)
        .outerjoin(UserRole, UserRole.user_id == User.id)
        .outerjoin(Role, Role.id == UserRole.role_id)
        .filter(User.is_active.is_(True))
        .filter(db.or_(User.is_superuser.is_(True), Role.is_superuser.is_(True)))
        .distinct()
        .all()
    )
    user_ids.update(r[0] for r in superusers)
    return sorted(user_ids)


def initialize_permissions() -> int:
    """
    Seed the permission catalog from PERMISSION_DEFINITIONS.

    Idempotent: existing (module, action) rows keep their ids; descriptions are refreshed.
    Returns count of permissions created.
    """
    created = 0
    for module, action, description in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(module=module, action=action).first()
        if existing:
            existing.description = description
            continue
        db.session.add(Permission(module=module, action=action, description=description))
        created += 1

    db.session.commit()
    return created
