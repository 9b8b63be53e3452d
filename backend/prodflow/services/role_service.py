# Overview: Service-layer operations for roles and the permission catalog.

"""
Role / Permission CRUD

Roles own a flat "module.action" -> level map. Writes are whole-set
replacements (delete all rows, insert the non-zero ones) inside a single
transaction, so a reader never sees a role without its permissions.

- Level 0 entries are never stored.
- Unknown permission keys are skipped silently (the editor may lag the catalog).
- A role held by any user cannot be deleted.
"""

from __future__ import annotations

import threading
import time

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Role, UserRole, Permission, RolePermission, ProductionStep
from ..permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    SUPERUSER_ROLES,
    validate_level,
    validate_permission_key,
    permission_key,
)
from ..validation import ValidationError, ConflictError, NotFoundError, pagination_dict
from .audit_service import log_audit
from .concurrency import run_with_retry


_catalog_lock = threading.Lock()

CATALOG_CACHE_KEY = "prodflow.permission_catalog"


def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Role name is required")
    name = name.strip()
    if len(name) > 64:
        raise ValidationError("Role name exceeds max length 64")
    return name


def _normalize_permissions(permissions) -> dict[str, int]:
    """Validate levels, drop zero entries and keys missing from the catalog."""
    if permissions is None:
        return {}
    if not isinstance(permissions, dict):
        raise ValidationError("permissions must be an object of {\"module.action\": level}")

    cleaned: dict[str, int] = {}
    for key, level in permissions.items():
        if not validate_level(level):
            raise ValidationError(f"Invalid level for {key}: must be an integer 0-3")
        if level > 0 and validate_permission_key(key):
            cleaned[key] = level
    return cleaned


def _catalog_by_key() -> dict[str, Permission]:
    return {p.key: p for p in db.session.query(Permission).all()}


def _write_permissions(role: Role, permissions: dict[str, int]) -> None:
    catalog = _catalog_by_key()
    for key, level in permissions.items():
        perm = catalog.get(key)
        if perm is None:
            continue
        db.session.add(RolePermission(role_id=role.id, permission_id=perm.id, value=level))


def flatten_role_permissions(role_id: int) -> dict[str, int]:
    rows = (
        db.session.query(Permission.module, Permission.action, RolePermission.value)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id == role_id)
        .all()
    )
    return {permission_key(module, action): value for module, action, value in rows}


def _user_count(role_id: int) -> int:
    return db.session.query(func.count(UserRole.id)).filter(UserRole.role_id == role_id).scalar() or 0


def role_to_dict(role: Role, *, user_count: int | None = None) -> dict:
    data = role.to_dict()
    data["permissions"] = flatten_role_permissions(role.id)
    data["userCount"] = _user_count(role.id) if user_count is None else user_count
    return data


def _get_role_or_404(role_id: int) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role not found")
    return role


def create_role(
    *,
    name: str,
    description: str | None = None,
    permissions: dict | None = None,
    is_superuser: bool = False,
    actor_id: int | None = None,
) -> Role:
    name = _clean_name(name)
    cleaned = _normalize_permissions(permissions)

    if db.session.query(Role).filter(func.lower(Role.name) == name.lower()).first():
        raise ConflictError("Role with this name already exists")

    def _op():
        role = Role(name=name, description=description, is_superuser=bool(is_superuser))
        db.session.add(role)
        db.session.flush()

        _write_permissions(role, cleaned)
        log_audit(
            user_id=actor_id,
            action="create",
            module="roles",
            target_id=role.id,
            meta={"name": name, "permissions": cleaned},
        )
        db.session.commit()
        return role

    return run_with_retry(_op)


def update_role(
    role_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    permissions: dict | None = None,
    actor_id: int | None = None,
) -> Role:
    role = _get_role_or_404(role_id)

    if name is not None:
        name = _clean_name(name)
        clash = (
            db.session.query(Role)
            .filter(func.lower(Role.name) == name.lower(), Role.id != role.id)
            .first()
        )
        if clash:
            raise ConflictError("Role with this name already exists")

    cleaned = _normalize_permissions(permissions) if permissions is not None else None
    previous = flatten_role_permissions(role.id)

    def _op():
        if name is not None:
            role.name = name
        if description is not None:
            role.description = description

        if cleaned is not None:
            # Whole-set replacement, not a diff
            db.session.query(RolePermission).filter_by(role_id=role.id).delete()
            _write_permissions(role, cleaned)

        log_audit(
            user_id=actor_id,
            action="update",
            module="roles",
            target_id=role.id,
            meta={
                "name": role.name,
                "previous_permissions": previous,
                "permissions": cleaned if cleaned is not None else previous,
            },
        )
        db.session.commit()
        return role

    return run_with_retry(_op)


def delete_role(role_id: int, *, actor_id: int | None = None) -> None:
    role = _get_role_or_404(role_id)

    if _user_count(role.id) > 0:
        raise ConflictError("Role is in use and cannot be deleted")

    def _op():
        db.session.query(RolePermission).filter_by(role_id=role.id).delete()
        # Steps assigned to the role become open to any worker
        unassigned = (
            db.session.query(ProductionStep)
            .filter(ProductionStep.assigned_to_role_id == role.id)
            .update({ProductionStep.assigned_to_role_id: None})
        )
        log_audit(
            user_id=actor_id,
            action="delete",
            module="roles",
            target_id=role.id,
            meta={"name": role.name, "unassigned_steps": unassigned},
        )
        db.session.delete(role)
        db.session.commit()

    run_with_retry(_op)


def get_role(role_id: int) -> dict:
    return role_to_dict(_get_role_or_404(role_id))


def list_roles(*, page: int = 1, limit: int = 20, search: str | None = None) -> dict:
    """Roles with flattened permissions and userCount, paginated."""
    user_counts = (
        db.session.query(UserRole.role_id, func.count(UserRole.id).label("user_count"))
        .group_by(UserRole.role_id)
        .subquery()
    )
    query = db.session.query(Role, func.coalesce(user_counts.c.user_count, 0)).outerjoin(
        user_counts, user_counts.c.role_id == Role.id
    )
    if search:
        query = query.filter(Role.name.ilike(f"%{search}%"))

    total = query.count()
    rows = query.order_by(Role.name).offset((page - 1) * limit).limit(limit).all()

    return {
        "roles": [role_to_dict(role, user_count=int(count)) for role, count in rows],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def _load_catalog() -> dict:
    permissions = (
        db.session.query(Permission)
        .order_by(Permission.module, Permission.id)
        .all()
    )
    grouped: dict[str, list[dict]] = {}
    for perm in permissions:
        grouped.setdefault(perm.module, []).append(perm.to_dict())
    return {
        "permissions": [p.to_dict() for p in permissions],
        "groupedByModule": grouped,
    }


def _catalog_cache() -> dict:
    """Per-app cache slot, so apps bound to different databases never share ids."""
    return current_app.extensions.setdefault(CATALOG_CACHE_KEY, {"data": None, "loaded_at": 0.0})


def get_all_permissions(*, refresh: bool = False) -> dict:
    """
    Full permission catalog grouped by module.

    Cached per app for PERMISSION_CATALOG_TTL_SECONDS; refresh=True reloads.
    """
    ttl = current_app.config.get("PERMISSION_CATALOG_TTL_SECONDS", 300)
    with _catalog_lock:
        cache = _catalog_cache()
        fresh = cache["data"] is not None and time.monotonic() - cache["loaded_at"] < ttl
        if refresh or not fresh:
            cache["data"] = _load_catalog()
            cache["loaded_at"] = time.monotonic()
        return cache["data"]


def invalidate_catalog_cache() -> None:
    with _catalog_lock:
        cache = _catalog_cache()
        cache["data"] = None
        cache["loaded_at"] = 0.0


def create_default_roles() -> int:
    """
    Create the default roles with their permission maps. Idempotent.

    Returns count of roles created.
    """
    created = 0
    for name, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        if db.session.query(Role).filter_by(name=name).first():
            continue
        superuser = name in SUPERUSER_ROLES
        create_role(
            name=name,
            description="Full access" if superuser else f"Default {name.lower()} role",
            permissions={} if superuser else permissions,
            is_superuser=superuser,
        )
        created += 1
    return created
