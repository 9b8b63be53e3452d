# Overview: Permission system package.
# Re-exports all public APIs for short imports.

from .modules import PermissionModule, PermissionLevel, WILDCARD_KEY
from .definitions import (
    PERMISSION_DEFINITIONS,
    PRODUCTION_PERMISSIONS,
    INVENTORY_PERMISSIONS,
    USER_PERMISSIONS,
    ROLE_PERMISSIONS,
    NOTIFICATION_PERMISSIONS,
    AUDIT_PERMISSIONS,
    STATISTICS_PERMISSIONS,
    TEMPLATE_PERMISSIONS,
    TIME_TRACKING_PERMISSIONS,
    QUALITY_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS, SUPERUSER_ROLES, ADMIN_ROLE
from .helpers import (
    permission_key,
    split_permission_key,
    get_all_permission_keys,
    validate_permission_key,
    validate_level,
)

__all__ = [
    "PermissionModule",
    "PermissionLevel",
    "WILDCARD_KEY",
    "PERMISSION_DEFINITIONS",
    "PRODUCTION_PERMISSIONS",
    "INVENTORY_PERMISSIONS",
    "USER_PERMISSIONS",
    "ROLE_PERMISSIONS",
    "NOTIFICATION_PERMISSIONS",
    "AUDIT_PERMISSIONS",
    "STATISTICS_PERMISSIONS",
    "TEMPLATE_PERMISSIONS",
    "TIME_TRACKING_PERMISSIONS",
    "QUALITY_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "SUPERUSER_ROLES",
    "ADMIN_ROLE",
    "permission_key",
    "split_permission_key",
    "get_all_permission_keys",
    "validate_permission_key",
    "validate_level",
]
