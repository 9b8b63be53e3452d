# Overview: Permission module constants; a permission key is "<module>.<action>".


class PermissionModule:
    """Permission modules, used to group the catalog in the role editor."""
    PRODUCTION = "production"
    INVENTORY = "inventory"
    USERS = "users"
    ROLES = "roles"
    NOTIFICATIONS = "notifications"
    AUDIT = "audit"
    STATISTICS = "statistics"
    TEMPLATES = "templates"
    TIME_TRACKING = "timeTracking"
    QUALITY = "quality"


class PermissionLevel:
    """Ordinal permission levels stored on RolePermission.value."""
    NONE = 0
    VIEW = 1
    EDIT = 2
    FULL = 3

    ALL = (NONE, VIEW, EDIT, FULL)


# Reserved key granted to superuser roles; matches every module.action at FULL
WILDCARD_KEY = "*.*"
