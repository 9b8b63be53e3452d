# Overview: Default roles seeded by `flask system init`.
# Each role maps permission keys to levels; omitted keys are level 0.

from .definitions import PERMISSION_DEFINITIONS


ADMIN_ROLE = "Admin"


def _all_at(level: int, module: str) -> dict[str, int]:
    return {f"{m}.{a}": level for m, a, _ in PERMISSION_DEFINITIONS if m == module}


DEFAULT_ROLE_PERMISSIONS = {
    # Admin is a superuser role (Role.is_superuser); its map is informational only
    ADMIN_ROLE: {f"{m}.{a}": 3 for m, a, _ in PERMISSION_DEFINITIONS},
    "Manager": {
        **_all_at(2, "production"),
        "production.delete": 2,
        "production.manageAll": 3,
        **_all_at(2, "inventory"),
        "users.read": 1,
        "roles.read": 1,
        "notifications.read": 1,
        "notifications.send": 1,
        "audit.read": 1,
        "statistics.read": 1,
        "statistics.viewReports": 1,
        **_all_at(2, "templates"),
        **_all_at(2, "timeTracking"),
        **_all_at(2, "quality"),
    },
    "Warehouse": {
        **_all_at(2, "inventory"),
        "inventory.delete": 1,
        "production.read": 1,
        "notifications.read": 1,
        "statistics.read": 1,
        "timeTracking.read": 1,
        "timeTracking.create": 1,
        "timeTracking.update": 1,
    },
    "Worker": {
        "production.read": 1,
        "production.work": 1,
        "inventory.read": 1,
        "notifications.read": 1,
        "templates.read": 1,
        "timeTracking.read": 1,
        "timeTracking.create": 1,
        "timeTracking.update": 1,
        "quality.read": 1,
        "quality.create": 1,
    },
}

SUPERUSER_ROLES = {ADMIN_ROLE}
