# Overview: All permission definitions organized by module.
# Each permission is defined as: (module, action, description)

from .modules import PermissionModule


# -- PRODUCTION --

PRODUCTION_PERMISSIONS = [
    (PermissionModule.PRODUCTION, "read", "View production guides and steps"),
    (PermissionModule.PRODUCTION, "create", "Create production guides and steps"),
    (PermissionModule.PRODUCTION, "update", "Edit production guides and steps"),
    (PermissionModule.PRODUCTION, "delete", "Delete guides (level 2) and steps"),
    (PermissionModule.PRODUCTION, "work", "Start and end work on steps"),
    (PermissionModule.PRODUCTION, "assign", "Assign users to guides"),
    (PermissionModule.PRODUCTION, "manage", "Archive, restore and manage guide inventory"),
    (PermissionModule.PRODUCTION, "manageAll", "Work on any step regardless of role"),
    (PermissionModule.PRODUCTION, "manualWork", "Record manual work time"),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (PermissionModule.INVENTORY, "read", "View items, stock levels and transactions"),
    (PermissionModule.INVENTORY, "create", "Create items and add stock"),
    (PermissionModule.INVENTORY, "update", "Edit items, remove and reserve stock"),
    (PermissionModule.INVENTORY, "delete", "Delete unused items"),
    (PermissionModule.INVENTORY, "manage", "Adjust and force stock corrections (level 2)"),
]


# -- USERS / ROLES --

USER_PERMISSIONS = [
    (PermissionModule.USERS, "read", "View users"),
    (PermissionModule.USERS, "create", "Create users"),
    (PermissionModule.USERS, "update", "Edit users and their roles"),
    (PermissionModule.USERS, "delete", "Deactivate users"),
]

ROLE_PERMISSIONS = [
    (PermissionModule.ROLES, "read", "View roles and the permission catalog"),
    (PermissionModule.ROLES, "create", "Create roles"),
    (PermissionModule.ROLES, "update", "Edit roles and their permissions"),
    (PermissionModule.ROLES, "delete", "Delete unused roles"),
]


# -- COMMUNICATIONS / REPORTING --

NOTIFICATION_PERMISSIONS = [
    (PermissionModule.NOTIFICATIONS, "read", "View own notifications"),
    (PermissionModule.NOTIFICATIONS, "send", "Send and schedule notifications to users"),
]

AUDIT_PERMISSIONS = [
    (PermissionModule.AUDIT, "read", "View the audit log"),
]

STATISTICS_PERMISSIONS = [
    (PermissionModule.STATISTICS, "read", "View the dashboard"),
    (PermissionModule.STATISTICS, "viewReports", "View inventory and production reports"),
]

TEMPLATE_PERMISSIONS = [
    (PermissionModule.TEMPLATES, "read", "View production templates"),
    (PermissionModule.TEMPLATES, "create", "Create templates and guides from templates"),
    (PermissionModule.TEMPLATES, "update", "Edit templates"),
    (PermissionModule.TEMPLATES, "delete", "Delete templates"),
]


# -- TIME TRACKING / QUALITY --

TIME_TRACKING_PERMISSIONS = [
    (PermissionModule.TIME_TRACKING, "read", "View own work-day sessions and summaries"),
    (PermissionModule.TIME_TRACKING, "create", "Start work-day sessions"),
    (PermissionModule.TIME_TRACKING, "update", "End sessions, take breaks, edit notes (level 2: any user)"),
    (PermissionModule.TIME_TRACKING, "delete", "Delete work-day sessions"),
    (PermissionModule.TIME_TRACKING, "manageSettings", "Change time tracking settings"),
    (PermissionModule.TIME_TRACKING, "viewReports", "Build time tracking reports"),
    (PermissionModule.TIME_TRACKING, "viewAll", "View sessions of other users"),
]

QUALITY_PERMISSIONS = [
    (PermissionModule.QUALITY, "read", "View quality check templates and results"),
    (PermissionModule.QUALITY, "create", "Create templates and record quality checks"),
    (PermissionModule.QUALITY, "update", "Edit quality check templates"),
    (PermissionModule.QUALITY, "delete", "Delete unused quality check templates"),
]


# Combined list of all permissions (preserves ordering for the role editor)
PERMISSION_DEFINITIONS = (
    PRODUCTION_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + USER_PERMISSIONS
    + ROLE_PERMISSIONS
    + NOTIFICATION_PERMISSIONS
    + AUDIT_PERMISSIONS
    + STATISTICS_PERMISSIONS
    + TEMPLATE_PERMISSIONS
    + TIME_TRACKING_PERMISSIONS
    + QUALITY_PERMISSIONS
)
