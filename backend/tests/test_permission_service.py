"""
Permission evaluator tests.

Verifies:
- Level comparison against the effective map (max over roles)
- Superusers and the "*.*" wildcard pass every check
- Malformed inputs evaluate to False instead of raising
- require_permission logs PERMISSION_DENIED security events
"""

import pytest

from prodflow.models import SecurityEvent
from prodflow.permissions import (
    PERMISSION_DEFINITIONS,
    DEFAULT_ROLE_PERMISSIONS,
    get_all_permission_keys,
    split_permission_key,
    validate_level,
)
from prodflow.services import permission_service, role_service
from prodflow.services.permission_service import (
    has_permission,
    PermissionSnapshot,
    PermissionDeniedError,
)


# =============================================================================
# PURE EVALUATION
# =============================================================================


class TestHasPermission:

    def test_level_comparison(self):
        perms = {"permissions": {"inventory.manage": 2}}
        assert has_permission(perms, "inventory", "manage", 1)
        assert has_permission(perms, "inventory", "manage", 2)
        assert not has_permission(perms, "inventory", "manage", 3)

    def test_missing_key_is_level_zero(self):
        perms = {"permissions": {"inventory.read": 1}}
        assert not has_permission(perms, "inventory", "manage", 1)
        assert has_permission(perms, "inventory", "manage", 0)

    def test_superuser_flag_passes_everything(self):
        snapshot = PermissionSnapshot(user_id=1, is_superuser=True, permissions={})
        assert has_permission(snapshot, "roles", "delete", 3)
        assert has_permission(snapshot, "anything", "at_all", 3)

    def test_wildcard_key_at_full_passes(self):
        perms = {"permissions": {"*.*": 3}}
        assert has_permission(perms, "audit", "read", 3)

    def test_wildcard_below_full_does_not_pass(self):
        perms = {"permissions": {"*.*": 2}}
        assert not has_permission(perms, "audit", "read", 1)

    @pytest.mark.parametrize("user", [None, 42, "admin", {"permissions": None}, {"permissions": ["x"]}])
    def test_malformed_user_is_denied(self, user):
        assert not has_permission(user, "inventory", "read", 1)

    def test_non_integer_level_value_is_denied(self):
        perms = {"permissions": {"inventory.read": "3"}}
        assert not has_permission(perms, "inventory", "read", 1)

    def test_bool_level_value_is_denied(self):
        perms = {"permissions": {"inventory.read": True}}
        assert not has_permission(perms, "inventory", "read", 1)

    def test_snapshot_payload_includes_wildcard_for_superuser(self):
        snapshot = PermissionSnapshot(user_id=1, is_superuser=True, permissions={"audit.read": 1})
        assert snapshot.to_payload() == {"audit.read": 1, "*.*": 3}


class TestPermissionHelpers:

    def test_split_permission_key(self):
        assert split_permission_key("production.manageAll") == ("production", "manageAll")
        assert split_permission_key("production") is None
        assert split_permission_key("a.b.c") is None
        assert split_permission_key(".read") is None

    @pytest.mark.parametrize("level,ok", [(0, True), (3, True), (4, False), (-1, False), (True, False), ("2", False)])
    def test_validate_level(self, level, ok):
        assert validate_level(level) is ok

    def test_default_roles_only_use_catalog_keys(self):
        keys = set(get_all_permission_keys())
        for role, mapping in DEFAULT_ROLE_PERMISSIONS.items():
            unknown = set(mapping) - keys
            assert not unknown, f"{role} references unknown keys {unknown}"


# =============================================================================
# EFFECTIVE PERMISSIONS FROM ROLES
# =============================================================================


class TestEffectivePermissions:

    def test_catalog_seeding_is_idempotent(self, db_session):
        assert permission_service.initialize_permissions() == len(PERMISSION_DEFINITIONS)
        assert permission_service.initialize_permissions() == 0

    def test_max_over_roles(self, db_session, setup_roles, make_user):
        role_service.create_role(name="Auditor", permissions={"audit.read": 1, "inventory.manage": 3})
        user = make_user("multi", "Warehouse", "Auditor")

        perms = permission_service.get_user_permissions(user.id)
        assert perms["inventory.manage"] == 3
        assert perms["inventory.read"] == 2
        assert perms["audit.read"] == 1
        assert "roles.delete" not in perms

    def test_user_without_roles_has_nothing(self, db_session, make_user):
        user = make_user("nobody")
        snapshot = permission_service.snapshot_for_user(user)
        assert snapshot.permissions == {}
        assert not snapshot.is_superuser
        assert not has_permission(snapshot, "production", "read", 1)

    def test_admin_role_is_superuser(self, admin_user):
        snapshot = permission_service.snapshot_for_user(admin_user)
        assert snapshot.is_superuser
        assert has_permission(snapshot, "roles", "delete", 3)

    def test_users_with_permission_includes_superusers(self, admin_user, manager_user, worker_user):
        ids = permission_service.users_with_permission("inventory", "manage", 2)
        assert admin_user.id in ids
        assert manager_user.id in ids
        assert worker_user.id not in ids


class TestRequirePermission:

    def test_denial_raises_and_logs(self, db_session, worker_user):
        snapshot = permission_service.snapshot_for_user(worker_user)

        with pytest.raises(PermissionDeniedError):
            permission_service.require_permission(snapshot, "inventory", "manage", 2, resource="/test")

        event = db_session.query(SecurityEvent).filter_by(user_id=worker_user.id).one()
        assert event.event_type == "PERMISSION_DENIED"
        assert event.success is False
        assert event.action == "inventory.manage>=2"

    def test_allowed_logs_nothing(self, db_session, manager_user):
        snapshot = permission_service.snapshot_for_user(manager_user)
        permission_service.require_permission(snapshot, "inventory", "manage", 2)
        assert db_session.query(SecurityEvent).count() == 0
