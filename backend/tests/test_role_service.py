"""
Role / permission CRUD tests.

Verifies:
- Whole-set replacement of a role's permission map
- Level 0 entries are not stored; unknown keys are skipped
- Name uniqueness (case-insensitive) and in-use delete protection
- Deleting a role releases the steps assigned to it
- Catalog listing grouped by module
"""

import pytest

from prodflow import create_app
from prodflow.extensions import db
from prodflow.models import RolePermission, AuditLog
from prodflow.permissions import PERMISSION_DEFINITIONS
from prodflow.services import role_service, guide_service, step_service, work_service, permission_service
from prodflow.validation import ValidationError, ConflictError, NotFoundError


class TestCreateRole:

    def test_create_stores_non_zero_levels(self, db_session, setup_roles):
        role = role_service.create_role(
            name="Packer",
            permissions={"production.read": 1, "production.work": 2, "inventory.read": 0},
        )
        assert role_service.flatten_role_permissions(role.id) == {
            "production.read": 1,
            "production.work": 2,
        }
        assert db_session.query(RolePermission).filter_by(role_id=role.id).count() == 2

    def test_unknown_keys_are_skipped(self, db_session, setup_roles):
        role = role_service.create_role(name="Future", permissions={"robots.dance": 3, "audit.read": 1})
        assert role_service.flatten_role_permissions(role.id) == {"audit.read": 1}

    @pytest.mark.parametrize("level", [4, -1, "2", 1.5, None])
    def test_invalid_level_rejected(self, db_session, setup_roles, level):
        with pytest.raises(ValidationError):
            role_service.create_role(name="Broken", permissions={"audit.read": level})

    def test_duplicate_name_is_case_insensitive(self, db_session, setup_roles):
        with pytest.raises(ConflictError):
            role_service.create_role(name="manager")

    def test_blank_name_rejected(self, db_session, setup_roles):
        with pytest.raises(ValidationError):
            role_service.create_role(name="   ")

    def test_create_writes_audit_row(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer", permissions={"production.read": 1}, actor_id=None)
        log = db_session.query(AuditLog).filter_by(module="roles", action="create", target_id=str(role.id)).one()
        assert log.meta["permissions"] == {"production.read": 1}

    def test_audit_row_lists_only_catalog_keys(self, db_session, setup_roles):
        role = role_service.create_role(name="Future", permissions={"robots.dance": 3, "audit.read": 1})
        log = db_session.query(AuditLog).filter_by(module="roles", action="create", target_id=str(role.id)).one()
        assert log.meta["permissions"] == {"audit.read": 1}


class TestUpdateRole:

    def test_permissions_are_replaced_not_merged(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer", permissions={"production.read": 1, "production.work": 1})

        role_service.update_role(role.id, permissions={"inventory.read": 2})

        assert role_service.flatten_role_permissions(role.id) == {"inventory.read": 2}

    def test_omitted_permissions_leave_map_untouched(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer", permissions={"production.read": 1})

        role_service.update_role(role.id, description="Packs boxes")

        assert role_service.flatten_role_permissions(role.id) == {"production.read": 1}
        assert role.description == "Packs boxes"

    def test_empty_map_clears_permissions(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer", permissions={"production.read": 1})
        role_service.update_role(role.id, permissions={})
        assert role_service.flatten_role_permissions(role.id) == {}

    def test_rename_to_existing_name_conflicts(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer")
        with pytest.raises(ConflictError):
            role_service.update_role(role.id, name="Worker")

    def test_invalid_level_leaves_role_unchanged(self, db_session, setup_roles):
        role = role_service.create_role(name="Packer", permissions={"production.read": 1})
        with pytest.raises(ValidationError):
            role_service.update_role(role.id, permissions={"production.read": 9})
        assert role_service.flatten_role_permissions(role.id) == {"production.read": 1}

    def test_missing_role(self, db_session, setup_roles):
        with pytest.raises(NotFoundError):
            role_service.update_role(9999, name="Ghost")


class TestDeleteRole:

    def test_delete_unused_role(self, db_session, setup_roles):
        role = role_service.create_role(name="Temp", permissions={"audit.read": 1})
        role_id = role.id

        role_service.delete_role(role_id)

        with pytest.raises(NotFoundError):
            role_service.get_role(role_id)
        assert db_session.query(RolePermission).filter_by(role_id=role_id).count() == 0

    def test_role_in_use_cannot_be_deleted(self, db_session, worker_user):
        worker_role_id = next(r["id"] for r in role_service.list_roles()["roles"] if r["name"] == "Worker")
        with pytest.raises(ConflictError):
            role_service.delete_role(worker_role_id)

    def test_delete_releases_assigned_steps(self, db_session, manager_user, worker_user):
        welder = role_service.create_role(name="Welder", permissions={"production.work": 1})
        guide = guide_service.create_guide(patch={"title": "Weld frame"}, user_id=manager_user.id)
        step = step_service.add_step(
            guide.id, patch={"title": "Weld seams", "assigned_to_role_id": welder.id}, user_id=manager_user.id
        )

        welder_id = welder.id

        role_service.delete_role(welder_id)

        db_session.refresh(step)
        assert step.assigned_to_role_id is None
        log = db_session.query(AuditLog).filter_by(module="roles", action="delete", target_id=str(welder_id)).one()
        assert log.meta["unassigned_steps"] == 1

        # Any worker can now pick the step up
        session = work_service.start_work(
            step.id, user=worker_user, permissions=permission_service.snapshot_for_user(worker_user)
        )
        assert session.end_time is None


class TestListing:

    def test_list_roles_includes_user_count(self, db_session, worker_user):
        roles = {r["name"]: r for r in role_service.list_roles()["roles"]}
        assert set(roles) >= {"Admin", "Manager", "Warehouse", "Worker"}
        assert roles["Worker"]["userCount"] == 1
        assert roles["Manager"]["userCount"] == 0
        assert roles["Worker"]["permissions"]["production.work"] == 1

    def test_search_filters_by_name(self, db_session, setup_roles):
        result = role_service.list_roles(search="ware")
        assert [r["name"] for r in result["roles"]] == ["Warehouse"]
        assert result["pagination"]["total"] == 1

    def test_catalog_grouped_by_module(self, db_session, setup_roles):
        catalog = role_service.get_all_permissions(refresh=True)
        assert len(catalog["permissions"]) == len(PERMISSION_DEFINITIONS)
        assert {p["action"] for p in catalog["groupedByModule"]["audit"]} == {"read"}

    def test_default_roles_are_idempotent(self, db_session, setup_roles):
        assert role_service.create_default_roles() == 0

    def test_catalog_cache_is_per_app(self, db_session, setup_roles):
        assert role_service.get_all_permissions()["permissions"]

        other = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        })
        with other.app_context():
            db.create_all()
            try:
                assert role_service.get_all_permissions()["permissions"] == []
            finally:
                db.drop_all()

        assert role_service.get_all_permissions()["permissions"]
