"""
Template tests.

Verifies:
- Snapshot of a live guide (fields, steps, inventory lines)
- Instantiation creates a DRAFT guide with steps and reserved inventory
- Deleted roles and items degrade gracefully
"""

import pytest

from prodflow.models import InventoryItem, ProductionTemplate
from prodflow.services import (
    template_service,
    step_service,
    guide_service,
    guide_inventory_service,
    inventory_service,
    role_service,
)
from prodflow.validation import ValidationError, ConflictError, NotFoundError


def _snapshot_data(item_id=None, role_id=None):
    data = {
        "guide": {"title": "Frame", "priority": "HIGH"},
        "steps": [
            {"title": "Cut", "estimatedTime": 30, "assignedToRoleId": role_id},
            {"title": "Weld"},
        ],
    }
    if item_id is not None:
        data["inventory"] = [{"itemId": item_id, "quantity": 4, "stepOrder": 1}]
    return data


class TestCreate:

    def test_create_normalizes_keys(self, db_session, manager_user):
        template = template_service.create_template(
            name="Frame kit", description=None, data=_snapshot_data(), user_id=manager_user.id,
        )
        steps = template.data["steps"]
        assert steps[0]["estimated_time"] == 30
        assert [s["order"] for s in steps] == [0, 1]
        assert template.to_dict()["step_count"] == 2

    def test_duplicate_name_conflicts(self, db_session, manager_user):
        template_service.create_template(name="Frame kit", description=None, data={}, user_id=manager_user.id)
        with pytest.raises(ConflictError):
            template_service.create_template(name="frame KIT", description=None, data={}, user_id=manager_user.id)

    def test_step_without_title_rejected(self, db_session, manager_user):
        with pytest.raises(ValidationError):
            template_service.create_template(
                name="Broken", description=None, data={"steps": [{"description": "no title"}]},
                user_id=manager_user.id,
            )

    def test_update_and_delete(self, db_session, manager_user):
        template = template_service.create_template(name="Frame kit", description=None, data={},
                                                    user_id=manager_user.id)
        template_service.update_template(template.id, payload={"name": "Frame kit v2", "data": _snapshot_data()},
                                         user_id=manager_user.id)
        assert template.name == "Frame kit v2"
        assert len(template.data["steps"]) == 2

        template_service.delete_template(template.id, user_id=manager_user.id)
        with pytest.raises(NotFoundError):
            template_service.get_template(template.id)

    def test_list_search(self, db_session, manager_user):
        template_service.create_template(name="Frame kit", description=None, data={}, user_id=manager_user.id)
        template_service.create_template(name="Door kit", description=None, data={}, user_id=manager_user.id)
        result = template_service.list_templates(search="door")
        assert [t["name"] for t in result["templates"]] == ["Door kit"]


class TestTemplateFromGuide:

    def test_snapshot_captures_steps_and_inventory(self, db_session, guide, item, manager_user):
        step_service.add_step(guide.id, patch={"title": "Cut", "estimated_time": 20}, user_id=manager_user.id)
        weld = step_service.add_step(guide.id, patch={"title": "Weld"}, user_id=manager_user.id)
        guide_inventory_service.attach_items(
            guide.id, [{"itemId": item.id, "quantity": 3, "stepId": weld.id}], user_id=manager_user.id,
        )

        template = template_service.template_from_guide(guide.id, name="Frame kit", user_id=manager_user.id)

        assert template.source_guide_id == guide.id
        assert [s["title"] for s in template.data["steps"]] == ["Cut", "Weld"]
        assert template.data["steps"][0]["estimated_time"] == 20
        assert template.data["inventory"] == [{"item_id": item.id, "quantity": 3.0, "step_order": 1}]


class TestGuideFromTemplate:

    def test_instantiate_creates_draft_with_steps_and_reservations(self, db_session, item, manager_user):
        template = template_service.create_template(
            name="Frame kit", description=None, data=_snapshot_data(item_id=item.id), user_id=manager_user.id,
        )

        result = template_service.guide_from_template(template.id, user_id=manager_user.id)

        guide = result["guide"]
        assert guide["status"] == "DRAFT"
        assert guide["title"] == "Frame"
        assert guide["priority"] == "HIGH"
        assert [s["title"] for s in guide["steps"]] == ["Cut", "Weld"]
        assert result["inventory"]["success"] is True
        assert guide["inventory"][0]["step_id"] == guide["steps"][1]["id"]

        stored = db_session.get(InventoryItem, item.id)
        assert stored.reserved == 4.0

    def test_overrides_apply(self, db_session, manager_user, worker_user):
        template = template_service.create_template(name="Frame kit", description=None, data=_snapshot_data(),
                                                    user_id=manager_user.id)
        result = template_service.guide_from_template(
            template.id,
            overrides={"title": "Frame #42", "assigned_user_ids": [worker_user.id]},
            user_id=manager_user.id,
        )
        assert result["guide"]["title"] == "Frame #42"
        assert [u["id"] for u in result["guide"]["assigned_users"]] == [worker_user.id]

    def test_missing_item_reported(self, db_session, item, manager_user):
        template = template_service.create_template(
            name="Frame kit", description=None, data=_snapshot_data(item_id=item.id), user_id=manager_user.id,
        )
        item_id = item.id
        inventory_service.delete_item(item_id, user_id=manager_user.id)

        result = template_service.guide_from_template(template.id, user_id=manager_user.id)

        assert result["inventory"]["success"] is False
        assert result["inventory"]["errors"] == [{"itemId": item_id, "error": "Item no longer exists"}]
        assert len(result["guide"]["steps"]) == 2

    def test_deleted_role_is_dropped(self, db_session, manager_user):
        role = role_service.create_role(name="Painter", permissions={"production.work": 1})
        template = template_service.create_template(
            name="Frame kit", description=None, data=_snapshot_data(role_id=role.id), user_id=manager_user.id,
        )
        role_id = role.id
        role_service.delete_role(role_id)

        result = template_service.guide_from_template(template.id, user_id=manager_user.id)

        assert result["dropped_roles"] == [role_id]
        assert result["guide"]["steps"][0]["assigned_to_role_id"] is None

    def test_template_survives_source_guide_deletion(self, db_session, guide, manager_user):
        step_service.add_step(guide.id, patch={"title": "Cut"}, user_id=manager_user.id)
        template = template_service.template_from_guide(guide.id, name="Frame kit", user_id=manager_user.id)
        guide_service.delete_guide(guide.id, user_id=manager_user.id)

        assert db_session.get(ProductionTemplate, template.id) is not None
        result = template_service.guide_from_template(template.id, user_id=manager_user.id)
        assert [s["title"] for s in result["guide"]["steps"]] == ["Cut"]
