"""
Guide inventory tests.

Verifies:
- Attaching reserves stock; detaching and guide deletion release it
- Per-line errors do not block the other lines
- Withdraw posts ISSUE and is limited to assignees or production.manageAll
"""

import pytest

from prodflow.models import GuideInventory, InventoryItem, InventoryTransaction
from prodflow.services import guide_inventory_service, guide_service, inventory_service, permission_service, step_service
from prodflow.services.guide_service import WorkflowError
from prodflow.services.permission_service import PermissionDeniedError
from prodflow.validation import ValidationError, NotFoundError


def _counters(session, item_id):
    item = session.get(InventoryItem, item_id)
    session.refresh(item)
    return item.quantity, item.reserved


def _attach(guide, item, quantity, user):
    return guide_inventory_service.attach_items(
        guide.id, [{"itemId": item.id, "quantity": quantity}], user_id=user.id,
    )


class TestAttach:

    def test_attach_reserves_stock(self, db_session, guide, item, manager_user):
        result = _attach(guide, item, 4, manager_user)

        assert result["success"] is True
        assert result["errors"] == []
        assert _counters(db_session, item.id) == (10.0, 4.0)

        row = db_session.query(GuideInventory).filter_by(guide_id=guide.id, item_id=item.id).one()
        assert row.reserved is True
        tx = db_session.query(InventoryTransaction).filter_by(item_id=item.id, type="RESERVE").one()
        assert tx.guide_id == guide.id

    def test_reattach_replaces_reserved_quantity(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        _attach(guide, item, 6, manager_user)

        assert _counters(db_session, item.id) == (10.0, 6.0)
        assert db_session.query(GuideInventory).filter_by(guide_id=guide.id).count() == 1

    def test_partial_failure_keeps_good_lines(self, db_session, guide, item, manager_user):
        result = guide_inventory_service.attach_items(
            guide.id,
            [
                {"itemId": item.id, "quantity": 3},
                {"itemId": 999, "quantity": 1},
                {"itemId": item.id, "quantity": 50},
            ],
            user_id=manager_user.id,
        )

        assert result["success"] is False
        assert len(result["results"]) == 1
        assert [e["itemId"] for e in result["errors"]] == [999, item.id]
        assert _counters(db_session, item.id) == (10.0, 3.0)

    def test_invalid_line_reported(self, db_session, guide, item, manager_user):
        result = guide_inventory_service.attach_items(
            guide.id, [{"itemId": "abc", "quantity": 1}, {"itemId": item.id, "quantity": -2}],
            user_id=manager_user.id,
        )
        assert len(result["errors"]) == 2
        assert _counters(db_session, item.id) == (10.0, 0.0)

    def test_step_must_belong_to_guide(self, db_session, guide, item, manager_user):
        other = guide_service.create_guide(patch={"title": "Other"}, user_id=manager_user.id)
        foreign_step = step_service.add_step(other.id, patch={"title": "Cut"}, user_id=manager_user.id)

        result = guide_inventory_service.attach_items(
            guide.id, [{"itemId": item.id, "quantity": 1, "stepId": foreign_step.id}], user_id=manager_user.id,
        )
        assert result["success"] is False

    def test_empty_list_rejected(self, db_session, guide, manager_user):
        with pytest.raises(ValidationError):
            guide_inventory_service.attach_items(guide.id, [], user_id=manager_user.id)

    def test_archived_guide_rejects_attach(self, db_session, guide, item, manager_user):
        guide_service.archive_guide(guide.id, user_id=manager_user.id)
        with pytest.raises(WorkflowError):
            _attach(guide, item, 1, manager_user)


class TestDetachAndReservation:

    def test_detach_releases(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        guide_inventory_service.detach_item(guide.id, item.id, user_id=manager_user.id)

        assert _counters(db_session, item.id) == (10.0, 0.0)
        assert db_session.query(GuideInventory).count() == 0

    def test_detach_unknown(self, db_session, guide, item, manager_user):
        with pytest.raises(NotFoundError):
            guide_inventory_service.detach_item(guide.id, item.id, user_id=manager_user.id)

    def test_toggle_reservation(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)

        guide_inventory_service.set_reservation(guide.id, item.id, False, user_id=manager_user.id)
        assert _counters(db_session, item.id) == (10.0, 0.0)

        guide_inventory_service.set_reservation(guide.id, item.id, True, user_id=manager_user.id)
        assert _counters(db_session, item.id) == (10.0, 4.0)

    def test_delete_guide_releases_reservations(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)

        released = guide_service.delete_guide(guide.id, user_id=manager_user.id)

        assert released == 1
        assert _counters(db_session, item.id) == (10.0, 0.0)
        assert db_session.query(GuideInventory).count() == 0

    def test_list_guide_inventory_reports_available(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        rows = guide_inventory_service.list_guide_inventory(guide.id)
        assert rows[0]["item_id"] == item.id
        assert rows[0]["available"] == 6.0


class TestWithdraw:

    def test_assignee_can_withdraw(self, db_session, guide, item, manager_user, worker_user):
        guide_service.assign_users(guide.id, [worker_user.id], user_id=manager_user.id)
        _attach(guide, item, 4, manager_user)

        result = guide_inventory_service.withdraw_items(
            guide.id, user=worker_user, permissions=permission_service.snapshot_for_user(worker_user),
        )

        assert result["count"] == 1
        assert _counters(db_session, item.id) == (6.0, 0.0)
        row = db_session.query(GuideInventory).filter_by(guide_id=guide.id).one()
        assert row.is_withdrawn
        assert row.withdrawn_by_id == worker_user.id
        assert db_session.query(InventoryTransaction).filter_by(item_id=item.id, type="ISSUE").count() == 1

    def test_non_assignee_denied(self, db_session, guide, item, manager_user, worker_user):
        _attach(guide, item, 4, manager_user)
        with pytest.raises(PermissionDeniedError):
            guide_inventory_service.withdraw_items(
                guide.id, user=worker_user, permissions=permission_service.snapshot_for_user(worker_user),
            )
        assert _counters(db_session, item.id) == (10.0, 4.0)

    def test_manage_all_can_withdraw_unassigned(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        result = guide_inventory_service.withdraw_items(
            guide.id, user=manager_user, permissions=permission_service.snapshot_for_user(manager_user),
        )
        assert result["count"] == 1

    def test_withdraw_subset(self, db_session, guide, item, manager_user):
        nuts = inventory_service.create_item(patch={"name": "Nut M8", "quantity": 20}, user_id=manager_user.id)
        guide_inventory_service.attach_items(
            guide.id,
            [{"itemId": item.id, "quantity": 2}, {"itemId": nuts.id, "quantity": 5}],
            user_id=manager_user.id,
        )
        perms = permission_service.snapshot_for_user(manager_user)

        result = guide_inventory_service.withdraw_items(guide.id, user=manager_user, permissions=perms,
                                                        item_ids=[nuts.id])

        assert [w["item_id"] for w in result["withdrawn"]] == [nuts.id]
        assert _counters(db_session, item.id) == (10.0, 2.0)
        assert _counters(db_session, nuts.id) == (15.0, 0.0)

    def test_nothing_to_withdraw(self, db_session, guide, manager_user):
        with pytest.raises(WorkflowError):
            guide_inventory_service.withdraw_items(
                guide.id, user=manager_user, permissions=permission_service.snapshot_for_user(manager_user),
            )

    def test_withdrawn_rows_are_not_released_on_delete(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        guide_inventory_service.withdraw_items(
            guide.id, user=manager_user, permissions=permission_service.snapshot_for_user(manager_user),
        )

        assert guide_service.delete_guide(guide.id, user_id=manager_user.id) == 0
        assert _counters(db_session, item.id) == (6.0, 0.0)

    def test_reattach_after_withdraw_rejected(self, db_session, guide, item, manager_user):
        _attach(guide, item, 4, manager_user)
        guide_inventory_service.withdraw_items(
            guide.id, user=manager_user, permissions=permission_service.snapshot_for_user(manager_user),
        )
        result = _attach(guide, item, 1, manager_user)
        assert result["success"] is False
