"""
Notification tests.

Verifies:
- Fan-out skips the actor, inactive and unknown users
- Scheduled notifications stay hidden until due
- Read / archive state is per user
"""

from datetime import timedelta

import pytest

from prodflow.models import Notification
from prodflow.services import notification_service, user_service
from prodflow.time_utils import utcnow
from prodflow.validation import ValidationError, NotFoundError


def _inbox(user):
    return notification_service.list_notifications(user_id=user.id)


class TestFanOut:

    def test_actor_is_excluded(self, db_session, manager_user, worker_user):
        sent = notification_service.notify_users(
            [manager_user.id, worker_user.id], "Shift change", exclude_user_id=manager_user.id,
        )
        assert sent == 1
        assert _inbox(worker_user)["unread_count"] == 1
        assert _inbox(manager_user)["unread_count"] == 0

    def test_inactive_and_unknown_users_skipped(self, db_session, manager_user, worker_user):
        user_service.deactivate_user(worker_user.id)
        sent = notification_service.notify_users([worker_user.id, 9999, "x", True], "Hello")
        assert sent == 0
        assert db_session.query(Notification).count() == 0

    def test_duplicates_collapse(self, db_session, worker_user):
        assert notification_service.notify_users([worker_user.id, worker_user.id], "Once") == 1

    def test_send_manual_validates(self, db_session, manager_user, worker_user):
        with pytest.raises(ValidationError):
            notification_service.send_manual(user_ids=[worker_user.id], content="  ", sender_id=manager_user.id)
        with pytest.raises(ValidationError):
            notification_service.send_manual(user_ids=[worker_user.id], content="Hi", type="URGENT",
                                             sender_id=manager_user.id)
        with pytest.raises(ValidationError):
            notification_service.send_manual(user_ids=[], content="Hi", sender_id=manager_user.id)

    def test_send_manual_records_sender(self, db_session, manager_user, worker_user):
        sent = notification_service.send_manual(
            user_ids=[worker_user.id], content="Meeting at 10", link="/calendar", type="system",
            sender_id=manager_user.id,
        )
        assert sent == 1
        note = db_session.query(Notification).one()
        assert note.created_by_id == manager_user.id
        assert note.type == "SYSTEM"
        assert note.link == "/calendar"


class TestScheduled:

    def test_hidden_until_due(self, db_session, manager_user, worker_user):
        created = notification_service.schedule_notification(
            user_ids=[worker_user.id], content="Inventory count tomorrow",
            scheduled_at=utcnow() + timedelta(hours=1), created_by_id=manager_user.id,
        )
        assert len(created) == 1
        assert _inbox(worker_user)["pagination"]["total"] == 0
        assert len(notification_service.list_scheduled(created_by_id=manager_user.id)) == 1

        created[0].scheduled_at = utcnow() - timedelta(seconds=1)
        db_session.commit()
        assert _inbox(worker_user)["pagination"]["total"] == 1

    def test_past_time_rejected(self, db_session, manager_user, worker_user):
        with pytest.raises(ValidationError):
            notification_service.schedule_notification(
                user_ids=[worker_user.id], content="Too late",
                scheduled_at=utcnow() - timedelta(minutes=1), created_by_id=manager_user.id,
            )

    def test_cancel_own_only(self, db_session, manager_user, warehouse_user, worker_user):
        note, = notification_service.schedule_notification(
            user_ids=[worker_user.id], content="Later",
            scheduled_at=utcnow() + timedelta(hours=1), created_by_id=manager_user.id,
        )

        with pytest.raises(NotFoundError):
            notification_service.cancel_scheduled(note.id, user_id=warehouse_user.id)

        notification_service.cancel_scheduled(note.id, user_id=warehouse_user.id, can_manage_all=True)
        assert db_session.query(Notification).count() == 0


class TestInbox:

    def test_mark_read_and_archive(self, db_session, worker_user):
        notification_service.notify_users([worker_user.id], "One")
        notification_service.notify_users([worker_user.id], "Two")
        first, second = sorted(db_session.query(Notification).all(), key=lambda n: n.id)

        notification_service.mark_read(first.id, user_id=worker_user.id)
        assert _inbox(worker_user)["unread_count"] == 1

        notification_service.archive(second.id, user_id=worker_user.id)
        inbox = _inbox(worker_user)
        assert inbox["unread_count"] == 0
        assert [n["content"] for n in inbox["notifications"]] == ["One"]

        with_archived = notification_service.list_notifications(user_id=worker_user.id, include_archived=True)
        assert with_archived["pagination"]["total"] == 2

    def test_other_users_notification_not_found(self, db_session, manager_user, worker_user):
        notification_service.notify_users([worker_user.id], "Private")
        note = db_session.query(Notification).one()
        with pytest.raises(NotFoundError):
            notification_service.mark_read(note.id, user_id=manager_user.id)

    def test_bulk_operations(self, db_session, worker_user):
        for text in ("A", "B", "C"):
            notification_service.notify_users([worker_user.id], text)

        assert notification_service.mark_all_read(user_id=worker_user.id) == 3
        assert _inbox(worker_user)["unread_count"] == 0

        assert notification_service.archive_all(user_id=worker_user.id) == 3
        assert _inbox(worker_user)["pagination"]["total"] == 0

    def test_unread_only_filter(self, db_session, worker_user):
        notification_service.notify_users([worker_user.id], "A")
        notification_service.notify_users([worker_user.id], "B")
        first = db_session.query(Notification).order_by(Notification.id).first()
        notification_service.mark_read(first.id, user_id=worker_user.id)

        result = notification_service.list_notifications(user_id=worker_user.id, unread_only=True)
        assert [n["content"] for n in result["notifications"]] == ["B"]
