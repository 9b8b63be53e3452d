# Overview: Service-layer operations for notifications; best-effort fan-out and inbox queries.

"""
Notifications

Fan-out (notify_users) is best effort: delivery problems are logged and never
raised to the caller, so a failed notification cannot undo the ledger or
workflow change that triggered it. It always runs after the caller's commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Notification, User
from ..validation import ValidationError, NotFoundError, pagination_dict
from prodflow.time_utils import utcnow


logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("SYSTEM", "PRODUCTION", "INVENTORY")
MAX_CONTENT_LENGTH = 2000


def _clean_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content is required")
    content = content.strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"content exceeds max length {MAX_CONTENT_LENGTH}")
    return content


def _clean_type(type_: str | None) -> str:
    type_ = (type_ or "SYSTEM").upper()
    if type_ not in NOTIFICATION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(NOTIFICATION_TYPES)}")
    return type_


def _recipient_ids(user_ids: Iterable, exclude_user_id: int | None) -> list[int]:
    ids = set()
    for uid in user_ids or []:
        if isinstance(uid, bool) or not isinstance(uid, int):
            continue
        if uid != exclude_user_id:
            ids.add(uid)
    if not ids:
        return []
    active = db.session.query(User.id).filter(User.id.in_(ids), User.is_active.is_(True)).all()
    return sorted(r[0] for r in active)


def notify_users(
    user_ids: Iterable[int],
    content: str,
    *,
    link: str = "/",
    type: str = "SYSTEM",
    exclude_user_id: int | None = None,
    created_by_id: int | None = None,
) -> int:
    """
    Best-effort fan-out. Returns count delivered; 0 on any failure.

    Inactive and unknown users are skipped; exclude_user_id (the actor) never
    receives its own notification.
    """
    try:
        recipients = _recipient_ids(user_ids, exclude_user_id)
        if not recipients:
            return 0
        for uid in recipients:
            db.session.add(Notification(
                user_id=uid,
                content=content,
                link=link or "/",
                type=type,
                created_by_id=created_by_id,
            ))
        db.session.commit()
        return len(recipients)
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Notification delivery failed: %s", content[:80], exc_info=True)
        return 0


def send_manual(
    *,
    user_ids: list[int],
    content: str,
    link: str | None = None,
    type: str | None = None,
    sender_id: int,
) -> int:
    """Operator-sent notification. Unlike notify_users, input errors are raised."""
    content = _clean_content(content)
    type_ = _clean_type(type)
    if not isinstance(user_ids, list) or not user_ids:
        raise ValidationError("userIds must be a non-empty list")
    return notify_users(user_ids, content, link=link or "/", type=type_, created_by_id=sender_id)


def schedule_notification(
    *,
    user_ids: list[int],
    content: str,
    scheduled_at: datetime,
    link: str | None = None,
    type: str | None = None,
    created_by_id: int,
) -> list[Notification]:
    """Create notifications that stay hidden until scheduled_at."""
    content = _clean_content(content)
    type_ = _clean_type(type)
    if scheduled_at is None:
        raise ValidationError("scheduledAt is required")
    if scheduled_at <= utcnow():
        raise ValidationError("scheduledAt must be in the future")
    if not isinstance(user_ids, list) or not user_ids:
        raise ValidationError("userIds must be a non-empty list")

    recipients = _recipient_ids(user_ids, None)
    if not recipients:
        raise ValidationError("No active recipients")

    created = []
    for uid in recipients:
        n = Notification(
            user_id=uid,
            content=content,
            link=link or "/",
            type=type_,
            scheduled_at=scheduled_at,
            created_by_id=created_by_id,
        )
        db.session.add(n)
        created.append(n)
    db.session.commit()
    return created


def list_scheduled(*, created_by_id: int | None = None) -> list[dict]:
    """Pending (not yet due) scheduled notifications."""
    query = db.session.query(Notification).filter(
        Notification.scheduled_at.isnot(None),
        Notification.scheduled_at > utcnow(),
    )
    if created_by_id is not None:
        query = query.filter(Notification.created_by_id == created_by_id)
    return [n.to_dict() for n in query.order_by(Notification.scheduled_at).all()]


def cancel_scheduled(notification_id: int, *, user_id: int, can_manage_all: bool = False) -> None:
    n = db.session.get(Notification, notification_id)
    if n is None or n.scheduled_at is None or n.scheduled_at <= utcnow():
        raise NotFoundError("Scheduled notification not found")
    if n.created_by_id != user_id and not can_manage_all:
        raise NotFoundError("Scheduled notification not found")
    db.session.delete(n)
    db.session.commit()


def _visible(query, user_id: int):
    now = utcnow()
    return query.filter(
        Notification.user_id == user_id,
        or_(Notification.scheduled_at.is_(None), Notification.scheduled_at <= now),
    )


def list_notifications(
    *,
    user_id: int,
    include_archived: bool = False,
    unread_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> dict:
    query = _visible(db.session.query(Notification), user_id)
    if not include_archived:
        query = query.filter(Notification.archived.is_(False))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    items = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    unread = (
        _visible(db.session.query(Notification), user_id)
        .filter(Notification.is_read.is_(False), Notification.archived.is_(False))
        .count()
    )
    return {
        "notifications": [n.to_dict() for n in items],
        "unread_count": unread,
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def _get_own(notification_id: int, user_id: int) -> Notification:
    n = _visible(db.session.query(Notification), user_id).filter(Notification.id == notification_id).first()
    if n is None:
        raise NotFoundError("Notification not found")
    return n


def mark_read(notification_id: int, *, user_id: int) -> Notification:
    n = _get_own(notification_id, user_id)
    n.is_read = True
    db.session.commit()
    return n


def mark_all_read(*, user_id: int) -> int:
    ids = [
        n.id for n in _visible(db.session.query(Notification), user_id)
        .filter(Notification.is_read.is_(False))
        .all()
    ]
    if ids:
        db.session.query(Notification).filter(Notification.id.in_(ids)).update(
            {"is_read": True}, synchronize_session=False
        )
    db.session.commit()
    return len(ids)


def archive(notification_id: int, *, user_id: int) -> Notification:
    n = _get_own(notification_id, user_id)
    n.archived = True
    n.is_read = True
    db.session.commit()
    return n


def archive_all(*, user_id: int) -> int:
    ids = [
        n.id for n in _visible(db.session.query(Notification), user_id)
        .filter(Notification.archived.is_(False))
        .all()
    ]
    if ids:
        db.session.query(Notification).filter(Notification.id.in_(ids)).update(
            {"archived": True, "is_read": True}, synchronize_session=False
        )
    db.session.commit()
    return len(ids)
