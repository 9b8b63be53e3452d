# Overview: Service-layer operations for the audit log; append and query only.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_

from ..extensions import db
from ..models import AuditLog, User
from ..validation import pagination_dict


def log_audit(
    *,
    user_id: int | None,
    action: str,
    module: str,
    target_id: Any = None,
    meta: dict | None = None,
) -> AuditLog:
    """
    Append an audit row to the current session.

    - No domain logic here.
    - No deletes/updates of existing rows.
    - Caller commits, so the row lands in the same transaction as the change.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        module=module,
        target_id=str(target_id) if target_id is not None else None,
        meta=meta or {},
    )
    db.session.add(entry)
    return entry


def list_audit_logs(
    *,
    page: int = 1,
    limit: int = 20,
    module: str | None = None,
    action: str | None = None,
    target_id: str | None = None,
    user: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict:
    query = db.session.query(AuditLog)

    if module:
        query = query.filter(AuditLog.module == module)
    if action:
        query = query.filter(AuditLog.action == action)
    if target_id:
        query = query.filter(AuditLog.target_id == str(target_id))
    if user:
        pattern = f"%{user}%"
        query = query.join(User, User.id == AuditLog.user_id).filter(
            or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.login.ilike(pattern),
            )
        )
    if date_from:
        query = query.filter(AuditLog.created_at >= date_from)
    if date_to:
        # Date-only upper bounds include the whole day
        if date_to.hour == 0 and date_to.minute == 0 and date_to.second == 0:
            date_to = date_to + timedelta(days=1)
            query = query.filter(AuditLog.created_at < date_to)
        else:
            query = query.filter(AuditLog.created_at <= date_to)

    total = query.count()
    logs = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "logs": [log.to_dict() for log in logs],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }
