# Overview: Service-layer operations for production guides; lifecycle, assignment and change history.

"""
Production Guide Lifecycle

Statuses: DRAFT, IN_PROGRESS, COMPLETED, CANCELLED, ARCHIVED.

- DRAFT -> IN_PROGRESS when the first step is added or work starts.
- IN_PROGRESS -> COMPLETED when every step is COMPLETED; a reopened step
  moves a COMPLETED guide back to IN_PROGRESS.
- Archive: {DRAFT, IN_PROGRESS, COMPLETED, CANCELLED} -> ARCHIVED, rejected
  while any step is IN_PROGRESS. status_before_archive is stored.
- Restore: ARCHIVED -> status_before_archive (DRAFT when unknown).
- Archived guides are read-only until restored.

Every field change is recorded in guide_change_history.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import ProductionGuide, GuideAssignment, GuideChangeHistory, GuideInventory, User
from ..models.production import GUIDE_STATUSES, GUIDE_PRIORITIES
from ..validation import ValidationError, NotFoundError, pagination_dict
from .audit_service import log_audit
from .barcode_service import generate_guide_barcode
from .concurrency import run_with_retry
from .inventory_service import apply_operation_inner, lock_item
from .notification_service import notify_users
from prodflow.time_utils import utcnow, to_utc_z


class WorkflowError(ValidationError):
    """Transition not allowed from the current guide or step state."""


ARCHIVABLE_STATUSES = {"DRAFT", "IN_PROGRESS", "COMPLETED", "CANCELLED"}
# Statuses a client may set directly; ARCHIVED goes through archive/restore
UPDATABLE_STATUSES = {"DRAFT", "IN_PROGRESS", "COMPLETED", "CANCELLED"}
TRACKED_FIELDS = ("title", "description", "priority", "status", "due_date")


def get_guide_or_404(guide_id: int) -> ProductionGuide:
    guide = db.session.get(ProductionGuide, guide_id)
    if guide is None:
        raise NotFoundError("Guide not found")
    return guide


def ensure_not_archived(guide: ProductionGuide) -> None:
    if guide.status == "ARCHIVED":
        raise WorkflowError("Guide is archived; restore it first")


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_z(value)
    return str(value)


def record_change(
    guide: ProductionGuide,
    *,
    user_id: int | None,
    change_type: str,
    field_name: str,
    old_value=None,
    new_value=None,
) -> GuideChangeHistory:
    entry = GuideChangeHistory(
        guide_id=guide.id,
        user_id=user_id,
        change_type=change_type,
        field_name=field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
    )
    db.session.add(entry)
    return entry


def _validate_priority(priority) -> str:
    priority = (priority or "NORMAL").upper()
    if priority not in GUIDE_PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(GUIDE_PRIORITIES)}")
    return priority


def _validate_user_ids(user_ids) -> list[int]:
    if user_ids is None:
        return []
    if not isinstance(user_ids, (list, tuple)):
        raise ValidationError("assignedUserIds must be a list")
    ids = []
    for uid in user_ids:
        if isinstance(uid, bool) or not isinstance(uid, int):
            raise ValidationError("assignedUserIds must be integers")
        if uid not in ids:
            ids.append(uid)
    found = {
        r[0] for r in db.session.query(User.id).filter(User.id.in_(ids), User.is_active.is_(True)).all()
    } if ids else set()
    missing = [uid for uid in ids if uid not in found]
    if missing:
        raise ValidationError(f"Unknown or inactive users: {', '.join(str(m) for m in missing)}")
    return ids


def set_status(guide: ProductionGuide, status: str, *, user_id: int | None, change_type: str = "UPDATE") -> bool:
    """Change status with a history row. Returns True if it changed."""
    if guide.status == status:
        return False
    record_change(guide, user_id=user_id, change_type=change_type, field_name="status",
                  old_value=guide.status, new_value=status)
    guide.status = status
    return True


def apply_completion_rule(guide: ProductionGuide, *, user_id: int | None) -> bool:
    """
    Keep guide status consistent with its steps.

    All steps COMPLETED -> COMPLETED; a COMPLETED guide with an open step -> IN_PROGRESS.
    Archived and cancelled guides are left alone. Returns True if status changed.
    """
    if guide.status in ("ARCHIVED", "CANCELLED") or not guide.steps:
        return False
    all_done = all(s.status == "COMPLETED" for s in guide.steps)
    if all_done and guide.status != "COMPLETED":
        return set_status(guide, "COMPLETED", user_id=user_id)
    if not all_done and guide.status == "COMPLETED":
        return set_status(guide, "IN_PROGRESS", user_id=user_id)
    return False


def notify_status_change(guide: ProductionGuide, *, actor_id: int | None) -> int:
    return notify_users(
        guide.assigned_user_ids,
        f"Guide {guide.barcode} \"{guide.title}\" is now {guide.status}",
        link=f"/production/guides/{guide.id}",
        type="PRODUCTION",
        exclude_user_id=actor_id,
    )


def create_guide(*, patch: dict, user_id: int, assigned_user_ids=None) -> ProductionGuide:
    """Create a DRAFT guide with a generated PROD-YYYY-NNNN barcode."""
    patch = dict(patch)
    patch.pop("status", None)
    patch["priority"] = _validate_priority(patch.get("priority"))
    if not (patch.get("title") or "").strip():
        raise ValidationError("title is required")
    assignees = _validate_user_ids(assigned_user_ids)

    def _op():
        guide = ProductionGuide(
            barcode=generate_guide_barcode(),
            status="DRAFT",
            created_by_id=user_id,
            **patch,
        )
        db.session.add(guide)
        db.session.flush()

        for uid in assignees:
            db.session.add(GuideAssignment(guide_id=guide.id, user_id=uid))

        record_change(guide, user_id=user_id, change_type="CREATE", field_name="guide", new_value=guide.title)
        log_audit(
            user_id=user_id,
            action="create",
            module="production",
            target_id=guide.id,
            meta={"barcode": guide.barcode, "title": guide.title},
        )
        db.session.commit()
        return guide

    guide = run_with_retry(_op)

    notify_users(
        assignees,
        f"You were assigned to guide {guide.barcode} \"{guide.title}\"",
        link=f"/production/guides/{guide.id}",
        type="PRODUCTION",
        exclude_user_id=user_id,
    )
    return guide


def update_guide(guide_id: int, *, patch: dict, user_id: int) -> ProductionGuide:
    """
    Update guide fields, writing one history row per changed field.

    A status change notifies assigned users.
    """
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)

    patch = dict(patch)
    if "priority" in patch:
        patch["priority"] = _validate_priority(patch["priority"])
    if "status" in patch:
        status = (patch["status"] or "").upper()
        if status not in GUIDE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(GUIDE_STATUSES)}")
        if status not in UPDATABLE_STATUSES:
            raise WorkflowError("Use the archive endpoint to archive a guide")
        patch["status"] = status
    if "title" in patch and not (patch["title"] or "").strip():
        raise ValidationError("title cannot be blank")

    def _op():
        changes = {}
        for field in TRACKED_FIELDS:
            if field not in patch:
                continue
            old, new = getattr(guide, field), patch[field]
            if old == new:
                continue
            record_change(guide, user_id=user_id, change_type="UPDATE", field_name=field,
                          old_value=old, new_value=new)
            setattr(guide, field, new)
            changes[field] = [_as_text(old), _as_text(new)]

        if changes:
            log_audit(user_id=user_id, action="update", module="production", target_id=guide.id, meta=changes)
        db.session.commit()
        return changes

    changes = run_with_retry(_op)

    if "status" in changes:
        notify_status_change(guide, actor_id=user_id)
    return guide


def delete_guide(guide_id: int, *, user_id: int) -> int:
    """
    Delete a guide and release every reserved, not yet withdrawn attachment
    in the same transaction. Returns count of reservations released.
    """
    guide = get_guide_or_404(guide_id)

    def _op():
        released = 0
        rows = db.session.query(GuideInventory).filter(GuideInventory.guide_id == guide.id).all()
        for row in rows:
            if row.reserved and not row.is_withdrawn:
                item = lock_item(row.item_id)
                apply_operation_inner(
                    item,
                    "RELEASE",
                    row.quantity,
                    user_id=user_id,
                    guide_id=guide.id,
                    reason=f"Guide {guide.barcode} deleted",
                )
                released += 1

        log_audit(
            user_id=user_id,
            action="delete",
            module="production",
            target_id=guide.id,
            meta={"barcode": guide.barcode, "title": guide.title, "released": released},
        )
        db.session.delete(guide)
        db.session.commit()
        return released

    return run_with_retry(_op)


def get_guide(guide_id: int) -> dict:
    guide = get_guide_or_404(guide_id)
    data = guide.to_dict(include_details=True)
    data["active_sessions"] = sum(
        1 for s in guide.steps for ws in s.work_sessions if ws.end_time is None
    )
    return data


def list_guides(
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    priority: str | None = None,
    search: str | None = None,
    include_archived: bool = False,
    assigned_user_id: int | None = None,
) -> dict:
    query = db.session.query(ProductionGuide)

    if status:
        statuses = [s.strip().upper() for s in status.split(",") if s.strip()]
        query = query.filter(ProductionGuide.status.in_(statuses))
    elif not include_archived:
        query = query.filter(ProductionGuide.status != "ARCHIVED")
    if priority:
        query = query.filter(ProductionGuide.priority == priority.upper())
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                ProductionGuide.title.ilike(pattern),
                ProductionGuide.barcode.ilike(pattern),
                ProductionGuide.description.ilike(pattern),
            )
        )
    if assigned_user_id:
        query = query.join(GuideAssignment, GuideAssignment.guide_id == ProductionGuide.id).filter(
            GuideAssignment.user_id == assigned_user_id
        )

    total = query.count()
    guides = (
        query.order_by(ProductionGuide.created_at.desc(), ProductionGuide.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "guides": [g.to_dict() for g in guides],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def get_change_history(guide_id: int) -> list[dict]:
    get_guide_or_404(guide_id)
    rows = (
        db.session.query(GuideChangeHistory)
        .filter(GuideChangeHistory.guide_id == guide_id)
        .order_by(GuideChangeHistory.created_at.desc(), GuideChangeHistory.id.desc())
        .all()
    )
    return [r.to_dict() for r in rows]


def assign_users(guide_id: int, user_ids, *, user_id: int, replace: bool = False) -> ProductionGuide:
    """
    Add assignees (or replace the set). Newly assigned users are notified.
    """
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)
    ids = _validate_user_ids(user_ids)

    current = set(guide.assigned_user_ids)
    added = [uid for uid in ids if uid not in current]
    removed = [uid for uid in current if uid not in ids] if replace else []

    if added or removed:
        for uid in added:
            db.session.add(GuideAssignment(guide_id=guide.id, user_id=uid))
        if removed:
            db.session.query(GuideAssignment).filter(
                GuideAssignment.guide_id == guide.id,
                GuideAssignment.user_id.in_(removed),
            ).delete(synchronize_session=False)

        record_change(guide, user_id=user_id, change_type="UPDATE", field_name="assigned_users",
                      old_value=sorted(current), new_value=sorted((current | set(added)) - set(removed)))
        log_audit(user_id=user_id, action="assign", module="production", target_id=guide.id,
                  meta={"added": added, "removed": removed})
        db.session.commit()
        db.session.refresh(guide)

    notify_users(
        added,
        f"You were assigned to guide {guide.barcode} \"{guide.title}\"",
        link=f"/production/guides/{guide.id}",
        type="PRODUCTION",
        exclude_user_id=user_id,
    )
    return guide


def unassign_user(guide_id: int, target_user_id: int, *, user_id: int) -> None:
    guide = get_guide_or_404(guide_id)
    assignment = db.session.query(GuideAssignment).filter_by(guide_id=guide.id, user_id=target_user_id).first()
    if assignment is None:
        raise NotFoundError("User is not assigned to this guide")

    db.session.delete(assignment)
    record_change(guide, user_id=user_id, change_type="UPDATE", field_name="assigned_users",
                  old_value=target_user_id, new_value=None)
    log_audit(user_id=user_id, action="unassign", module="production", target_id=guide.id,
              meta={"user_id": target_user_id})
    db.session.commit()


def archive_guide(guide_id: int, *, user_id: int) -> ProductionGuide:
    guide = get_guide_or_404(guide_id)
    if guide.status == "ARCHIVED":
        raise WorkflowError("Guide is already archived")
    if guide.status not in ARCHIVABLE_STATUSES:
        raise WorkflowError(f"Cannot archive a guide in status {guide.status}")
    if any(s.status == "IN_PROGRESS" for s in guide.steps):
        raise WorkflowError("Cannot archive a guide with steps in progress")

    def _op():
        guide.status_before_archive = guide.status
        set_status(guide, "ARCHIVED", user_id=user_id, change_type="ARCHIVE")
        log_audit(user_id=user_id, action="archive", module="production", target_id=guide.id,
                  meta={"previous_status": guide.status_before_archive})
        db.session.commit()
        return guide

    return run_with_retry(_op)


def restore_guide(guide_id: int, *, user_id: int) -> ProductionGuide:
    guide = get_guide_or_404(guide_id)
    if guide.status != "ARCHIVED":
        raise WorkflowError("Guide is not archived")

    def _op():
        target = guide.status_before_archive or "DRAFT"
        if target not in ARCHIVABLE_STATUSES:
            target = "DRAFT"
        set_status(guide, target, user_id=user_id, change_type="RESTORE")
        guide.status_before_archive = None
        log_audit(user_id=user_id, action="restore", module="production", target_id=guide.id,
                  meta={"restored_status": target})
        db.session.commit()
        return guide

    return run_with_retry(_op)


def overdue_guides_query():
    return db.session.query(ProductionGuide).filter(
        ProductionGuide.due_date.isnot(None),
        ProductionGuide.due_date < utcnow(),
        ProductionGuide.status.in_(("DRAFT", "IN_PROGRESS")),
    )
