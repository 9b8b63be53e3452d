# Overview: Service-layer operations for production steps; ordering, status cycle, comments and step notifications.

from __future__ import annotations

from ..extensions import db
from ..models import ProductionStep, StepComment, Role, UserRole, User
from ..models.production import STEP_STATUSES
from ..validation import ValidationError, NotFoundError
from .audit_service import log_audit
from .concurrency import run_with_retry
from .guide_service import (
    get_guide_or_404,
    ensure_not_archived,
    set_status,
    apply_completion_rule,
    record_change,
    notify_status_change,
)
from .notification_service import notify_users


# Forward cycle driven by the step button; COMPLETED is re-enterable
NEXT_STATUS = {"PENDING": "IN_PROGRESS", "IN_PROGRESS": "COMPLETED", "COMPLETED": "PENDING"}
PREVIOUS_STATUS = {"COMPLETED": "IN_PROGRESS", "IN_PROGRESS": "PENDING", "PENDING": "PENDING"}


def get_step_or_404(step_id: int) -> ProductionStep:
    step = db.session.get(ProductionStep, step_id)
    if step is None:
        raise NotFoundError("Step not found")
    return step


def _validate_role_id(role_id) -> int | None:
    if role_id is None:
        return None
    if isinstance(role_id, bool) or not isinstance(role_id, int):
        raise ValidationError("assignedToRoleId must be an integer")
    if db.session.get(Role, role_id) is None:
        raise ValidationError("Assigned role does not exist")
    return role_id


def _validate_status(status) -> str:
    status = (status or "").upper()
    if status not in STEP_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STEP_STATUSES)}")
    return status


def role_holder_ids(role_id: int | None) -> list[int]:
    if role_id is None:
        return []
    rows = (
        db.session.query(UserRole.user_id)
        .join(User, User.id == UserRole.user_id)
        .filter(UserRole.role_id == role_id, User.is_active.is_(True))
        .all()
    )
    return [r[0] for r in rows]


def _renumber(steps: list[ProductionStep]) -> None:
    for index, step in enumerate(steps):
        step.order = index


def add_step(guide_id: int, *, patch: dict, user_id: int) -> ProductionStep:
    """
    Append (or insert at `order`) a step.

    The first step moves a DRAFT guide to IN_PROGRESS. Holders of the
    step role are notified.
    """
    guide = get_guide_or_404(guide_id)
    ensure_not_archived(guide)

    patch = dict(patch)
    if not (patch.get("title") or "").strip():
        raise ValidationError("title is required")
    patch["assigned_to_role_id"] = _validate_role_id(patch.get("assigned_to_role_id"))
    patch.pop("status", None)

    order = patch.pop("order", None)
    if order is None or order > len(guide.steps):
        order = len(guide.steps)
    if order < 0:
        raise ValidationError("order must be >= 0")

    def _op():
        step = ProductionStep(guide_id=guide.id, status="PENDING", order=order, **patch)
        steps = list(guide.steps)
        steps.insert(order, step)
        guide.steps = steps
        _renumber(steps)
        db.session.flush()

        if len(steps) == 1 and guide.status == "DRAFT":
            set_status(guide, "IN_PROGRESS", user_id=user_id)
        elif guide.status == "COMPLETED":
            # A new pending step reopens a completed guide
            apply_completion_rule(guide, user_id=user_id)

        record_change(guide, user_id=user_id, change_type="UPDATE", field_name="steps", new_value=step.title)
        log_audit(user_id=user_id, action="create_step", module="production", target_id=guide.id,
                  meta={"step_id": step.id, "title": step.title})
        db.session.commit()
        return step

    step = run_with_retry(_op)

    notify_users(
        role_holder_ids(step.assigned_to_role_id),
        f"New step \"{step.title}\" in guide {guide.barcode} is assigned to your role",
        link=f"/production/guides/{guide.id}",
        type="PRODUCTION",
        exclude_user_id=user_id,
    )
    return step


def update_step(
    step_id: int,
    *,
    patch: dict,
    user_id: int,
    notify_creator: bool = False,
    notify_role: bool = False,
    recipient_ids: list[int] | None = None,
    message: str | None = None,
) -> ProductionStep:
    """
    Update a step. Status changes apply the guide completion rule.

    Optional notifications go to the guide creator, holders of the step role
    and explicit recipients; the actor is excluded.
    """
    step = get_step_or_404(step_id)
    guide = step.guide
    ensure_not_archived(guide)

    patch = dict(patch)
    if "status" in patch:
        patch["status"] = _validate_status(patch["status"])
    if "assigned_to_role_id" in patch:
        patch["assigned_to_role_id"] = _validate_role_id(patch["assigned_to_role_id"])
    if "title" in patch and not (patch["title"] or "").strip():
        raise ValidationError("title cannot be blank")
    new_order = patch.pop("order", None)

    def _op():
        changes = {}
        for key, value in patch.items():
            old = getattr(step, key)
            if old != value:
                changes[key] = [old, value]
                setattr(step, key, value)

        if new_order is not None and new_order != step.order:
            steps = [s for s in guide.steps if s.id != step.id]
            steps.insert(max(0, min(new_order, len(steps))), step)
            _renumber(steps)
            changes["order"] = new_order

        guide_changed = False
        if "status" in changes:
            if step.status == "IN_PROGRESS" and guide.status == "DRAFT":
                set_status(guide, "IN_PROGRESS", user_id=user_id)
                guide_changed = True
            guide_changed = apply_completion_rule(guide, user_id=user_id) or guide_changed

        if changes:
            log_audit(user_id=user_id, action="update_step", module="production", target_id=guide.id,
                      meta={"step_id": step.id, "changes": changes})
        db.session.commit()
        return guide_changed

    guide_changed = run_with_retry(_op)

    if guide_changed:
        notify_status_change(guide, actor_id=user_id)
    notify_step_update(
        step,
        actor_id=user_id,
        notify_creator=notify_creator,
        notify_role=notify_role,
        recipient_ids=recipient_ids,
        message=message,
    )
    return step


def notify_step_update(
    step: ProductionStep,
    *,
    actor_id: int | None,
    notify_creator: bool = False,
    notify_role: bool = False,
    recipient_ids: list[int] | None = None,
    message: str | None = None,
) -> int:
    """Best-effort fan-out of a step update. Returns count delivered."""
    guide = step.guide
    recipients: set[int] = set()
    if notify_creator and guide.created_by_id:
        recipients.add(guide.created_by_id)
    if notify_role:
        recipients.update(role_holder_ids(step.assigned_to_role_id))
    if recipient_ids:
        recipients.update(uid for uid in recipient_ids if isinstance(uid, int) and not isinstance(uid, bool))
    if not recipients:
        return 0

    content = message.strip() if isinstance(message, str) and message.strip() else (
        f"Step \"{step.title}\" in guide {guide.barcode} is now {step.status}"
    )
    return notify_users(
        recipients,
        content,
        link=f"/production/guides/{guide.id}",
        type="PRODUCTION",
        exclude_user_id=actor_id,
    )


def delete_step(step_id: int, *, user_id: int) -> None:
    """
    Delete a step and renumber the rest 0..n-1. Removing the last step of an
    IN_PROGRESS guide moves it back to DRAFT.
    """
    step = get_step_or_404(step_id)
    guide = step.guide
    ensure_not_archived(guide)
    if any(ws.end_time is None for ws in step.work_sessions):
        raise ValidationError("Cannot delete a step with active work sessions")

    def _op():
        title = step.title
        remaining = [s for s in guide.steps if s.id != step.id]
        guide.steps = remaining
        _renumber(remaining)
        db.session.flush()

        if not remaining and guide.status == "IN_PROGRESS":
            set_status(guide, "DRAFT", user_id=user_id)
        else:
            apply_completion_rule(guide, user_id=user_id)

        record_change(guide, user_id=user_id, change_type="UPDATE", field_name="steps", old_value=title)
        log_audit(user_id=user_id, action="delete_step", module="production", target_id=guide.id,
                  meta={"step_id": step_id, "title": title})
        db.session.commit()

    run_with_retry(_op)


def _move_step(step_id: int, transitions: dict, *, user_id: int) -> ProductionStep:
    step = get_step_or_404(step_id)
    guide = step.guide
    ensure_not_archived(guide)

    def _op():
        old = step.status
        step.status = transitions[old]
        guide_changed = False
        if step.status == "IN_PROGRESS" and guide.status == "DRAFT":
            guide_changed = set_status(guide, "IN_PROGRESS", user_id=user_id)
        guide_changed = apply_completion_rule(guide, user_id=user_id) or guide_changed
        if old != step.status:
            log_audit(user_id=user_id, action="update_step", module="production", target_id=guide.id,
                      meta={"step_id": step.id, "changes": {"status": [old, step.status]}})
        db.session.commit()
        return guide_changed

    if run_with_retry(_op):
        notify_status_change(guide, actor_id=user_id)
    return step


def advance_step(step_id: int, *, user_id: int) -> ProductionStep:
    """PENDING -> IN_PROGRESS -> COMPLETED -> PENDING."""
    return _move_step(step_id, NEXT_STATUS, user_id=user_id)


def revert_step(step_id: int, *, user_id: int) -> ProductionStep:
    """COMPLETED -> IN_PROGRESS -> PENDING; PENDING stays."""
    return _move_step(step_id, PREVIOUS_STATUS, user_id=user_id)


def add_comment(step_id: int, *, user_id: int, content: str, recipient_ids=None) -> StepComment:
    step = get_step_or_404(step_id)
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content is required")
    if recipient_ids is not None and not isinstance(recipient_ids, list):
        raise ValidationError("recipientIds must be a list")
    recipients = [uid for uid in (recipient_ids or []) if isinstance(uid, int) and not isinstance(uid, bool)]

    comment = StepComment(step_id=step.id, user_id=user_id, content=content.strip(), recipient_ids=recipients)
    db.session.add(comment)
    db.session.commit()

    notify_users(
        recipients,
        f"New comment on step \"{step.title}\" ({step.guide.barcode}): {comment.content[:200]}",
        link=f"/production/guides/{step.guide_id}",
        type="PRODUCTION",
        exclude_user_id=user_id,
    )
    return comment


def list_comments(step_id: int) -> list[dict]:
    step = get_step_or_404(step_id)
    comments = sorted(step.comments, key=lambda c: (c.created_at, c.id))
    return [c.to_dict() for c in comments]
