# Overview: Service-layer operations for time tracking on production steps.

"""
Work Sessions

- A user has at most one open session per step.
- Closing a session stores its duration in seconds and recomputes the step's
  actual_time = ceil(total seconds / 60) minutes.
- Manual entries are stored as closed sessions flagged is_manual.
"""

from __future__ import annotations

import math

from ..extensions import db
from ..models import StepWorkSession, ProductionStep, UserRole
from ..validation import ValidationError, NotFoundError, parse_number
from .audit_service import log_audit
from .concurrency import run_with_retry
from .guide_service import ensure_not_archived, set_status, apply_completion_rule, notify_status_change, WorkflowError
from .permission_service import has_permission, PermissionDeniedError
from .step_service import get_step_or_404
from prodflow.time_utils import utcnow


MAX_MANUAL_MINUTES = 24 * 60
MAX_NOTE_LENGTH = 2000


def _clean_note(note) -> str | None:
    if note is None:
        return None
    if not isinstance(note, str):
        raise ValidationError("note must be a string")
    note = note.strip()
    if len(note) > MAX_NOTE_LENGTH:
        raise ValidationError(f"note exceeds max length {MAX_NOTE_LENGTH}")
    return note or None


def _active_session(step_id: int, user_id: int) -> StepWorkSession | None:
    return (
        db.session.query(StepWorkSession)
        .filter(
            StepWorkSession.step_id == step_id,
            StepWorkSession.user_id == user_id,
            StepWorkSession.end_time.is_(None),
        )
        .first()
    )


def recompute_actual_time(step: ProductionStep) -> int | None:
    """actual_time in minutes from closed sessions, rounded up."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(StepWorkSession.duration), 0))
        .filter(StepWorkSession.step_id == step.id, StepWorkSession.end_time.isnot(None))
        .scalar()
        or 0
    )
    step.actual_time = math.ceil(total / 60) if total else None
    return step.actual_time


def _holds_role(user_id: int, role_id: int) -> bool:
    return db.session.query(UserRole.id).filter_by(user_id=user_id, role_id=role_id).first() is not None


def start_work(step_id: int, *, user, permissions, note: str | None = None) -> StepWorkSession:
    """
    Open a work session.

    If the step is assigned to a role, the user must hold it or have
    production.manageAll. A PENDING step moves to IN_PROGRESS and a DRAFT
    guide moves to IN_PROGRESS.
    """
    step = get_step_or_404(step_id)
    guide = step.guide
    ensure_not_archived(guide)
    note = _clean_note(note)

    if guide.status in ("COMPLETED", "CANCELLED"):
        raise WorkflowError(f"Cannot start work on a {guide.status.lower()} guide")
    if step.assigned_to_role_id and not _holds_role(user.id, step.assigned_to_role_id):
        if not has_permission(permissions, "production", "manageAll", 1):
            raise PermissionDeniedError("This step is assigned to a role you do not hold")
    if _active_session(step.id, user.id):
        raise WorkflowError("You already have an active work session on this step")

    def _op():
        session = StepWorkSession(step_id=step.id, user_id=user.id, start_time=utcnow(), note=note)
        db.session.add(session)

        if step.status == "PENDING":
            step.status = "IN_PROGRESS"
        guide_changed = False
        if guide.status == "DRAFT":
            guide_changed = set_status(guide, "IN_PROGRESS", user_id=user.id)

        log_audit(user_id=user.id, action="start_work", module="production", target_id=guide.id,
                  meta={"step_id": step.id})
        db.session.commit()
        return session, guide_changed

    session, guide_changed = run_with_retry(_op)
    if guide_changed:
        notify_status_change(guide, actor_id=user.id)
    return session


def end_work(step_id: int, *, user, note: str | None = None, complete_step: bool = False) -> StepWorkSession:
    """
    Close the user's open session, append the note and recompute actual_time.

    complete_step=True also completes the step (guide completion rule applies).
    """
    step = get_step_or_404(step_id)
    guide = step.guide
    note = _clean_note(note)

    session = _active_session(step.id, user.id)
    if session is None:
        raise WorkflowError("No active work session on this step")

    def _op():
        now = utcnow()
        session.end_time = now
        session.duration = max(int((now - session.start_time).total_seconds()), 0)
        if note:
            session.note = f"{session.note}\n{note}" if session.note else note
        db.session.flush()

        recompute_actual_time(step)

        guide_changed = False
        if complete_step and step.status != "COMPLETED":
            step.status = "COMPLETED"
            guide_changed = apply_completion_rule(guide, user_id=user.id)

        log_audit(user_id=user.id, action="end_work", module="production", target_id=guide.id,
                  meta={"step_id": step.id, "duration": session.duration, "complete_step": bool(complete_step)})
        db.session.commit()
        return guide_changed

    if run_with_retry(_op):
        notify_status_change(guide, actor_id=user.id)
    return session


def add_manual_work(step_id: int, *, user, permissions, minutes, note: str | None = None) -> StepWorkSession:
    """Record time worked off-clock. Requires production.manualWork >= 2."""
    if not has_permission(permissions, "production", "manualWork", 2):
        raise PermissionDeniedError("Manual work entries require production.manualWork level 2")

    step = get_step_or_404(step_id)
    ensure_not_archived(step.guide)
    if step.status == "COMPLETED":
        raise WorkflowError("Cannot add manual work to a completed step")

    minutes = parse_number(minutes, field="minutes")
    if minutes > MAX_MANUAL_MINUTES:
        raise ValidationError(f"minutes cannot exceed {MAX_MANUAL_MINUTES}")
    note = _clean_note(note)

    def _op():
        now = utcnow()
        session = StepWorkSession(
            step_id=step.id,
            user_id=user.id,
            start_time=now,
            end_time=now,
            duration=int(round(minutes * 60)),
            note=note,
            is_manual=True,
        )
        db.session.add(session)
        db.session.flush()
        recompute_actual_time(step)

        log_audit(user_id=user.id, action="manual_work", module="production", target_id=step.guide_id,
                  meta={"step_id": step.id, "minutes": minutes})
        db.session.commit()
        return session

    return run_with_retry(_op)


def list_work_sessions(step_id: int) -> dict:
    """Sessions of a step with per-user totals (closed sessions only)."""
    step = get_step_or_404(step_id)
    sessions = sorted(step.work_sessions, key=lambda s: (s.start_time, s.id))

    totals: dict[int, dict] = {}
    for s in sessions:
        entry = totals.setdefault(s.user_id, {
            "user": s.user.to_summary() if s.user else None,
            "seconds": 0,
            "sessions": 0,
        })
        entry["sessions"] += 1
        entry["seconds"] += s.duration or 0
    for entry in totals.values():
        entry["minutes"] = math.ceil(entry["seconds"] / 60) if entry["seconds"] else 0

    return {
        "sessions": [s.to_dict() for s in sessions],
        "totals": list(totals.values()),
        "actual_time": step.actual_time,
        "estimated_time": step.estimated_time,
    }


def get_active_sessions(user_id: int) -> list[dict]:
    sessions = (
        db.session.query(StepWorkSession)
        .filter(StepWorkSession.user_id == user_id, StepWorkSession.end_time.is_(None))
        .order_by(StepWorkSession.start_time)
        .all()
    )
    result = []
    for s in sessions:
        data = s.to_dict()
        data["step"] = {"id": s.step.id, "title": s.step.title, "status": s.step.status}
        data["guide"] = {"id": s.step.guide.id, "title": s.step.guide.title, "barcode": s.step.guide.barcode}
        result.append(data)
    return result


def delete_work_session(session_id: int, *, user_id: int, permissions) -> None:
    """Remove a closed session (own entries, or any with production.manageAll)."""
    session = db.session.get(StepWorkSession, session_id)
    if session is None:
        raise NotFoundError("Work session not found")
    if session.user_id != user_id and not has_permission(permissions, "production", "manageAll", 1):
        raise PermissionDeniedError("Cannot delete another user's work session")
    if session.end_time is None:
        raise WorkflowError("End the session before deleting it")

    step = session.step

    def _op():
        db.session.delete(session)
        db.session.flush()
        recompute_actual_time(step)
        log_audit(user_id=user_id, action="delete_work", module="production", target_id=step.guide_id,
                  meta={"step_id": step.id, "session_id": session_id})
        db.session.commit()

    run_with_retry(_op)
