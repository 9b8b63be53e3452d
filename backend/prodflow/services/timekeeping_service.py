# Overview: Service-layer operations for work-day time tracking; sessions, breaks and summaries.

"""
Work-Day Time Tracking

Independent of step work sessions: a user opens one session for the working
day, may pause it with breaks and closes it at the end of the day.

- At most one ACTIVE session per user and one ACTIVE break per session.
- Ending a session ends its active break first.
- total_duration = elapsed seconds - break seconds, never negative.
- Settings durations are minutes; stored durations are seconds.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timedelta

from sqlalchemy import or_

from ..extensions import db
from ..models import AttendanceSession, AttendanceBreak, TimeTrackingSettings, User
from ..validation import ValidationError, NotFoundError, pagination_dict
from .audit_service import log_audit
from .concurrency import run_with_retry
from .permission_service import has_permission, PermissionDeniedError
from prodflow.time_utils import utcnow, parse_iso_datetime


MAX_NOTE_LENGTH = 2000
MAX_SETTING_MINUTES = 24 * 60

SETTINGS_FIELDS = {
    "enable_break_button": "enableBreakButton",
    "min_session_duration": "minSessionDuration",
    "max_session_duration": "maxSessionDuration",
    "max_break_duration": "maxBreakDuration",
}


class TimekeepingError(ValidationError):
    """Raised for invalid time tracking operations."""


# =============================================================================
# SETTINGS
# =============================================================================


def get_settings() -> TimeTrackingSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = db.session.query(TimeTrackingSettings).order_by(TimeTrackingSettings.id).first()
    if settings is None:
        settings = TimeTrackingSettings(
            enable_break_button=True,
            min_session_duration=0,
            max_session_duration=720,
            max_break_duration=60,
        )
        db.session.add(settings)
        db.session.commit()
    return settings


def _setting_minutes(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if minutes < 0 or minutes > MAX_SETTING_MINUTES:
        raise ValidationError(f"{field} must be between 0 and {MAX_SETTING_MINUTES}")
    return minutes


def update_settings(payload: dict, *, user_id: int) -> TimeTrackingSettings:
    """Patch settings; accepts snake_case or camelCase keys."""
    if not isinstance(payload, dict):
        raise ValidationError("Body must be a JSON object")

    settings = get_settings()
    patch = {}
    for field, alias in SETTINGS_FIELDS.items():
        if field in payload:
            patch[field] = payload[field]
        elif alias in payload:
            patch[field] = payload[alias]
    if not patch:
        raise ValidationError("No settings to update")

    if "enable_break_button" in patch and not isinstance(patch["enable_break_button"], bool):
        raise ValidationError("enable_break_button must be a boolean")
    for field in ("min_session_duration", "max_session_duration", "max_break_duration"):
        if field in patch:
            patch[field] = _setting_minutes(patch[field], field)

    minimum = patch.get("min_session_duration", settings.min_session_duration)
    maximum = patch.get("max_session_duration", settings.max_session_duration)
    if minimum > maximum:
        raise ValidationError("min_session_duration cannot exceed max_session_duration")

    def _op():
        for field, value in patch.items():
            setattr(settings, field, value)
        log_audit(user_id=user_id, action="update_settings", module="timeTracking", target_id=settings.id,
                  meta=patch)
        db.session.commit()
        return settings

    return run_with_retry(_op)


# =============================================================================
# SESSIONS AND BREAKS
# =============================================================================


def _clean_notes(notes) -> str | None:
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    notes = notes.strip()
    if len(notes) > MAX_NOTE_LENGTH:
        raise ValidationError(f"notes exceed max length {MAX_NOTE_LENGTH}")
    return notes or None


def _get_active_session(user_id: int) -> AttendanceSession | None:
    return db.session.query(AttendanceSession).filter_by(user_id=user_id, status="ACTIVE").first()


def _close_break(brk: AttendanceBreak, session: AttendanceSession, now: datetime) -> None:
    brk.end_time = now
    brk.status = "COMPLETED"
    brk.duration = max(int((now - brk.start_time).total_seconds()), 0)
    session.total_break_duration = (session.total_break_duration or 0) + brk.duration


def start_session(*, user_id: int, notes=None) -> AttendanceSession:
    if _get_active_session(user_id):
        raise TimekeepingError("You already have an active work session")
    notes = _clean_notes(notes)

    def _op():
        session = AttendanceSession(
            user_id=user_id,
            start_time=utcnow(),
            status="ACTIVE",
            total_break_duration=0,
            notes=notes,
        )
        db.session.add(session)
        db.session.flush()
        log_audit(user_id=user_id, action="start_session", module="timeTracking", target_id=session.id)
        db.session.commit()
        return session

    return run_with_retry(_op)


def end_session(*, user_id: int, notes=None) -> AttendanceSession:
    """
    Close the active session.

    An active break is ended at the same instant. Notes replace the stored
    notes when given. Sessions shorter than min_session_duration are rejected.
    """
    session = _get_active_session(user_id)
    if session is None:
        raise TimekeepingError("No active work session")
    notes = _clean_notes(notes)

    minimum = get_settings().min_session_duration
    elapsed = (utcnow() - session.start_time).total_seconds()
    if minimum and elapsed < minimum * 60:
        raise TimekeepingError(f"A work session must last at least {minimum} minutes")

    def _op():
        now = utcnow()
        active_break = session.active_break
        if active_break is not None:
            _close_break(active_break, session, now)

        session.end_time = now
        session.status = "COMPLETED"
        total = int((now - session.start_time).total_seconds())
        session.total_duration = max(total - (session.total_break_duration or 0), 0)
        if notes is not None:
            session.notes = notes

        log_audit(user_id=user_id, action="end_session", module="timeTracking", target_id=session.id,
                  meta={"total_duration": session.total_duration,
                        "total_break_duration": session.total_break_duration})
        db.session.commit()
        return session

    return run_with_retry(_op)


def start_break(*, user_id: int) -> AttendanceBreak:
    if not get_settings().enable_break_button:
        raise TimekeepingError("Breaks are disabled")
    session = _get_active_session(user_id)
    if session is None:
        raise TimekeepingError("No active work session")
    if session.active_break is not None:
        raise TimekeepingError("Break already in progress")

    def _op():
        brk = AttendanceBreak(start_time=utcnow(), status="ACTIVE")
        session.breaks.append(brk)
        db.session.flush()
        db.session.commit()
        return brk

    return run_with_retry(_op)


def end_break(*, user_id: int) -> AttendanceBreak:
    session = _get_active_session(user_id)
    if session is None:
        raise TimekeepingError("No active work session")
    brk = session.active_break
    if brk is None:
        raise TimekeepingError("No active break")

    def _op():
        _close_break(brk, session, utcnow())
        db.session.commit()
        return brk

    return run_with_retry(_op)


def get_current_session(user_id: int) -> dict:
    session = _get_active_session(user_id)
    if session is None:
        return {"status": "OFF", "session": None, "on_break": False}
    on_break = session.active_break is not None
    return {
        "status": "ON_BREAK" if on_break else "WORKING",
        "session": session.to_dict(),
        "on_break": on_break,
    }


def update_session_notes(session_id: int, notes, *, user_id: int, permissions) -> AttendanceSession:
    """Owners edit their own notes; timeTracking.update level 2 edits anyone's."""
    session = db.session.get(AttendanceSession, session_id)
    if session is None:
        raise NotFoundError("Work session not found")
    if session.user_id != user_id and not has_permission(permissions, "timeTracking", "update", 2):
        raise PermissionDeniedError("Cannot edit notes of another user's session")
    notes = _clean_notes(notes)

    def _op():
        session.notes = notes
        log_audit(user_id=user_id, action="update_notes", module="timeTracking", target_id=session.id)
        db.session.commit()
        return session

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================


def _ensure_can_view(target_user_id: int, *, user_id: int, permissions) -> None:
    if target_user_id != user_id and not has_permission(permissions, "timeTracking", "viewAll", 1):
        raise PermissionDeniedError("Viewing other users' sessions requires timeTracking.viewAll")


def _parse_day(value, field: str, *, end_of_day: bool = False) -> datetime | None:
    """ISO date or datetime; a bare date as `to` covers the whole day."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if end_of_day and len(value.strip()) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def list_user_sessions(
    target_user_id: int,
    *,
    user_id: int,
    permissions,
    page: int = 1,
    limit: int = 20,
    date_from=None,
    date_to=None,
) -> dict:
    """Paginated sessions of a user, newest first, with totals over the whole filter."""
    _ensure_can_view(target_user_id, user_id=user_id, permissions=permissions)
    start = _parse_day(date_from, "from")
    end = _parse_day(date_to, "to", end_of_day=True)

    query = db.session.query(AttendanceSession).filter(AttendanceSession.user_id == target_user_id)
    if start is not None:
        query = query.filter(AttendanceSession.start_time >= start)
    if end is not None:
        query = query.filter(AttendanceSession.start_time <= end)

    work, breaks = query.with_entities(
        db.func.coalesce(db.func.sum(AttendanceSession.total_duration), 0),
        db.func.coalesce(db.func.sum(AttendanceSession.total_break_duration), 0),
    ).one()
    total = query.count()
    sessions = (
        query.order_by(AttendanceSession.start_time.desc(), AttendanceSession.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "sessions": [s.to_dict() for s in sessions],
        "stats": {
            "total_work_duration": int(work or 0),
            "total_break_duration": int(breaks or 0),
            "total_sessions": total,
        },
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def _completed_in_range(user_ids, start: datetime, end: datetime) -> list[AttendanceSession]:
    return (
        db.session.query(AttendanceSession)
        .filter(
            AttendanceSession.user_id.in_(list(user_ids)),
            AttendanceSession.status == "COMPLETED",
            AttendanceSession.start_time >= start,
            AttendanceSession.start_time <= end,
        )
        .order_by(AttendanceSession.start_time)
        .all()
    )


def get_daily_summaries(
    *,
    year: int,
    month: int,
    user_id: int,
    permissions,
    target_user_id: int | None = None,
) -> list[dict]:
    """Completed sessions of one month grouped by start date (UTC)."""
    target_user_id = target_user_id or user_id
    _ensure_can_view(target_user_id, user_id=user_id, permissions=permissions)
    if not isinstance(year, int) or not 2000 <= year <= 2100:
        raise ValidationError("year must be between 2000 and 2100")
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")

    start = datetime(year, month, 1)
    next_month = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    end = next_month - timedelta(microseconds=1)

    days: dict[str, dict] = {}
    for session in _completed_in_range([target_user_id], start, end):
        key = session.start_time.date().isoformat()
        summary = days.setdefault(key, {"date": key, "work_duration": 0, "break_duration": 0, "session_count": 0})
        summary["work_duration"] += session.total_duration or 0
        summary["break_duration"] += session.total_break_duration or 0
        summary["session_count"] += 1
    return [days[k] for k in sorted(days)]


def get_all_active_sessions(*, permissions, date_from=None, date_to=None, search: str | None = None) -> list[dict]:
    """Everyone currently at work; flags sessions and breaks running past the configured limits."""
    if not has_permission(permissions, "timeTracking", "viewAll", 1):
        raise PermissionDeniedError("Viewing other users' sessions requires timeTracking.viewAll")
    start = _parse_day(date_from, "from")
    end = _parse_day(date_to, "to", end_of_day=True)

    query = (
        db.session.query(AttendanceSession)
        .join(User, User.id == AttendanceSession.user_id)
        .filter(AttendanceSession.status == "ACTIVE")
    )
    if start is not None:
        query = query.filter(AttendanceSession.start_time >= start)
    if end is not None:
        query = query.filter(AttendanceSession.start_time <= end)
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            db.func.lower(User.first_name + " " + User.last_name).like(term),
            db.func.lower(User.email).like(term),
            db.func.lower(User.login).like(term),
        ))

    settings = get_settings()
    now = utcnow()
    result = []
    for session in query.order_by(AttendanceSession.start_time).all():
        data = session.to_dict(include_breaks=False)
        data["over_max_duration"] = now - session.start_time > timedelta(minutes=settings.max_session_duration)
        active_break = session.active_break
        data["break_over_limit"] = bool(
            active_break and now - active_break.start_time > timedelta(minutes=settings.max_break_duration)
        )
        result.append(data)
    return result


def get_report(*, user_ids, start_date, end_date, user_id: int, permissions) -> list[dict]:
    """
    Per-user totals and daily breakdown over [start_date, end_date].

    Reports on anyone but the caller need timeTracking.viewAll.
    """
    if not isinstance(user_ids, list) or not user_ids:
        raise ValidationError("userIds must be a non-empty list")
    if any(isinstance(uid, bool) or not isinstance(uid, int) for uid in user_ids):
        raise ValidationError("userIds must contain integers")
    if any(uid != user_id for uid in user_ids) and not has_permission(permissions, "timeTracking", "viewAll", 1):
        raise PermissionDeniedError("Reports on other users require timeTracking.viewAll")

    start = _parse_day(start_date, "startDate")
    end = _parse_day(end_date, "endDate", end_of_day=True)
    if start is None or end is None:
        raise ValidationError("startDate and endDate are required")
    if start > end:
        raise ValidationError("startDate must be before endDate")

    users = {u.id: u for u in db.session.query(User).filter(User.id.in_(user_ids)).all()}
    missing = [uid for uid in user_ids if uid not in users]
    if missing:
        raise NotFoundError(f"Users not found: {missing}")

    by_user_day: dict[int, dict[str, list]] = defaultdict(lambda: defaultdict(list))
    for session in _completed_in_range(users.keys(), start, end):
        by_user_day[session.user_id][session.start_time.date().isoformat()].append(session)

    report = []
    for uid in dict.fromkeys(user_ids):
        user = users[uid]
        daily = []
        for day in sorted(by_user_day[uid]):
            sessions = by_user_day[uid][day]
            daily.append({
                "date": day,
                "work_duration": sum(s.total_duration or 0 for s in sessions),
                "break_duration": sum(s.total_break_duration or 0 for s in sessions),
                "sessions": [s.to_dict(include_breaks=False) for s in sessions],
            })
        report.append({
            "user_id": uid,
            "name": user.full_name,
            "total_work_duration": sum(d["work_duration"] for d in daily),
            "total_break_duration": sum(d["break_duration"] for d in daily),
            "daily_data": daily,
        })
    return report


def parse_year_month(args) -> tuple[int, int]:
    """year/month query args, defaulting to the current UTC month."""
    today = utcnow().date()
    try:
        year = int(args.get("year", today.year))
        month = int(args.get("month", today.month))
    except (TypeError, ValueError):
        raise ValidationError("year and month must be integers")
    return year, month

