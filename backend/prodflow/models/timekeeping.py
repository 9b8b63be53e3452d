from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class TimeTrackingSettings(db.Model):
    """
    Single-row settings for work-day time tracking.

    Durations are minutes. The row is created with defaults on first read.
    """
    __tablename__ = "time_tracking_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    enable_break_button = db.Column(db.Boolean, nullable=False, default=True)
    min_session_duration = db.Column(db.Integer, nullable=False, default=0)
    max_session_duration = db.Column(db.Integer, nullable=False, default=720)
    max_break_duration = db.Column(db.Integer, nullable=False, default=60)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enable_break_button": self.enable_break_button,
            "min_session_duration": self.min_session_duration,
            "max_session_duration": self.max_session_duration,
            "max_break_duration": self.max_break_duration,
            "updated_at": to_utc_z(self.updated_at),
        }


class AttendanceSession(db.Model):
    """
    Work day of a user, independent of production steps.

    LIFECYCLE:
    - ACTIVE: started, end_time NULL
    - COMPLETED: ended; total_duration = elapsed seconds minus break seconds

    A user has at most one ACTIVE session.
    """
    __tablename__ = "attendance_sessions"
    __table_args__ = (
        db.Index("ix_attendance_sessions_user_status", "user_id", "status"),
        db.Index("ix_attendance_sessions_start", "start_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    # Seconds
    total_duration = db.Column(db.Integer, nullable=True)
    total_break_duration = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User")
    breaks = db.relationship(
        "AttendanceBreak",
        backref="session",
        lazy=True,
        order_by="AttendanceBreak.start_time",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def active_break(self):
        return next((b for b in self.breaks if b.end_time is None), None)

    def to_dict(self, *, include_breaks: bool = True) -> dict:
        active_break = self.active_break
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "status": self.status,
            "total_duration": self.total_duration,
            "total_break_duration": self.total_break_duration,
            "notes": self.notes,
            "on_break": active_break is not None,
            "break_start_time": to_utc_z(active_break.start_time) if active_break else None,
            "created_at": to_utc_z(self.created_at),
        }
        if include_breaks:
            data["breaks"] = [b.to_dict() for b in self.breaks]
        return data


class AttendanceBreak(db.Model):
    """Break inside a work-day session; duration is seconds, set on end."""
    __tablename__ = "attendance_breaks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("attendance_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    duration = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "duration": self.duration,
            "status": self.status,
        }
