from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event log.

    WHY: Track permission denials and failed logins.
    Critical for detecting unauthorized access attempts.

    IMMUTABLE: Never update or delete. Append-only.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Nullable for anonymous

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, LOGIN_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/inventory/items/3/adjust"
    action = db.Column(db.String(64), nullable=True)     # e.g., "inventory.manage>=2"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class AuditLog(db.Model):
    """
    Business audit trail: who did what to which record.

    module/action name the change ("inventory"/"remove", "production"/"archive"),
    target_id the affected record, meta a JSON snapshot of the relevant fields.

    IMMUTABLE: rows are written in the same transaction as the change they describe.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_module_action", "module", "action"),
        db.Index("ix_audit_logs_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False)
    module = db.Column(db.String(64), nullable=False)
    target_id = db.Column(db.String(64), nullable=True, index=True)
    meta = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("audit_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "action": self.action,
            "module": self.module,
            "target_id": self.target_id,
            "meta": self.meta or {},
            "created_at": to_utc_z(self.created_at),
        }
