from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification for one user.

    scheduled_at in the future hides the notification until it is due.
    Realtime push is outside this service; clients poll the list endpoint.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_archived", "user_id", "archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=False, default="/")
    type = db.Column(db.String(16), nullable=False, default="SYSTEM")  # SYSTEM, PRODUCTION, INVENTORY

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    archived = db.Column(db.Boolean, nullable=False, default=False)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "link": self.link,
            "type": self.type,
            "is_read": self.is_read,
            "archived": self.archived,
            "scheduled_at": to_utc_z(self.scheduled_at),
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
