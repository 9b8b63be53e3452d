from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class ProductionTemplate(db.Model):
    """
    Reusable snapshot of a guide.

    data is decoupled from live guides:
    {
        "guide": {"title", "description", "priority"},
        "steps": [{"title", "description", "estimated_time", "assigned_to_role_id", "order"}],
        "inventory": [{"item_id", "quantity", "step_order"}],
    }
    """
    __tablename__ = "production_templates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    data = db.Column(db.JSON, nullable=False, default=dict)

    source_guide_id = db.Column(db.Integer, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        data = self.data or {}
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "data": data,
            "step_count": len(data.get("steps") or []),
            "item_count": len(data.get("inventory") or []),
            "source_guide_id": self.source_guide_id,
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
