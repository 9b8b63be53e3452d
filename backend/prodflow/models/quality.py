from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class QualityCheckTemplate(db.Model):
    """
    Named checklist used to record quality checks.

    items: [{"name": str, "description": str | None}]
    """
    __tablename__ = "quality_check_templates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    items = db.Column(db.JSON, nullable=False, default=list)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "items": self.items or [],
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class QualityCheck(db.Model):
    """
    Recorded result of a template against a guide and/or a step.

    results: [{"name": str, "passed": bool, "notes": str | None}]
    passed is the overall verdict.
    """
    __tablename__ = "quality_checks"
    __table_args__ = (
        db.Index("ix_quality_checks_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("quality_check_templates.id"), nullable=False, index=True)
    guide_id = db.Column(db.Integer, db.ForeignKey("production_guides.id", ondelete="CASCADE"), nullable=True, index=True)
    step_id = db.Column(db.Integer, db.ForeignKey("production_steps.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    results = db.Column(db.JSON, nullable=False, default=list)
    passed = db.Column(db.Boolean, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    template = db.relationship("QualityCheckTemplate", backref=db.backref("checks", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template": {"id": self.template.id, "name": self.template.name} if self.template else None,
            "guide_id": self.guide_id,
            "step_id": self.step_id,
            "user": self.user.to_summary() if self.user else None,
            "results": self.results or [],
            "passed": self.passed,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
