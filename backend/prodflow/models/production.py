from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


GUIDE_STATUSES = ("DRAFT", "IN_PROGRESS", "COMPLETED", "CANCELLED", "ARCHIVED")
GUIDE_PRIORITIES = ("LOW", "NORMAL", "MEDIUM", "HIGH", "CRITICAL")
STEP_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")


class GuideAssignment(db.Model):
    """Users assigned to a guide; only they may withdraw its reserved stock."""
    __tablename__ = "guide_assignments"
    __table_args__ = (
        db.UniqueConstraint("guide_id", "user_id", name="uq_guide_assignments"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    guide_id = db.Column(db.Integer, db.ForeignKey("production_guides.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")


class ProductionGuide(db.Model):
    """
    Production workflow instance composed of ordered steps.

    LIFECYCLE:
    - DRAFT -> IN_PROGRESS when the first step is added or work starts
    - IN_PROGRESS -> COMPLETED when every step is COMPLETED
    - any non-archived status -> ARCHIVED (blocked while a step is IN_PROGRESS);
      status_before_archive remembers where restore returns to
    """
    __tablename__ = "production_guides"
    __table_args__ = (
        db.Index("ix_production_guides_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(32), nullable=False, unique=True, index=True)

    priority = db.Column(db.String(16), nullable=False, default="NORMAL")
    status = db.Column(db.String(16), nullable=False, default="DRAFT")
    status_before_archive = db.Column(db.String(16), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.relationship("User", foreign_keys=[created_by_id])
    assignments = db.relationship(
        "GuideAssignment",
        backref="guide",
        lazy=True,
        cascade="all, delete-orphan",
    )
    steps = db.relationship(
        "ProductionStep",
        backref="guide",
        lazy=True,
        order_by="ProductionStep.order",
        cascade="all, delete-orphan",
    )
    inventory = db.relationship(
        "GuideInventory",
        backref="guide",
        lazy=True,
        cascade="all, delete-orphan",
    )
    quality_checks = db.relationship(
        "QualityCheck",
        lazy=True,
        foreign_keys="QualityCheck.guide_id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def assigned_user_ids(self) -> list[int]:
        return [a.user_id for a in self.assignments]

    def to_dict(self, *, include_details: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "barcode": self.barcode,
            "priority": self.priority,
            "status": self.status,
            "status_before_archive": self.status_before_archive,
            "due_date": to_utc_z(self.due_date),
            "created_by_id": self.created_by_id,
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "assigned_users": [a.user.to_summary() for a in self.assignments if a.user],
            "step_count": len(self.steps),
            "completed_steps": sum(1 for s in self.steps if s.status == "COMPLETED"),
        }
        if include_details:
            data["steps"] = [s.to_dict() for s in self.steps]
            data["inventory"] = [gi.to_dict() for gi in self.inventory]
        return data


class ProductionStep(db.Model):
    """
    Ordered step of a guide.

    Status cycles PENDING -> IN_PROGRESS -> COMPLETED and may be moved back;
    COMPLETED is not terminal.
    actual_time is minutes, derived from StepWorkSession durations.
    """
    __tablename__ = "production_steps"
    __table_args__ = (
        db.Index("ix_production_steps_guide_order", "guide_id", "order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    guide_id = db.Column(db.Integer, db.ForeignKey("production_guides.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    estimated_time = db.Column(db.Integer, nullable=True)
    actual_time = db.Column(db.Integer, nullable=True)

    assigned_to_role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    assigned_to_role = db.relationship("Role")
    work_sessions = db.relationship(
        "StepWorkSession",
        backref="step",
        lazy=True,
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "StepComment",
        backref="step",
        lazy=True,
        cascade="all, delete-orphan",
    )
    quality_checks = db.relationship(
        "QualityCheck",
        lazy=True,
        foreign_keys="QualityCheck.step_id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "guide_id": self.guide_id,
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "estimated_time": self.estimated_time,
            "actual_time": self.actual_time,
            "assigned_to_role_id": self.assigned_to_role_id,
            "assigned_to_role": self.assigned_to_role.name if self.assigned_to_role else None,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StepWorkSession(db.Model):
    """
    Time spent by a user on a step.

    Timed sessions are open while end_time is NULL; manual entries are stored
    closed, with start_time == end_time and duration set from the entered minutes.
    duration is seconds.
    """
    __tablename__ = "step_work_sessions"
    __table_args__ = (
        db.Index("ix_step_work_sessions_user_open", "user_id", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(db.Integer, db.ForeignKey("production_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    duration = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    is_manual = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "duration": self.duration,
            "note": self.note,
            "is_manual": self.is_manual,
            "is_active": self.end_time is None,
        }


class GuideInventory(db.Model):
    """
    Item attached to a guide.

    reserved=True means the quantity is counted in item.reserved.
    Withdrawal converts the reservation into an ISSUE and stamps
    withdrawn_by/withdrawn_date; reserved flips to False.
    """
    __tablename__ = "guide_inventory"
    __table_args__ = (
        db.UniqueConstraint("guide_id", "item_id", name="uq_guide_inventory_guide_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    guide_id = db.Column(db.Integer, db.ForeignKey("production_guides.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    step_id = db.Column(db.Integer, db.ForeignKey("production_steps.id", ondelete="SET NULL"), nullable=True)

    quantity = db.Column(db.Float, nullable=False)
    reserved = db.Column(db.Boolean, nullable=False, default=True)

    withdrawn_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    withdrawn_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("InventoryItem", backref=db.backref("guide_items", lazy=True))
    withdrawn_by = db.relationship("User")

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn_date is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "guide_id": self.guide_id,
            "item_id": self.item_id,
            "item": {
                "id": self.item.id,
                "name": self.item.name,
                "unit": self.item.unit,
                "barcode": self.item.barcode,
            } if self.item else None,
            "step_id": self.step_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "withdrawn_by_id": self.withdrawn_by_id,
            "withdrawn_date": to_utc_z(self.withdrawn_date),
            "created_at": to_utc_z(self.created_at),
        }


class GuideChangeHistory(db.Model):
    """Field-level change log of a guide (CREATE/UPDATE/ARCHIVE/RESTORE)."""
    __tablename__ = "guide_change_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    guide_id = db.Column(db.Integer, db.ForeignKey("production_guides.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    change_type = db.Column(db.String(16), nullable=False)
    field_name = db.Column(db.String(64), nullable=False)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "guide_id": self.guide_id,
            "user": self.user.to_summary() if self.user else None,
            "change_type": self.change_type,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "created_at": to_utc_z(self.created_at),
        }


class StepComment(db.Model):
    __tablename__ = "step_comments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(db.Integer, db.ForeignKey("production_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    recipient_ids = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "user": self.user.to_summary() if self.user else None,
            "content": self.content,
            "recipient_ids": self.recipient_ids or [],
            "created_at": to_utc_z(self.created_at),
        }
