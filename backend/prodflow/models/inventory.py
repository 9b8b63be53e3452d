from __future__ import annotations

from ..extensions import db
from prodflow.time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Stock-keeping item.

    Counters:
    - quantity: total on hand
    - reserved: held for production guides, not yet consumed
    - available: quantity - reserved (derived, never stored)

    INVARIANT: 0 <= reserved <= quantity. Counters change only through
    ledger operations (inventory_service), each of which appends an
    InventoryTransaction in the same DB transaction.

    version_id gives optimistic locking against concurrent ledger writes.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("reserved >= 0", name="ck_inventory_items_reserved_nonneg"),
        db.CheckConstraint("reserved <= quantity", name="ck_inventory_items_reserved_le_quantity"),
        db.Index("ix_inventory_items_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=False, unique=True, index=True)

    quantity = db.Column(db.Float, nullable=False, default=0)
    reserved = db.Column(db.Float, nullable=False, default=0)

    unit = db.Column(db.String(32), nullable=False, default="pcs")
    min_quantity = db.Column(db.Float, nullable=True)
    location = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    price = db.Column(db.Float, nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available(self) -> float:
        return (self.quantity or 0) - (self.reserved or 0)

    @property
    def is_low_stock(self) -> bool:
        return self.min_quantity is not None and (self.quantity or 0) <= self.min_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "available": self.available,
            "unit": self.unit,
            "min_quantity": self.min_quantity,
            "location": self.location,
            "category": self.category,
            "price": self.price,
            "description": self.description,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InventoryTransaction(db.Model):
    """
    Append-only inventory ledger row.

    Sign convention for quantity:
    - ADD, REMOVE, REMOVE_RESERVED, ISSUE, RETURN, ADJUST, FORCE, FORCE_REMOVE:
      signed change of item.quantity
    - RESERVE (negative), RELEASE (positive): signed change of available stock

    quantity_after / reserved_after snapshot the counters after the operation,
    so history views never need to replay the log.

    IMMUTABLE: Never updated or deleted.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_tx_item_created", "item_id", "created_at"),
        db.Index("ix_inventory_tx_type", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # No FKs on item_id/guide_id: history must survive item and guide deletion
    item_id = db.Column(db.Integer, nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    guide_id = db.Column(db.Integer, nullable=True, index=True)

    # ADD, REMOVE, REMOVE_RESERVED, FORCE_REMOVE, FORCE, RESERVE, RELEASE, ISSUE, RETURN, ADJUST
    type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    quantity_after = db.Column(db.Float, nullable=False)
    reserved_after = db.Column(db.Float, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship(
        "InventoryItem",
        primaryjoin="foreign(InventoryTransaction.item_id) == InventoryItem.id",
        viewonly=True,
    )
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "unit": self.item.unit if self.item else None,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "guide_id": self.guide_id,
            "type": self.type,
            "quantity": self.quantity,
            "quantity_after": self.quantity_after,
            "reserved_after": self.reserved_after,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
