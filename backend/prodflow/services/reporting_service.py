# Overview: Service-layer operations for reporting; dashboard aggregates.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import ProductionGuide, StepWorkSession, InventoryItem, InventoryTransaction
from ..models.production import GUIDE_STATUSES
from .guide_service import overdue_guides_query
from prodflow.time_utils import utcnow, to_utc_z


RECENT_TRANSACTION_DAYS = 7
OVERDUE_LIMIT = 10


def dashboard_stats() -> dict:
    """Counters for the dashboard. Read-only."""
    counts = dict(
        db.session.query(ProductionGuide.status, func.count(ProductionGuide.id))
        .group_by(ProductionGuide.status)
        .all()
    )
    guides_by_status = {status: int(counts.get(status, 0)) for status in GUIDE_STATUSES}

    overdue_query = overdue_guides_query()
    overdue_total = overdue_query.count()
    overdue = overdue_query.order_by(ProductionGuide.due_date).limit(OVERDUE_LIMIT).all()

    active_sessions = (
        db.session.query(func.count(StepWorkSession.id))
        .filter(StepWorkSession.end_time.is_(None))
        .scalar()
        or 0
    )

    low_stock = (
        db.session.query(func.count(InventoryItem.id))
        .filter(InventoryItem.min_quantity.isnot(None), InventoryItem.quantity <= InventoryItem.min_quantity)
        .scalar()
        or 0
    )
    total_items, total_reserved = db.session.query(
        func.count(InventoryItem.id),
        func.coalesce(func.sum(InventoryItem.reserved), 0.0),
    ).one()

    since = utcnow() - timedelta(days=RECENT_TRANSACTION_DAYS)
    recent_transactions = (
        db.session.query(func.count(InventoryTransaction.id))
        .filter(InventoryTransaction.created_at >= since)
        .scalar()
        or 0
    )

    return {
        "guides": {
            "by_status": guides_by_status,
            "total": sum(guides_by_status.values()),
            "overdue": overdue_total,
            "overdue_guides": [
                {
                    "id": g.id,
                    "title": g.title,
                    "barcode": g.barcode,
                    "status": g.status,
                    "priority": g.priority,
                    "due_date": to_utc_z(g.due_date),
                }
                for g in overdue
            ],
        },
        "work": {"active_sessions": int(active_sessions)},
        "inventory": {
            "total_items": int(total_items),
            "low_stock": int(low_stock),
            "total_reserved": round(float(total_reserved), 6),
            "recent_transactions": int(recent_transactions),
        },
    }
