# Overview: Service-layer operations for quality control; checklist templates, recorded checks and stats.

"""
Quality Control

- A template is a named list of check items.
- A check records per-item results against a guide and/or a step.
- A failed check on a step reopens it (IN_PROGRESS); the guide completion
  rule then moves a COMPLETED guide back to IN_PROGRESS.
- Templates referenced by checks cannot be deleted.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import timedelta

from sqlalchemy import func, or_

from ..extensions import db
from ..models import QualityCheckTemplate, QualityCheck
from ..validation import ValidationError, ConflictError, NotFoundError, pagination_dict
from .audit_service import log_audit
from .concurrency import run_with_retry
from .guide_service import get_guide_or_404, ensure_not_archived, apply_completion_rule, notify_status_change
from .step_service import get_step_or_404
from prodflow.time_utils import utcnow, parse_iso_datetime


MAX_ITEMS = 200
MAX_NOTE_LENGTH = 2000
DEFAULT_STATS_DAYS = 30
TOP_FAILURES = 10


def _get_template_or_404(template_id: int) -> QualityCheckTemplate:
    template = db.session.get(QualityCheckTemplate, template_id)
    if template is None:
        raise NotFoundError("Quality check template not found")
    return template


def _clean_name(name, *, exclude_id: int | None = None) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    name = name.strip()
    if len(name) > 255:
        raise ValidationError("name exceeds max length 255")
    query = db.session.query(QualityCheckTemplate).filter(func.lower(QualityCheckTemplate.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(QualityCheckTemplate.id != exclude_id)
    if query.first():
        raise ConflictError("Quality check template with this name already exists")
    return name


def _optional_id(value, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def _clean_text(value, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > MAX_NOTE_LENGTH:
        raise ValidationError(f"{field} exceeds max length {MAX_NOTE_LENGTH}")
    return value or None


def normalize_items(items) -> list[dict]:
    """Checklist items as [{"name", "description"}]; plain strings are accepted as names."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > MAX_ITEMS:
        raise ValidationError(f"items cannot exceed {MAX_ITEMS} entries")
    clean = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
            raise ValidationError(f"items[{index}] needs a name")
        clean.append({
            "name": item["name"].strip(),
            "description": _clean_text(item.get("description"), f"items[{index}].description"),
        })
    return clean


def _normalize_results(results) -> list[dict]:
    if not isinstance(results, list) or not results:
        raise ValidationError("results must be a non-empty list")
    clean = []
    for index, result in enumerate(results):
        if not isinstance(result, dict) or not isinstance(result.get("name"), str) or not result["name"].strip():
            raise ValidationError(f"results[{index}] needs a name")
        if not isinstance(result.get("passed"), bool):
            raise ValidationError(f"results[{index}].passed must be a boolean")
        clean.append({
            "name": result["name"].strip(),
            "passed": result["passed"],
            "notes": _clean_text(result.get("notes"), f"results[{index}].notes"),
        })
    return clean


# =============================================================================
# TEMPLATES
# =============================================================================


def create_template(*, name, description=None, items=None, user_id: int) -> QualityCheckTemplate:
    name = _clean_name(name)
    items = normalize_items(items)
    description = _clean_text(description, "description")

    def _op():
        template = QualityCheckTemplate(name=name, description=description, items=items, created_by_id=user_id)
        db.session.add(template)
        db.session.flush()
        log_audit(user_id=user_id, action="create_template", module="quality", target_id=template.id,
                  meta={"name": name, "items": len(items)})
        db.session.commit()
        return template

    return run_with_retry(_op)


def update_template(template_id: int, *, payload: dict, user_id: int) -> QualityCheckTemplate:
    template = _get_template_or_404(template_id)
    changes = {}

    if "name" in payload:
        name = _clean_name(payload["name"], exclude_id=template.id)
        if name != template.name:
            changes["name"] = [template.name, name]
            template.name = name
    if "description" in payload:
        template.description = _clean_text(payload["description"], "description")
        changes["description"] = True
    if "items" in payload:
        template.items = normalize_items(payload["items"])
        changes["items"] = len(template.items)

    log_audit(user_id=user_id, action="update_template", module="quality", target_id=template.id, meta=changes)
    db.session.commit()
    return template


def delete_template(template_id: int, *, user_id: int) -> None:
    template = _get_template_or_404(template_id)
    in_use = db.session.query(QualityCheck.id).filter_by(template_id=template.id).count()
    if in_use:
        raise ConflictError(f"Template is used by {in_use} quality check(s)")
    log_audit(user_id=user_id, action="delete_template", module="quality", target_id=template.id,
              meta={"name": template.name})
    db.session.delete(template)
    db.session.commit()


def get_template(template_id: int) -> dict:
    return _get_template_or_404(template_id).to_dict()


def list_templates(*, page: int = 1, limit: int = 20, search: str | None = None) -> dict:
    query = db.session.query(QualityCheckTemplate)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(QualityCheckTemplate.name.ilike(pattern),
                                 QualityCheckTemplate.description.ilike(pattern)))
    total = query.count()
    templates = query.order_by(QualityCheckTemplate.name).offset((page - 1) * limit).limit(limit).all()
    return {
        "templates": [t.to_dict() for t in templates],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


# =============================================================================
# CHECKS
# =============================================================================


def perform_check(
    *,
    template_id,
    results,
    user_id: int,
    guide_id: int | None = None,
    step_id: int | None = None,
    passed=None,
    notes=None,
) -> QualityCheck:
    """
    Record a check.

    passed defaults to "every result passed". step_id alone implies the
    step's guide; both given must agree.
    """
    template_id = _optional_id(template_id, "templateId")
    if template_id is None:
        raise ValidationError("templateId is required")
    guide_id = _optional_id(guide_id, "guideId")
    step_id = _optional_id(step_id, "stepId")
    template = _get_template_or_404(template_id)
    results = _normalize_results(results)
    notes = _clean_text(notes, "notes")
    if passed is None:
        passed = all(r["passed"] for r in results)
    elif not isinstance(passed, bool):
        raise ValidationError("passed must be a boolean")

    step = get_step_or_404(step_id) if step_id is not None else None
    if step is not None:
        if guide_id is not None and guide_id != step.guide_id:
            raise ValidationError("Step does not belong to this guide")
        guide = step.guide
    else:
        guide = get_guide_or_404(guide_id) if guide_id is not None else None
    if guide is not None:
        ensure_not_archived(guide)

    def _op():
        check = QualityCheck(
            template_id=template.id,
            guide_id=guide.id if guide else None,
            step_id=step.id if step else None,
            user_id=user_id,
            results=results,
            passed=passed,
            notes=notes,
        )
        db.session.add(check)
        db.session.flush()

        guide_changed = False
        if not passed and step is not None and step.status != "IN_PROGRESS":
            step.status = "IN_PROGRESS"
            guide_changed = apply_completion_rule(guide, user_id=user_id)

        log_audit(user_id=user_id, action="perform_check", module="quality", target_id=check.id,
                  meta={"template_id": template.id, "guide_id": check.guide_id, "step_id": check.step_id,
                        "passed": passed})
        db.session.commit()
        return check, guide_changed

    check, guide_changed = run_with_retry(_op)
    if guide_changed:
        notify_status_change(guide, actor_id=user_id)
    return check


def get_check(check_id: int) -> dict:
    check = db.session.get(QualityCheck, check_id)
    if check is None:
        raise NotFoundError("Quality check not found")
    return check.to_dict()


def list_guide_checks(guide_id: int) -> list[dict]:
    get_guide_or_404(guide_id)
    checks = (
        db.session.query(QualityCheck)
        .filter(QualityCheck.guide_id == guide_id)
        .order_by(QualityCheck.created_at.desc(), QualityCheck.id.desc())
        .all()
    )
    return [c.to_dict() for c in checks]


def list_step_checks(step_id: int) -> list[dict]:
    get_step_or_404(step_id)
    checks = (
        db.session.query(QualityCheck)
        .filter(QualityCheck.step_id == step_id)
        .order_by(QualityCheck.created_at.desc(), QualityCheck.id.desc())
        .all()
    )
    return [c.to_dict() for c in checks]


# =============================================================================
# STATS
# =============================================================================


def _parse_bound(value, field: str):
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date")


def get_stats(*, date_from=None, date_to=None) -> dict:
    """
    Pass/fail counts, pass rate, most failed items and a per-day trend.

    Defaults to the last 30 days.
    """
    end = _parse_bound(date_to, "to") or utcnow()
    start = _parse_bound(date_from, "from") or end - timedelta(days=DEFAULT_STATS_DAYS)
    if start > end:
        raise ValidationError("from must be before to")

    checks = (
        db.session.query(QualityCheck)
        .filter(QualityCheck.created_at >= start, QualityCheck.created_at <= end)
        .order_by(QualityCheck.created_at)
        .all()
    )

    passed = sum(1 for c in checks if c.passed)
    failed = len(checks) - passed
    failures = Counter(r["name"] for c in checks for r in (c.results or []) if r.get("passed") is False)

    trend: dict[str, dict] = defaultdict(lambda: {"passed": 0, "failed": 0})
    for c in checks:
        trend[c.created_at.date().isoformat()]["passed" if c.passed else "failed"] += 1

    return {
        "pass_fail_stats": {"passed": passed, "failed": failed},
        "pass_rate": round(passed / len(checks) * 100, 2) if checks else 0,
        "failure_items": [{"name": name, "count": count} for name, count in failures.most_common(TOP_FAILURES)],
        "timeline_trend": [{"date": day, **trend[day]} for day in sorted(trend)],
    }
