# Overview: Service-layer operations for production templates; snapshot and instantiate guides.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import ProductionTemplate, ProductionStep, Role, InventoryItem
from ..validation import ValidationError, ConflictError, NotFoundError, parse_number, pagination_dict
from .audit_service import log_audit
from .guide_service import get_guide_or_404, create_guide, _validate_priority
from .guide_inventory_service import attach_items
from .concurrency import run_with_retry


def _get_template_or_404(template_id: int) -> ProductionTemplate:
    template = db.session.get(ProductionTemplate, template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


def _clean_name(name, *, exclude_id: int | None = None) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    name = name.strip()
    if len(name) > 255:
        raise ValidationError("name exceeds max length 255")
    query = db.session.query(ProductionTemplate).filter(func.lower(ProductionTemplate.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(ProductionTemplate.id != exclude_id)
    if query.first():
        raise ConflictError("Template with this name already exists")
    return name


def normalize_template_data(data) -> dict:
    """
    Validate a template snapshot and return it in canonical shape.

    Accepts camelCase keys from clients; stores snake_case.
    """
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")

    guide = data.get("guide") or {}
    if not isinstance(guide, dict):
        raise ValidationError("data.guide must be an object")
    clean_guide = {
        "title": (guide.get("title") or "").strip(),
        "description": guide.get("description"),
        "priority": _validate_priority(guide.get("priority")),
    }

    steps = data.get("steps") or []
    if not isinstance(steps, list):
        raise ValidationError("data.steps must be a list")
    clean_steps = []
    for index, step in enumerate(steps):
        if not isinstance(step, dict) or not (step.get("title") or "").strip():
            raise ValidationError(f"data.steps[{index}] needs a title")
        estimated = step.get("estimated_time", step.get("estimatedTime"))
        if estimated is not None:
            if isinstance(estimated, bool) or not isinstance(estimated, int) or estimated < 0:
                raise ValidationError(f"data.steps[{index}].estimatedTime must be a non-negative integer")
        clean_steps.append({
            "title": step["title"].strip(),
            "description": step.get("description"),
            "estimated_time": estimated,
            "assigned_to_role_id": step.get("assigned_to_role_id", step.get("assignedToRoleId")),
            "order": index,
        })

    inventory = data.get("inventory") or []
    if not isinstance(inventory, list):
        raise ValidationError("data.inventory must be a list")
    clean_inventory = []
    for index, line in enumerate(inventory):
        if not isinstance(line, dict):
            raise ValidationError(f"data.inventory[{index}] must be an object")
        item_id = line.get("item_id", line.get("itemId"))
        if isinstance(item_id, bool) or not isinstance(item_id, int):
            raise ValidationError(f"data.inventory[{index}].itemId must be an integer")
        clean_inventory.append({
            "item_id": item_id,
            "quantity": parse_number(line.get("quantity"), field=f"data.inventory[{index}].quantity"),
            "step_order": line.get("step_order", line.get("stepOrder")),
        })

    return {"guide": clean_guide, "steps": clean_steps, "inventory": clean_inventory}


def create_template(*, name: str, description: str | None, data, user_id: int,
                    source_guide_id: int | None = None) -> ProductionTemplate:
    name = _clean_name(name)
    snapshot = normalize_template_data(data)

    template = ProductionTemplate(
        name=name,
        description=description,
        data=snapshot,
        source_guide_id=source_guide_id,
        created_by_id=user_id,
    )
    db.session.add(template)
    db.session.flush()
    log_audit(user_id=user_id, action="create", module="templates", target_id=template.id,
              meta={"name": name, "source_guide_id": source_guide_id})
    db.session.commit()
    return template


def update_template(template_id: int, *, payload: dict, user_id: int) -> ProductionTemplate:
    template = _get_template_or_404(template_id)
    changes = {}

    if "name" in payload:
        name = _clean_name(payload["name"], exclude_id=template.id)
        if name != template.name:
            changes["name"] = [template.name, name]
            template.name = name
    if "description" in payload:
        template.description = payload["description"]
        changes["description"] = True
    if "data" in payload:
        # JSON column: assign a new object so the change is detected
        template.data = normalize_template_data(payload["data"])
        changes["data"] = True

    log_audit(user_id=user_id, action="update", module="templates", target_id=template.id, meta=changes)
    db.session.commit()
    return template


def delete_template(template_id: int, *, user_id: int) -> None:
    template = _get_template_or_404(template_id)
    log_audit(user_id=user_id, action="delete", module="templates", target_id=template.id,
              meta={"name": template.name})
    db.session.delete(template)
    db.session.commit()


def get_template(template_id: int) -> dict:
    return _get_template_or_404(template_id).to_dict()


def list_templates(*, page: int = 1, limit: int = 20, search: str | None = None) -> dict:
    query = db.session.query(ProductionTemplate)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(ProductionTemplate.name.ilike(pattern), ProductionTemplate.description.ilike(pattern)))
    total = query.count()
    templates = query.order_by(ProductionTemplate.name).offset((page - 1) * limit).limit(limit).all()
    return {
        "templates": [t.to_dict() for t in templates],
        "pagination": pagination_dict(total=total, page=page, limit=limit),
    }


def template_from_guide(guide_id: int, *, name: str, description: str | None = None, user_id: int) -> ProductionTemplate:
    """Snapshot a live guide: fields, steps (with roles and estimates) and inventory lines."""
    guide = get_guide_or_404(guide_id)
    order_by_step_id = {s.id: s.order for s in guide.steps}

    data = {
        "guide": {"title": guide.title, "description": guide.description, "priority": guide.priority},
        "steps": [
            {
                "title": s.title,
                "description": s.description,
                "estimated_time": s.estimated_time,
                "assigned_to_role_id": s.assigned_to_role_id,
            }
            for s in guide.steps
        ],
        "inventory": [
            {
                "item_id": gi.item_id,
                "quantity": gi.quantity,
                "step_order": order_by_step_id.get(gi.step_id),
            }
            for gi in guide.inventory
        ],
    }
    return create_template(
        name=name,
        description=description if description is not None else guide.description,
        data=data,
        user_id=user_id,
        source_guide_id=guide.id,
    )


def guide_from_template(template_id: int, *, overrides: dict | None = None, user_id: int) -> dict:
    """
    Create a DRAFT guide from a template.

    Steps whose role no longer exists keep the step but drop the role.
    Inventory lines for items that still exist are reserved; per-line
    failures are reported, not fatal.
    """
    template = _get_template_or_404(template_id)
    data = template.data or {}
    overrides = overrides or {}

    base = data.get("guide") or {}
    patch = {
        "title": overrides.get("title") or base.get("title") or template.name,
        "description": overrides.get("description", base.get("description")),
        "priority": overrides.get("priority") or base.get("priority") or "NORMAL",
    }
    if overrides.get("due_date") is not None:
        patch["due_date"] = overrides["due_date"]

    guide = create_guide(patch=patch, user_id=user_id, assigned_user_ids=overrides.get("assigned_user_ids"))

    existing_roles = {r[0] for r in db.session.query(Role.id).all()}
    dropped_roles = []

    def _op():
        steps = []
        for index, s in enumerate(data.get("steps") or []):
            role_id = s.get("assigned_to_role_id")
            if role_id is not None and role_id not in existing_roles:
                dropped_roles.append(role_id)
                role_id = None
            steps.append(ProductionStep(
                guide_id=guide.id,
                title=s.get("title"),
                description=s.get("description"),
                estimated_time=s.get("estimated_time"),
                assigned_to_role_id=role_id,
                order=index,
                status="PENDING",
            ))
        db.session.add_all(steps)
        log_audit(user_id=user_id, action="instantiate", module="templates", target_id=template.id,
                  meta={"guide_id": guide.id, "steps": len(steps)})
        db.session.commit()
        return steps

    steps = run_with_retry(_op)
    step_ids = {s.order: s.id for s in steps}

    lines = []
    missing_items = []
    known_items = {r[0] for r in db.session.query(InventoryItem.id).all()}
    for line in data.get("inventory") or []:
        if line.get("item_id") not in known_items:
            missing_items.append(line.get("item_id"))
            continue
        lines.append({
            "itemId": line["item_id"],
            "quantity": line["quantity"],
            "stepId": step_ids.get(line.get("step_order")),
        })

    inventory = attach_items(guide.id, lines, user_id=user_id) if lines else {"success": True, "results": [], "errors": []}
    inventory["errors"].extend({"itemId": item_id, "error": "Item no longer exists"} for item_id in missing_items)
    inventory["success"] = not inventory["errors"]

    db.session.refresh(guide)
    return {
        "guide": guide.to_dict(include_details=True),
        "inventory": inventory,
        "dropped_roles": sorted(set(dropped_roles)),
    }
