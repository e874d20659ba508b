"""
Grant registry service.

Administrators maintain grants and their position lines here; the
allocation engine only reads them.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from hrms.core.exceptions import ConflictError, NotFoundError, ValidationError
from hrms.models import db
from hrms.models.audit import current_actor, write_audit
from hrms.models.grant import Grant, GrantItem
from hrms.services.funding_allocation_service import _as_decimal, _as_int, _parse_date
from hrms.services.grant_capacity import count_active_allocations

logger = logging.getLogger(__name__)

_GRANT_FIELDS = ("name", "organization", "description")
_ITEM_MONEY_FIELDS = ("grant_salary", "grant_benefit")


def grant_query(filters: dict):
    q = Grant.query
    organization = filters.get("organization")
    if organization:
        q = q.filter(Grant.organization == organization)
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Grant.code.ilike(like), Grant.name.ilike(like)))
    return q.order_by(Grant.code)


def get_grant(grant_id: int) -> Grant:
    grant = db.session.get(Grant, grant_id)
    if grant is None:
        raise NotFoundError(resource="Grant", resource_id=grant_id)
    return grant


def create_grant(data: dict, actor: str | None = None) -> Grant:
    actor = actor or current_actor()
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    errors = {}
    if not code:
        errors["code"] = "required"
    if not name:
        errors["name"] = "required"
    if errors:
        raise ValidationError("The given grant data was invalid.", details=errors)

    if db.session.execute(select(Grant.id).where(Grant.code == code)).scalar_one_or_none() is not None:
        raise ConflictError(resource="Grant", message=f"Grant code '{code}' already exists")

    try:
        grant = Grant(
            code=code,
            name=name,
            organization=data.get("organization"),
            description=data.get("description"),
            end_date=_parse_date(data.get("end_date"), "end_date"),
            created_by=actor,
        )
        db.session.add(grant)
        db.session.flush()
        for i, item_data in enumerate(data.get("grant_items") or []):
            _build_item(grant, item_data, prefix=f"grant_items.{i}.")
        write_audit(entity_type="grant", entity_id=grant.id, action="create", actor=actor,
                    diff={"code": code})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Grant created id=%s code=%s", grant.id, code)
    return grant


def update_grant(grant_id: int, data: dict, actor: str | None = None) -> Grant:
    """Update descriptive fields. The code is immutable once allocations reference it."""
    actor = actor or current_actor()
    try:
        grant = get_grant(grant_id)
        diff = {}
        for field in _GRANT_FIELDS:
            if field in data:
                diff[field] = {"old": getattr(grant, field), "new": data[field]}
                setattr(grant, field, data[field])
        if "end_date" in data:
            new_end = _parse_date(data.get("end_date"), "end_date")
            diff["end_date"] = {"old": grant.end_date, "new": new_end}
            grant.end_date = new_end
        if not (grant.name or "").strip():
            raise ValidationError("The given grant data was invalid.", details={"name": "required"})
        write_audit(entity_type="grant", entity_id=grant.id, action="update", actor=actor, diff=diff)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return grant


def _build_item(grant: Grant, data: dict, prefix: str = "") -> GrantItem:
    errors = {}
    slots = _as_int(data.get("grant_position_number", 1))
    if slots is None or slots < 1:
        errors[f"{prefix}grant_position_number"] = "must be an integer of at least 1"

    money = {}
    for field in _ITEM_MONEY_FIELDS:
        raw = data.get(field)
        if raw in (None, ""):
            money[field] = None
            continue
        value = _as_decimal(raw)
        if value is None or value < 0:
            errors[f"{prefix}{field}"] = "must be a non-negative number"
        else:
            money[field] = value.quantize(Decimal("0.01"))

    loe = data.get("grant_level_of_effort")
    level_of_effort = None
    if loe not in (None, ""):
        level_of_effort = _as_decimal(loe)
        if level_of_effort is None or not (0 <= level_of_effort <= 1):
            errors[f"{prefix}grant_level_of_effort"] = "must be between 0 and 1"
    if errors:
        raise ValidationError("The given grant item data was invalid.", details=errors)

    item = GrantItem(
        grant_id=grant.id,
        grant_position=data.get("grant_position"),
        grant_level_of_effort=level_of_effort,
        grant_position_number=slots,
        budgetline_code=data.get("budgetline_code"),
        **money,
    )
    db.session.add(item)
    db.session.flush()
    return item


def add_grant_item(grant_id: int, data: dict, actor: str | None = None) -> GrantItem:
    actor = actor or current_actor()
    try:
        grant = get_grant(grant_id)
        item = _build_item(grant, data)
        write_audit(entity_type="grant_item", entity_id=item.id, action="create", actor=actor,
                    diff={"grant_id": grant.id, "grant_position_number": item.grant_position_number})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Grant item created id=%s grant_id=%s slots=%s", item.id, grant_id, item.grant_position_number)
    return item


def update_grant_item(grant_item_id: int, data: dict, actor: str | None = None) -> GrantItem:
    """Change a position line. Slots cannot drop below the active allocations."""
    actor = actor or current_actor()
    try:
        item = db.session.execute(
            select(GrantItem).where(GrantItem.id == grant_item_id).with_for_update()
        ).scalar_one_or_none()
        if item is None:
            raise NotFoundError(resource="GrantItem", resource_id=grant_item_id)

        diff = {}
        if "grant_position_number" in data:
            slots = _as_int(data.get("grant_position_number"))
            if slots is None or slots < 1:
                raise ValidationError(
                    "The given grant item data was invalid.",
                    details={"grant_position_number": "must be an integer of at least 1"},
                )
            active = count_active_allocations(item.id)
            if slots < active:
                raise ValidationError(
                    f"Cannot reduce positions to {slots}: {active} allocations are active",
                    details={"grant_position_number": f"must be at least {active}"},
                )
            diff["grant_position_number"] = {"old": item.grant_position_number, "new": slots}
            item.grant_position_number = slots
        for field in ("grant_position", "budgetline_code"):
            if field in data:
                diff[field] = {"old": getattr(item, field), "new": data[field]}
                setattr(item, field, data[field])
        write_audit(entity_type="grant_item", entity_id=item.id, action="update", actor=actor, diff=diff)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return item
