"""
Employment service: employee registry, employment records and their
lifecycle hooks into the probation ledger and the allocation engine.

Employment creation is one transaction: the Employment row, its initial
ProbationRecord (when a probation end date is given) and an optional first
allocation set are committed together or not at all.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from hrms.core.exceptions import ConflictError, NotFoundError, ValidationError
from hrms.models import db
from hrms.models.audit import current_actor, write_audit
from hrms.models.employment import Employee, Employment
from hrms.services import funding_allocation_service as fas
from hrms.services import probation_service

logger = logging.getLogger(__name__)

_EMPLOYMENT_INT_FIELDS = ("department_id", "position_id", "site_id")
_SALARY_FIELDS = ("probation_salary", "pass_probation_salary")


def _salary(value, field: str, errors: dict) -> Decimal | None:
    if value is None or value == "":
        return None
    amount = fas._as_decimal(value)
    if amount is None or amount < 0:
        errors[field] = "must be a non-negative number"
        return None
    return amount.quantize(Decimal("0.01"))


def _validate_dates(start: date, end: date | None, probation_end: date | None) -> None:
    errors = {}
    if end is not None and end < start:
        errors["end_date"] = "must be on or after start_date"
    if probation_end is not None and probation_end <= start:
        errors["pass_probation_date"] = "must be after start_date"
    if errors:
        raise ValidationError("The given employment data was invalid.", details=errors)


# ── Employees ────────────────────────────────────────────────────────────────


def create_employee(data: dict) -> Employee:
    staff_id = (data.get("staff_id") or "").strip()
    first_name = (data.get("first_name") or "").strip()
    errors = {}
    if not staff_id:
        errors["staff_id"] = "required"
    if not first_name:
        errors["first_name"] = "required"
    if errors:
        raise ValidationError("The given employee data was invalid.", details=errors)

    exists = db.session.execute(
        select(Employee.id).where(Employee.staff_id == staff_id)
    ).scalar_one_or_none()
    if exists is not None:
        raise ConflictError(resource="Employee", message=f"Staff id '{staff_id}' is already in use")

    employee = Employee(
        staff_id=staff_id,
        first_name=first_name,
        last_name=(data.get("last_name") or "").strip() or None,
        organization=data.get("organization"),
    )
    try:
        db.session.add(employee)
        db.session.flush()
        write_audit(
            entity_type="employee",
            entity_id=employee.id,
            action="create",
            diff={"staff_id": staff_id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Employee created id=%s staff_id=%s", employee.id, staff_id)
    return employee


def employee_query(filters: dict):
    q = Employee.query
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            db.or_(
                Employee.staff_id.ilike(like),
                Employee.first_name.ilike(like),
                Employee.last_name.ilike(like),
            )
        )
    organization = filters.get("organization")
    if organization:
        q = q.filter(Employee.organization == organization)
    return q.order_by(Employee.staff_id)


# ── Employments ──────────────────────────────────────────────────────────────


def get_employment(employment_id: int, include_deleted: bool = False) -> Employment:
    employment = db.session.get(Employment, employment_id)
    if employment is None or (employment.is_deleted and not include_deleted):
        raise NotFoundError(resource="Employment", resource_id=employment_id)
    return employment


def employment_query(filters: dict):
    """Filtered query for listing. Terminated employments are hidden unless asked for."""
    q = Employment.query
    for field in ("employee_id", *_EMPLOYMENT_INT_FIELDS):
        value = fas._as_int(filters.get(field))
        if value is not None:
            q = q.filter(getattr(Employment, field) == value)
    if (filters.get("include_terminated") or "").lower() not in ("true", "1", "yes"):
        q = q.filter(Employment.deleted_at.is_(None))
    return q.order_by(Employment.id)


def create_employment(data: dict, actor: str | None = None) -> Employment:
    """Create an employment with its initial probation record and optional allocations.

    Args:
        data: Request payload. ``allocations`` (optional) is a list of
              allocation lines in the same shape the allocation endpoint takes.

    Raises:
        NotFoundError:   Unknown employee.
        ValidationError: Bad dates or salaries, or an invalid allocation set.
        CapacityError:   A requested grant item is full.
    """
    actor = actor or current_actor()
    errors = {}
    employee_id = fas._as_int(data.get("employee_id"))
    if employee_id is None:
        errors["employee_id"] = "required"
    if not data.get("start_date"):
        errors["start_date"] = "required"
    salaries = {field: _salary(data.get(field), field, errors) for field in _SALARY_FIELDS}
    if not errors and salaries["pass_probation_salary"] is None:
        errors["pass_probation_salary"] = "required"
    if errors:
        raise ValidationError("The given employment data was invalid.", details=errors)

    try:
        start = fas._parse_date(data.get("start_date"), "start_date")
        end = fas._parse_date(data.get("end_date"), "end_date")
        probation_end = fas._parse_date(data.get("pass_probation_date"), "pass_probation_date")
        _validate_dates(start, end, probation_end)

        if db.session.get(Employee, employee_id) is None:
            raise NotFoundError(resource="Employee", resource_id=employee_id)

        employment = Employment(
            employee_id=employee_id,
            start_date=start,
            end_date=end,
            pass_probation_date=probation_end,
            status=True,
            created_by=actor,
            updated_by=actor,
            **salaries,
            **{f: fas._as_int(data.get(f)) for f in _EMPLOYMENT_INT_FIELDS},
        )
        db.session.add(employment)
        db.session.flush()
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="employment.create",
            actor=actor,
            diff={"employee_id": employee_id, "start_date": start.isoformat()},
        )

        if probation_end is not None:
            probation_service.create_initial_record(employment, actor=actor)

        allocations = data.get("allocations")
        if allocations:
            fas.build_allocation_set(
                employment,
                allocations,
                start_date=fas._parse_date(data.get("allocation_start_date"), "allocation_start_date"),
                actor=actor,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Employment created id=%s employee_id=%s allocations=%s",
        employment.id, employee_id, len(employment.active_allocations),
    )
    return employment


def update_employment(employment_id: int, data: dict, actor: str | None = None) -> Employment:
    """Update descriptive fields and salaries.

    A salary change does not re-price existing allocations; the caller
    replaces the allocation set when the new figure should take effect.
    ``pass_probation_date`` moves through the probation extend operation.
    """
    actor = actor or current_actor()
    if "pass_probation_date" in data:
        raise ValidationError(
            "pass_probation_date is changed through the probation extend operation",
            details={"pass_probation_date": "read-only here"},
        )
    try:
        employment = get_employment(employment_id)
        errors = {}
        changes = {}

        for field in _SALARY_FIELDS:
            if field in data:
                value = _salary(data.get(field), field, errors)
                changes[field] = (getattr(employment, field), value)
        for field in _EMPLOYMENT_INT_FIELDS:
            if field in data:
                changes[field] = (getattr(employment, field), fas._as_int(data.get(field)))
        if "end_date" in data:
            changes["end_date"] = (employment.end_date, fas._parse_date(data.get("end_date"), "end_date"))
        if "start_date" in data:
            new_start = fas._parse_date(data.get("start_date"), "start_date")
            if new_start is None:
                errors["start_date"] = "required"
            changes["start_date"] = (employment.start_date, new_start)
        if errors:
            raise ValidationError("The given employment data was invalid.", details=errors)

        for field, (_, new) in changes.items():
            setattr(employment, field, new)
        if employment.probation_salary is None and employment.pass_probation_salary is None:
            raise ValidationError(
                "Employment must keep at least one salary",
                details={"pass_probation_salary": "required"},
            )
        _validate_dates(employment.start_date, employment.end_date, None)

        employment.updated_by = actor
        db.session.flush()
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="employment.update",
            actor=actor,
            diff={f: {"old": old, "new": new} for f, (old, new) in changes.items()},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Employment updated id=%s fields=%s", employment_id, sorted(changes))
    return employment


def terminate_employment(employment_id: int, end_date=None, actor: str | None = None) -> dict:
    """Soft-delete an employment and end its active allocations as ``terminated``."""
    actor = actor or current_actor()
    try:
        employment = fas._lock_employment(employment_id)
        end = fas._parse_date(end_date, "end_date") or date.today()
        if end < employment.start_date:
            raise ValidationError(
                "End date must not be before the employment start date",
                details={"end_date": f"must be on or after {employment.start_date.isoformat()}"},
            )
        terminated = fas.terminate_active_set(employment, end, actor)
        employment.end_date = end
        employment.status = False
        employment.deleted_at = datetime.now(timezone.utc)
        employment.updated_by = actor
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="employment.terminate",
            actor=actor,
            diff={"end_date": end.isoformat(), "terminated_allocations": terminated},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Employment terminated id=%s allocations_ended=%s", employment_id, terminated)
    return {"employment_id": employment_id, "end_date": end.isoformat(), "terminated_allocations": terminated}


def get_funding_allocations(employment_id: int) -> dict:
    employment = get_employment(employment_id, include_deleted=True)
    rows = employment.funding_allocations
    return {
        "employment_id": employment.id,
        "active": [r.to_dict() for r in rows if r.is_active],
        "history": [r.to_dict() for r in rows if not r.is_active],
    }
