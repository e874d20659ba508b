"""
Funding allocation engine: service layer.

Validates and persists EmployeeFundingAllocation sets. A set is the group of
rows sharing an employment and a start date; the fte fractions of an
employment's active rows always sum to 1.0.

Rules:
  - Callers submit fte as a 0-100 percentage; rows store the fraction.
    The 100% rule is checked on the submitted values, then the fractions are
    apportioned to 4 dp so the stored set sums to exactly 1.
  - Amounts are priced through ``salary_resolver.resolve_salary`` only.
  - Capacity check and insert run in one transaction with the employment
    row and every referenced GrantItem row locked (SELECT … FOR UPDATE).
  - A fresh set for an employment that already has one is a conflict;
    re-splitting goes through ``replace_allocations``.
  - Rows are ended (``end_date``), never re-split in place.
  - db.session.commit() happens only in the public functions of this module
    and its sibling services; audit rows are written explicitly in the same
    transaction.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import select

from hrms.core.exceptions import (
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from hrms.models import db
from hrms.models.audit import current_actor, write_audit
from hrms.models.employment import Employee, Employment
from hrms.models.funding import (
    ALLOCATION_GRANT,
    ALLOCATION_STATUSES,
    ALLOCATION_TYPES,
    SALARY_TYPES,
    STATUS_ACTIVE,
    STATUS_HISTORICAL,
    STATUS_INACTIVE,
    STATUS_TERMINATED,
    EmployeeFundingAllocation,
    FundingSource,
    GrantItemSource,
    OrgFundedSource,
)
from hrms.models.grant import Grant, GrantItem
from hrms.services.grant_capacity import count_active_allocations, get_capacity
from hrms.services.salary_resolver import SalaryContext, resolve_salary

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")
_ONE = Decimal("1")
_FTE_UNIT = Decimal("0.0001")
_MIN_PCT = Decimal("0.01")
DEFAULT_FTE_EPSILON = Decimal("0.000001")


@dataclass(frozen=True)
class AllocationLine:
    """One validated line of a submitted allocation set."""

    index: int
    source: FundingSource
    fte: Decimal  # fraction as submitted, 0 < fte <= 1


# ── Parsing & validation ─────────────────────────────────────────────────────


def _as_int(value):
    if isinstance(value, bool) or value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_decimal(value):
    if isinstance(value, bool) or value is None or value == "":
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _parse_date(value, field: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(
            f"{field} must be an ISO date (YYYY-MM-DD)", details={field: "invalid date"},
        ) from None


def _format_pct(value: Decimal) -> str:
    """Render a percentage without trailing zeros: 80 → '80', 99.5 → '99.5'."""
    return f"{value.quantize(Decimal('0.000001')).normalize():f}"


def _to_fraction(pct: Decimal) -> Decimal:
    """Percentage → unrounded fraction."""
    return pct / _HUNDRED


def apportion_fte(fractions: list[Decimal]) -> list[Decimal]:
    """Round fractions to the stored precision so they still sum to exactly 1.

    Each value is truncated to 4 dp and the missing units go to the values
    with the largest truncated remainders (ties to the earliest line).
    The input must already sum to 1 within the configured tolerance.
    """
    floors = [f.quantize(_FTE_UNIT, rounding=ROUND_DOWN) for f in fractions]
    missing = ((_ONE - sum(floors, Decimal("0"))) / _FTE_UNIT).to_integral_value(rounding=ROUND_HALF_UP)
    units = max(0, min(int(missing), len(fractions)))
    by_remainder = sorted(
        range(len(fractions)), key=lambda i: (-(fractions[i] - floors[i]), i),
    )
    for i in by_remainder[:units]:
        floors[i] += _FTE_UNIT
    return floors


def _stored_lines(lines: list[AllocationLine]) -> list[AllocationLine]:
    stored = apportion_fte([line.fte for line in lines])
    return [
        AllocationLine(index=line.index, source=line.source, fte=fte)
        for line, fte in zip(lines, stored)
    ]


def _fte_epsilon() -> Decimal:
    return Decimal(str(current_app.config.get("ALLOCATION_FTE_EPSILON", DEFAULT_FTE_EPSILON)))


def parse_allocation_lines(raw) -> list[AllocationLine]:
    """Turn request JSON into AllocationLine objects.

    Every malformed line is reported at once under ``allocations.<i>.<field>``.

    Raises:
        ValidationError: Empty list or any malformed line.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError(
            "At least one allocation is required",
            details={"allocations": "must be a non-empty list"},
        )

    errors: dict[str, str] = {}
    lines: list[AllocationLine] = []
    for i, item in enumerate(raw):
        prefix = f"allocations.{i}"
        if not isinstance(item, dict):
            errors[prefix] = "must be an object"
            continue

        allocation_type = item.get("allocation_type")
        if allocation_type not in ALLOCATION_TYPES:
            errors[f"{prefix}.allocation_type"] = (
                f"must be one of: {', '.join(sorted(ALLOCATION_TYPES))}"
            )
            continue

        source = None
        if allocation_type == ALLOCATION_GRANT:
            grant_item_id = _as_int(item.get("grant_item_id"))
            if grant_item_id is None:
                errors[f"{prefix}.grant_item_id"] = "is required for grant allocations"
            else:
                source = GrantItemSource(grant_item_id=grant_item_id)
        else:
            grant_id = _as_int(item.get("grant_id"))
            if grant_id is None:
                errors[f"{prefix}.grant_id"] = "is required for org_funded allocations"
            else:
                source = OrgFundedSource(grant_id=grant_id)

        pct = _as_decimal(item.get("fte"))
        if pct is None:
            errors[f"{prefix}.fte"] = "must be a number between 0 and 100"
        elif pct <= 0 or pct > _HUNDRED:
            errors[f"{prefix}.fte"] = "must be greater than 0 and at most 100"
        elif pct < _MIN_PCT:
            errors[f"{prefix}.fte"] = "must be at least 0.01"

        if source is not None and f"{prefix}.fte" not in errors:
            lines.append(AllocationLine(index=i, source=source, fte=_to_fraction(pct)))

    if errors:
        raise ValidationError("The given allocation data was invalid.", details=errors)
    return lines


def validate_total_effort(lines: list[AllocationLine]) -> None:
    """The fte fractions of a set must sum to 1.0 (± ALLOCATION_FTE_EPSILON).

    Raises:
        ValidationError: Naming the actual total as a percentage.
    """
    total = sum((line.fte for line in lines), Decimal("0"))
    if abs(total - _ONE) > _fte_epsilon():
        pct = _format_pct(total * _HUNDRED)
        raise ValidationError(
            f"Total effort of all allocations must equal exactly 100%. Current total: {pct}%",
            details={"allocations": f"fte total is {pct}%"},
        )


# ── Locking & reference resolution ───────────────────────────────────────────


def _lock_employment(employment_id: int) -> Employment:
    employment = db.session.execute(
        select(Employment).where(Employment.id == employment_id).with_for_update()
    ).scalar_one_or_none()
    if employment is None or employment.is_deleted:
        raise NotFoundError(resource="Employment", resource_id=employment_id)
    return employment


def _resolve_references(lines: list[AllocationLine]) -> dict[int, GrantItem]:
    """Lock referenced GrantItems and check every referenced Grant exists.

    Returns the locked GrantItems keyed by id.
    """
    item_ids = sorted({
        line.source.grant_item_id for line in lines if isinstance(line.source, GrantItemSource)
    })
    grant_ids = sorted({
        line.source.grant_id for line in lines if isinstance(line.source, OrgFundedSource)
    })

    items: dict[int, GrantItem] = {}
    if item_ids:
        rows = db.session.execute(
            select(GrantItem).where(GrantItem.id.in_(item_ids)).order_by(GrantItem.id).with_for_update()
        ).scalars().all()
        items = {row.id: row for row in rows}

    found_grants: set[int] = set()
    if grant_ids:
        found_grants = set(db.session.execute(
            select(Grant.id).where(Grant.id.in_(grant_ids))
        ).scalars().all())

    errors = {}
    for line in lines:
        if isinstance(line.source, GrantItemSource) and line.source.grant_item_id not in items:
            errors[f"allocations.{line.index}.grant_item_id"] = "Grant item not found"
        elif isinstance(line.source, OrgFundedSource) and line.source.grant_id not in found_grants:
            errors[f"allocations.{line.index}.grant_id"] = "Grant not found"
    if errors:
        raise ValidationError("The given allocation data was invalid.", details=errors)
    return items


def _check_capacity(
    lines: list[AllocationLine],
    items: dict[int, GrantItem],
    exclude_employment_id: int | None,
) -> None:
    """Each grant line consumes one slot of its GrantItem.

    Raises:
        CapacityError: Accepting the set would exceed grant_position_number.
    """
    requested = Counter(
        line.source.grant_item_id for line in lines if isinstance(line.source, GrantItemSource)
    )
    for item_id, wanted in sorted(requested.items()):
        item = items[item_id]
        active = count_active_allocations(item_id, exclude_employment_id=exclude_employment_id)
        if active + wanted > item.grant_position_number:
            logger.info(
                "Capacity rejected grant_item_id=%s capacity=%s active=%s requested=%s",
                item_id, item.grant_position_number, active, wanted,
            )
            raise CapacityError(
                grant_item_id=item.id,
                grant_position=item.grant_position,
                capacity=item.grant_position_number,
                active=active,
                requested=wanted,
            )


def _active_rows(employment_id: int) -> list[EmployeeFundingAllocation]:
    return db.session.execute(
        select(EmployeeFundingAllocation)
        .where(
            EmployeeFundingAllocation.employment_id == employment_id,
            EmployeeFundingAllocation.end_date.is_(None),
        )
        .order_by(EmployeeFundingAllocation.id)
    ).scalars().all()


def _check_start_date(employment: Employment, start: date) -> None:
    if start < employment.start_date:
        raise ValidationError(
            "Allocation start date cannot be before the employment start date",
            details={"start_date": f"must be on or after {employment.start_date.isoformat()}"},
        )
    if employment.end_date is not None and start > employment.end_date:
        raise ValidationError(
            "Allocation start date cannot be after the employment end date",
            details={"start_date": f"must be on or before {employment.end_date.isoformat()}"},
        )


def _end_rows(rows, end_date: date, status: str, actor: str) -> list[int]:
    ended = []
    for row in rows:
        row.end_date = max(row.start_date, end_date)
        row.status = status
        row.updated_by = actor
        ended.append(row.id)
    return ended


def _insert_set(
    employment: Employment,
    lines: list[AllocationLine],
    salary: SalaryContext,
    start_date: date,
    actor: str,
) -> list[EmployeeFundingAllocation]:
    created = []
    for line in lines:
        row = EmployeeFundingAllocation(
            employee_id=employment.employee_id,
            employment_id=employment.id,
            fte=line.fte,
            allocated_amount=salary.amount_for(line.fte),
            salary_type=salary.salary_type,
            start_date=start_date,
            end_date=None,
            status=STATUS_ACTIVE,
            created_by=actor,
            updated_by=actor,
        )
        row.source = line.source
        db.session.add(row)
        created.append(row)
    db.session.flush()
    return created


def build_allocation_set(
    employment: Employment,
    raw_lines,
    start_date: date | None = None,
    actor: str | None = None,
) -> list[EmployeeFundingAllocation]:
    """Validate and insert a first allocation set without committing.

    Used by ``create_allocations`` and by employment creation, which needs
    the employment, its probation record and its allocations in one commit.
    The caller must hold the employment row lock (or have just inserted it).
    """
    actor = actor or current_actor()
    lines = parse_allocation_lines(raw_lines)
    validate_total_effort(lines)
    lines = _stored_lines(lines)

    if _active_rows(employment.id):
        raise ConflictError(
            resource="EmployeeFundingAllocation",
            message=(
                f"Employment {employment.id} already has an active allocation set; "
                "use the replace operation to change its funding"
            ),
        )

    start = start_date or employment.start_date
    _check_start_date(employment, start)

    items = _resolve_references(lines)
    _check_capacity(lines, items, exclude_employment_id=employment.id)
    salary = resolve_salary(employment, as_of=start)

    rows = _insert_set(employment, lines, salary, start, actor)
    write_audit(
        entity_type="employment",
        entity_id=employment.id,
        action="allocation.create_set",
        actor=actor,
        diff={
            "created": [r.id for r in rows],
            "salary_type": salary.salary_type,
            "start_date": start.isoformat(),
        },
    )
    return rows


# ── Public operations ────────────────────────────────────────────────────────


def create_allocations(
    employment_id: int,
    raw_lines,
    start_date=None,
    actor: str | None = None,
) -> list[dict]:
    """Create the first active allocation set for an employment.

    Raises:
        NotFoundError:   Unknown or terminated employment.
        ValidationError: Malformed lines, total ≠ 100%, unknown references.
        CapacityError:   A grant item is full.
        ConflictError:   The employment already has an active set.
    """
    try:
        start = _parse_date(start_date, "start_date")
        employment = _lock_employment(employment_id)
        rows = build_allocation_set(employment, raw_lines, start_date=start, actor=actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Allocation set created employment_id=%s rows=%s", employment_id, [r.id for r in rows],
    )
    return [r.to_dict() for r in rows]


def replace_allocations(
    employment_id: int,
    raw_lines,
    start_date=None,
    actor: str | None = None,
) -> dict:
    """End the employment's active set and insert a new one.

    Old rows get ``end_date = start`` and status ``historical``; new rows
    start on ``start`` (default: today, or the employment start when that is
    later). The employment's own old rows do not count against capacity.

    Returns:
        ``{"ended": [ids], "allocations": [row dicts]}``
    """
    actor = actor or current_actor()
    try:
        start = _parse_date(start_date, "start_date")
        lines = parse_allocation_lines(raw_lines)
        validate_total_effort(lines)
        lines = _stored_lines(lines)

        employment = _lock_employment(employment_id)
        start = start or max(date.today(), employment.start_date)
        _check_start_date(employment, start)

        items = _resolve_references(lines)
        _check_capacity(lines, items, exclude_employment_id=employment.id)
        salary = resolve_salary(employment, as_of=start)

        ended = _end_rows(_active_rows(employment.id), start, STATUS_HISTORICAL, actor)
        db.session.flush()
        rows = _insert_set(employment, lines, salary, start, actor)
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="allocation.replace_set",
            actor=actor,
            diff={
                "ended": ended,
                "created": [r.id for r in rows],
                "salary_type": salary.salary_type,
                "start_date": start.isoformat(),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Allocation set replaced employment_id=%s ended=%s created=%s",
        employment_id, ended, [r.id for r in rows],
    )
    return {"ended": ended, "allocations": [r.to_dict() for r in rows]}


def update_allocation(allocation_id: int, data: dict, actor: str | None = None) -> dict:
    """Correct the fte or start date of one active row.

    The 100% invariant is re-validated across the row and its active
    siblings, so this only succeeds when the corrected set sums to 100%.
    An fte change re-prices the row through the salary resolver.
    """
    actor = actor or current_actor()
    try:
        allocation = db.session.get(EmployeeFundingAllocation, allocation_id)
        if allocation is None:
            raise NotFoundError(resource="EmployeeFundingAllocation", resource_id=allocation_id)
        employment = _lock_employment(allocation.employment_id)
        if not allocation.is_active:
            raise ValidationError(
                "Only active allocations can be corrected",
                details={"end_date": allocation.end_date.isoformat()},
            )
        if "fte" not in data and "start_date" not in data:
            raise ValidationError(
                "Nothing to update: only fte and start_date can be corrected",
                details={"fields": "fte | start_date"},
            )

        old = {"fte": str(allocation.fte), "start_date": allocation.start_date.isoformat()}

        if "fte" in data:
            pct = _as_decimal(data.get("fte"))
            if pct is None or pct > _HUNDRED or pct < _MIN_PCT:
                raise ValidationError(
                    "fte must be at least 0.01 and at most 100",
                    details={"fte": "must be at least 0.01 and at most 100"},
                )
            siblings = [r for r in _active_rows(employment.id) if r.id != allocation.id]
            sibling_total = sum((Decimal(r.fte) for r in siblings), Decimal("0"))
            total = sibling_total + _to_fraction(pct)
            if abs(total - _ONE) > _fte_epsilon():
                pct_total = _format_pct(total * _HUNDRED)
                raise ValidationError(
                    "Total effort of all allocations must equal exactly 100%. "
                    f"Current total: {pct_total}%",
                    details={"fte": f"active allocations would total {pct_total}%"},
                )
            # siblings are stored at 4 dp, so the complement keeps the set at exactly 1
            new_fte = _ONE - sibling_total
            salary = resolve_salary(employment, as_of=allocation.start_date)
            allocation.fte = new_fte
            allocation.allocated_amount = salary.amount_for(new_fte)
            allocation.salary_type = salary.salary_type

        if "start_date" in data:
            new_start = _parse_date(data.get("start_date"), "start_date")
            if new_start is None:
                raise ValidationError("start_date is required", details={"start_date": "required"})
            _check_start_date(employment, new_start)
            allocation.start_date = new_start

        allocation.updated_by = actor
        db.session.flush()
        write_audit(
            entity_type="funding_allocation",
            entity_id=allocation.id,
            action="allocation.correct",
            actor=actor,
            diff={
                "fte": {"old": old["fte"], "new": str(allocation.fte)},
                "start_date": {"old": old["start_date"], "new": allocation.start_date.isoformat()},
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Allocation corrected allocation_id=%s", allocation_id)
    return allocation.to_dict()


def delete_allocation(allocation_id: int, actor: str | None = None) -> None:
    """Delete an ended row. Active rows must be ended first to keep payroll history."""
    actor = actor or current_actor()
    try:
        allocation = db.session.get(EmployeeFundingAllocation, allocation_id)
        if allocation is None:
            raise NotFoundError(resource="EmployeeFundingAllocation", resource_id=allocation_id)
        if allocation.is_active:
            raise ValidationError(
                "Active allocations cannot be deleted; end them with replace or bulk-deactivate",
                details={"end_date": "must be set before deletion"},
            )
        write_audit(
            entity_type="funding_allocation",
            entity_id=allocation.id,
            action="allocation.delete",
            actor=actor,
            diff={"snapshot": allocation.to_dict()},
        )
        db.session.delete(allocation)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Allocation deleted allocation_id=%s", allocation_id)


def bulk_deactivate(ids, end_date=None, actor: str | None = None) -> dict:
    """Set ``end_date`` (default today) on each listed active allocation.

    Returns:
        ``{"deactivated": [ids], "already_ended": [ids], "not_found": [ids]}``
    """
    actor = actor or current_actor()
    if not isinstance(ids, list) or not ids:
        raise ValidationError("allocation_ids must be a non-empty list", details={"allocation_ids": "required"})
    parsed = [_as_int(i) for i in ids]
    if any(i is None for i in parsed):
        raise ValidationError("allocation_ids must contain integers", details={"allocation_ids": "integers only"})

    try:
        end = _parse_date(end_date, "end_date") or date.today()
        rows = db.session.execute(
            select(EmployeeFundingAllocation)
            .where(EmployeeFundingAllocation.id.in_(parsed))
            .order_by(EmployeeFundingAllocation.id)
            .with_for_update()
        ).scalars().all()
        found = {r.id for r in rows}

        errors = {
            f"allocation_ids.{r.id}": "end date cannot be before the allocation start date"
            for r in rows if r.is_active and end < r.start_date
        }
        if errors:
            raise ValidationError("End date must not be before the start date", details=errors)

        active = [r for r in rows if r.is_active]
        deactivated = _end_rows(active, end, STATUS_INACTIVE, actor)
        if deactivated:
            write_audit(
                entity_type="funding_allocation",
                entity_id=deactivated[0],
                action="allocation.deactivate",
                actor=actor,
                diff={"deactivated": deactivated, "end_date": end.isoformat()},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    result = {
        "deactivated": deactivated,
        "already_ended": sorted(r.id for r in rows if r.id not in deactivated),
        "not_found": sorted(set(parsed) - found),
    }
    logger.info("Bulk deactivate result=%s", result)
    return result


# ── Probation follow-ons (called by probation_service, no commit) ───────────


def reprice_active_set(employment: Employment, effective_date: date, actor: str) -> dict:
    """Re-derive amounts after a probation state change.

    The current set is ended the day before ``effective_date`` (status
    ``historical``) and re-inserted with the same sources and fte split,
    priced at the salary the resolver now returns. When ``effective_date`` is
    on or before the set's start there is no earlier day to end the old rows
    on, so they are re-priced in place instead.
    """
    old_rows = _active_rows(employment.id)
    if not old_rows:
        return {"ended": [], "created": [], "updated": []}

    salary = resolve_salary(employment, as_of=effective_date)
    if effective_date <= max(row.start_date for row in old_rows):
        for row in old_rows:
            row.allocated_amount = salary.amount_for(Decimal(row.fte))
            row.salary_type = salary.salary_type
            row.updated_by = actor
        db.session.flush()
        updated = [row.id for row in old_rows]
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="allocation.reprice",
            actor=actor,
            diff={
                "updated": updated,
                "salary_type": salary.salary_type,
                "effective_date": effective_date.isoformat(),
            },
        )
        return {"ended": [], "created": [], "updated": updated}

    lines = [
        AllocationLine(index=i, source=row.source, fte=Decimal(row.fte))
        for i, row in enumerate(old_rows)
    ]
    ended = _end_rows(old_rows, effective_date - timedelta(days=1), STATUS_HISTORICAL, actor)
    db.session.flush()
    rows = _insert_set(employment, lines, salary, effective_date, actor)
    write_audit(
        entity_type="employment",
        entity_id=employment.id,
        action="allocation.reprice",
        actor=actor,
        diff={
            "ended": ended,
            "created": [r.id for r in rows],
            "salary_type": salary.salary_type,
            "effective_date": effective_date.isoformat(),
        },
    )
    return {"ended": ended, "created": [r.id for r in rows], "updated": []}


def terminate_active_set(employment: Employment, end_date: date, actor: str) -> list[int]:
    """End every active row of the employment with status ``terminated``."""
    ended = _end_rows(_active_rows(employment.id), end_date, STATUS_TERMINATED, actor)
    if ended:
        write_audit(
            entity_type="employment",
            entity_id=employment.id,
            action="allocation.terminate",
            actor=actor,
            diff={"terminated": ended, "end_date": end_date.isoformat()},
        )
    return ended


# ── Queries ──────────────────────────────────────────────────────────────────


def get_allocation(allocation_id: int) -> EmployeeFundingAllocation:
    allocation = db.session.get(EmployeeFundingAllocation, allocation_id)
    if allocation is None:
        raise NotFoundError(resource="EmployeeFundingAllocation", resource_id=allocation_id)
    return allocation


def allocation_query(filters: dict):
    """Build a filtered, ordered query for listing allocations.

    Supported filters: employee_id, employment_id, grant_item_id, grant_id,
    allocation_type, salary_type, status, active ("true"/"false").
    """
    q = EmployeeFundingAllocation.query
    for field in ("employee_id", "employment_id", "grant_item_id", "grant_id"):
        value = _as_int(filters.get(field))
        if value is not None:
            q = q.filter(getattr(EmployeeFundingAllocation, field) == value)
    allocation_type = filters.get("allocation_type")
    if allocation_type in ALLOCATION_TYPES:
        q = q.filter(EmployeeFundingAllocation.allocation_type == allocation_type)
    salary_type = filters.get("salary_type")
    if salary_type in SALARY_TYPES:
        q = q.filter(EmployeeFundingAllocation.salary_type == salary_type)
    status = filters.get("status")
    if status in ALLOCATION_STATUSES:
        q = q.filter(EmployeeFundingAllocation.status == status)
    active = (filters.get("active") or "").lower()
    if active in ("true", "1", "yes"):
        q = q.filter(EmployeeFundingAllocation.end_date.is_(None))
    elif active in ("false", "0", "no"):
        q = q.filter(EmployeeFundingAllocation.end_date.is_not(None))
    return q.order_by(EmployeeFundingAllocation.employment_id, EmployeeFundingAllocation.id)


def get_employee_allocations(employee_id: int, include_history: bool = False) -> dict:
    """Allocations of an employee with a funding summary over the active rows."""
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(resource="Employee", resource_id=employee_id)

    stmt = select(EmployeeFundingAllocation).where(EmployeeFundingAllocation.employee_id == employee_id)
    if not include_history:
        stmt = stmt.where(EmployeeFundingAllocation.end_date.is_(None))
    rows = db.session.execute(stmt.order_by(EmployeeFundingAllocation.id)).scalars().all()

    active = [r for r in rows if r.is_active]
    by_type = Counter(r.allocation_type for r in active)
    total_effort = sum((Decimal(r.fte) for r in active), Decimal("0")) * _HUNDRED
    return {
        "employee": employee.to_dict(),
        "allocations": [r.to_dict() for r in rows],
        "summary": {
            "total_allocations": len(active),
            "total_effort": float(total_effort),
            "by_type": dict(by_type),
            "funding_sources": [
                {
                    "id": r.id,
                    "type": r.allocation_type,
                    "grant": r.grant.name if r.grant else None,
                    "position": r.grant_item.grant_position if r.grant_item else None,
                    "effort_percentage": float(Decimal(r.fte) * _HUNDRED),
                    "allocated_amount": float(r.allocated_amount),
                }
                for r in active
            ],
        },
    }


def resolve_employment_for_employee(employee_id: int, employment_id=None) -> Employment:
    """Pick the employment whose funding a per-employee request targets.

    With an explicit ``employment_id`` it must belong to the employee;
    otherwise the employee must have exactly one live employment.
    """
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(resource="Employee", resource_id=employee_id)

    live = [e for e in employee.employments if not e.is_deleted]
    if employment_id is not None:
        wanted = _as_int(employment_id)
        for e in live:
            if e.id == wanted:
                return e
        raise NotFoundError(resource="Employment", resource_id=employment_id)
    if not live:
        raise NotFoundError(resource="Employment", resource_id=None)
    if len(live) > 1:
        raise ValidationError(
            "Employee has several employments; employment_id is required",
            details={"employment_id": "required"},
        )
    return live[0]


def grant_structure() -> list[dict]:
    """Grants with their position lines and live slot counts, for allocation UIs."""
    grants = db.session.execute(select(Grant).order_by(Grant.code)).scalars().all()
    out = []
    for grant in grants:
        d = grant.to_dict()
        d["grant_items"] = []
        for item in grant.items:
            active = count_active_allocations(item.id)
            entry = item.to_dict()
            entry["active_allocations"] = active
            entry["available_slots"] = max(item.grant_position_number - active, 0)
            d["grant_items"].append(entry)
        out.append(d)
    return out


def allocations_by_grant_item(grant_item_id: int, active_only: bool = False) -> dict:
    capacity = get_capacity(grant_item_id)
    stmt = select(EmployeeFundingAllocation).where(
        EmployeeFundingAllocation.grant_item_id == grant_item_id,
    )
    if active_only:
        stmt = stmt.where(EmployeeFundingAllocation.end_date.is_(None))
    rows = db.session.execute(stmt.order_by(EmployeeFundingAllocation.id)).scalars().all()
    return {
        "grant_item": db.session.get(GrantItem, grant_item_id).to_dict(),
        "allocations": [r.to_dict() for r in rows],
        "total_allocations": capacity["total_allocations"],
        "active_allocations": capacity["active_allocations"],
        "available_slots": capacity["available_slots"],
    }
