"""
Probation transition service.

Owns every write to the probation record ledger. Each transition
deactivates the current active ProbationRecord and inserts the next one, so
an employment always has exactly one active record.

Follow-on effects on funding allocations are explicit:
  - passed: the active allocation set is re-priced at pass_probation_salary
    (ended the day before the effective date, re-inserted from it), unless
    PROBATION_AUTO_RECALCULATE is off or the caller opts out.
  - failed: the active allocation set is ended with status ``terminated``.
  - extension: allocations are left untouched.
"""

from __future__ import annotations

import logging
from datetime import date

from flask import current_app
from sqlalchemy import select

from hrms.core.exceptions import ConflictError, NotFoundError, ValidationError
from hrms.models import db
from hrms.models.audit import current_actor, write_audit
from hrms.models.employment import Employment
from hrms.models.probation import (
    EVENT_EXTENSION,
    EVENT_FAILED,
    EVENT_INITIAL,
    EVENT_PASSED,
    ONGOING_EVENTS,
    ProbationRecord,
    validate_probation_transition,
)
from hrms.services import funding_allocation_service as fas
from hrms.services.salary_resolver import active_probation_record

logger = logging.getLogger(__name__)


def _get_employment(employment_id: int, lock: bool = False) -> Employment:
    stmt = select(Employment).where(Employment.id == employment_id)
    if lock:
        stmt = stmt.with_for_update()
    employment = db.session.execute(stmt).scalar_one_or_none()
    if employment is None or employment.is_deleted:
        raise NotFoundError(resource="Employment", resource_id=employment_id)
    return employment


def _transition(
    employment: Employment,
    new_event: str,
    *,
    effective_date: date,
    actor: str,
    probation_end_date: date | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> ProbationRecord:
    """Deactivate the active record and insert ``new_event`` as the active one."""
    current = active_probation_record(employment.id)
    if current is None:
        raise ValidationError(
            f"No active probation record found for employment {employment.id}",
            details={"employment_id": employment.id},
        )
    if not validate_probation_transition(current.event_type, new_event):
        raise ValidationError(
            f"Cannot change probation from '{current.event_type}' to '{new_event}'",
            details={"event_type": f"{current.event_type} -> {new_event} is not allowed"},
        )

    current.is_active = False
    db.session.flush()

    record = ProbationRecord(
        employment_id=employment.id,
        employee_id=employment.employee_id,
        event_type=new_event,
        is_active=True,
        effective_date=effective_date,
        probation_start_date=current.probation_start_date,
        probation_end_date=probation_end_date or current.probation_end_date,
        previous_end_date=current.probation_end_date,
        extension_number=current.extension_number + (1 if new_event == EVENT_EXTENSION else 0),
        decision_reason=reason,
        notes=notes,
        created_by=actor,
    )
    db.session.add(record)
    db.session.flush()
    write_audit(
        entity_type="probation_record",
        entity_id=record.id,
        action=f"probation.{new_event}",
        actor=actor,
        diff={
            "employment_id": employment.id,
            "event_type": {"old": current.event_type, "new": new_event},
            "effective_date": effective_date.isoformat(),
        },
    )
    return record


def create_initial_record(employment: Employment, actor: str | None = None) -> ProbationRecord:
    """Insert the first, active ``initial`` record. Does not commit.

    Raises:
        ValidationError: The employment has no pass_probation_date.
        ConflictError:   The employment already has an active record.
    """
    actor = actor or current_actor()
    if employment.pass_probation_date is None:
        raise ValidationError(
            "Employment has no probation end date",
            details={"pass_probation_date": "required"},
        )
    if active_probation_record(employment.id) is not None:
        raise ConflictError(
            resource="ProbationRecord",
            message=f"Employment {employment.id} already has an active probation record",
        )

    record = ProbationRecord(
        employment_id=employment.id,
        employee_id=employment.employee_id,
        event_type=EVENT_INITIAL,
        is_active=True,
        effective_date=employment.start_date,
        probation_start_date=employment.start_date,
        probation_end_date=employment.pass_probation_date,
        extension_number=0,
        created_by=actor,
    )
    db.session.add(record)
    db.session.flush()
    write_audit(
        entity_type="probation_record",
        entity_id=record.id,
        action="probation.initial",
        actor=actor,
        diff={
            "employment_id": employment.id,
            "probation_end_date": employment.pass_probation_date.isoformat(),
        },
    )
    logger.info("Initial probation record created employment_id=%s record_id=%s", employment.id, record.id)
    return record


def mark_extension(
    employment_id: int,
    new_end_date: date,
    reason: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> dict:
    """Extend probation to ``new_end_date`` (must be later than the current end)."""
    actor = actor or current_actor()
    try:
        employment = _get_employment(employment_id, lock=True)
        current_end = employment.pass_probation_date
        if current_end is not None and new_end_date <= current_end:
            raise ValidationError(
                "New probation end date must be after the current one",
                details={"pass_probation_date": f"must be after {current_end.isoformat()}"},
            )
        if new_end_date <= employment.start_date:
            raise ValidationError(
                "Probation end date must be after the employment start date",
                details={"pass_probation_date": f"must be after {employment.start_date.isoformat()}"},
            )

        record = _transition(
            employment,
            EVENT_EXTENSION,
            effective_date=date.today(),
            actor=actor,
            probation_end_date=new_end_date,
            reason=reason or (
                f"Probation date changed from {current_end.isoformat() if current_end else '-'} "
                f"to {new_end_date.isoformat()}"
            ),
            notes=notes,
        )
        employment.pass_probation_date = new_end_date
        employment.updated_by = actor
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Probation extended employment_id=%s extension_number=%s new_end=%s",
        employment_id, record.extension_number, new_end_date,
    )
    return {"record": record.to_dict(), "employment": employment.to_dict()}


def mark_passed(
    employment_id: int,
    effective_date: date | None = None,
    notes: str | None = None,
    recalculate: bool | None = None,
    actor: str | None = None,
) -> dict:
    """Record that probation was passed and, by default, re-price allocations."""
    actor = actor or current_actor()
    effective = effective_date or date.today()
    if recalculate is None:
        recalculate = bool(current_app.config.get("PROBATION_AUTO_RECALCULATE", True))

    try:
        employment = _get_employment(employment_id, lock=True)
        record = _transition(
            employment, EVENT_PASSED, effective_date=effective, actor=actor, notes=notes,
        )
        repriced = {"ended": [], "created": [], "updated": []}
        if recalculate:
            repriced = fas.reprice_active_set(employment, effective, actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Probation passed employment_id=%s record_id=%s repriced=%s",
        employment_id, record.id, repriced,
    )
    return {
        "record": record.to_dict(),
        "allocations": repriced,
        "recalculated": recalculate,
    }


def mark_failed(
    employment_id: int,
    effective_date: date | None = None,
    reason: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> dict:
    """Record a failed probation and end the employment's active allocations."""
    actor = actor or current_actor()
    effective = effective_date or date.today()
    try:
        employment = _get_employment(employment_id, lock=True)
        record = _transition(
            employment,
            EVENT_FAILED,
            effective_date=effective,
            actor=actor,
            reason=reason or "Probation marked as failed",
            notes=notes,
        )
        terminated = fas.terminate_active_set(employment, effective, actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Probation failed employment_id=%s record_id=%s terminated=%s",
        employment_id, record.id, terminated,
    )
    return {"record": record.to_dict(), "terminated_allocations": terminated}


# ── Queries ──────────────────────────────────────────────────────────────────


def can_extend(employment: Employment) -> bool:
    record = active_probation_record(employment.id)
    return record is not None and record.is_ongoing


def get_history(employment_id: int) -> dict:
    employment = _get_employment(employment_id)
    records = db.session.execute(
        select(ProbationRecord)
        .where(ProbationRecord.employment_id == employment.id)
        .order_by(ProbationRecord.id)
    ).scalars().all()
    active = next((r for r in records if r.is_active), None)

    current_status = active.event_type if active else None
    if current_status in ONGOING_EVENTS:
        current_status = "ongoing"
    initial = next((r for r in records if r.event_type == EVENT_INITIAL), None)

    return {
        "employment_id": employment.id,
        "total_extensions": sum(1 for r in records if r.event_type == EVENT_EXTENSION),
        "current_extension_number": active.extension_number if active else 0,
        "probation_start_date": (
            records[0].probation_start_date.isoformat()
            if records and records[0].probation_start_date else None
        ),
        "initial_end_date": (
            initial.probation_end_date.isoformat()
            if initial and initial.probation_end_date else None
        ),
        "current_end_date": (
            employment.pass_probation_date.isoformat() if employment.pass_probation_date else None
        ),
        "current_status": current_status,
        "current_event_type": active.event_type if active else None,
        "can_extend": active is not None and active.is_ongoing,
        "records": [r.to_dict() for r in records],
    }


def get_statistics() -> dict:
    active = db.session.execute(
        select(ProbationRecord).where(ProbationRecord.is_active.is_(True))
    ).scalars().all()
    return {
        "total_ongoing": sum(1 for r in active if r.is_ongoing),
        "total_extended": sum(1 for r in active if r.event_type == EVENT_EXTENSION),
        "total_passed": sum(1 for r in active if r.event_type == EVENT_PASSED),
        "total_failed": sum(1 for r in active if r.event_type == EVENT_FAILED),
        "employees_on_extension": sum(1 for r in active if r.extension_number > 0),
        "employees_on_2nd_extension": sum(1 for r in active if r.extension_number >= 2),
    }


# ── Daily job ────────────────────────────────────────────────────────────────


def process_due_completions(as_of: date | None = None) -> dict:
    """Mark probation passed for every ongoing employment whose end date is ``as_of``.

    Each employment is committed on its own; a failure is logged and counted
    and does not stop the run.
    """
    as_of = as_of or date.today()
    due = db.session.execute(
        select(Employment.id)
        .join(ProbationRecord, ProbationRecord.employment_id == Employment.id)
        .where(
            Employment.pass_probation_date == as_of,
            Employment.deleted_at.is_(None),
            ProbationRecord.is_active.is_(True),
            ProbationRecord.event_type.in_(sorted(ONGOING_EVENTS)),
        )
        .order_by(Employment.id)
    ).scalars().all()

    results = {"processed": 0, "failed": 0, "details": []}
    for employment_id in due:
        try:
            outcome = mark_passed(
                employment_id,
                effective_date=as_of,
                notes=f"Probation completed on {as_of.isoformat()}",
                actor="system",
            )
        except (ValidationError, ConflictError, NotFoundError) as exc:
            results["failed"] += 1
            results["details"].append({"employment_id": employment_id, "success": False, "message": str(exc)})
            logger.warning("Probation completion failed employment_id=%s error=%s", employment_id, exc)
            continue
        except Exception as exc:
            results["failed"] += 1
            results["details"].append({"employment_id": employment_id, "success": False, "message": str(exc)})
            logger.exception("Probation completion crashed employment_id=%s", employment_id)
            continue
        results["processed"] += 1
        results["details"].append({
            "employment_id": employment_id,
            "success": True,
            "allocations": outcome["allocations"],
        })

    logger.info(
        "Probation completions as_of=%s processed=%s failed=%s",
        as_of, results["processed"], results["failed"],
    )
    return results
