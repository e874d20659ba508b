"""
Probation-aware salary resolver.

The single place where the allocation engine decides which of an
employment's two salary figures an allocation is priced against. Probation
state is taken from the employment's active ProbationRecord only.

    initial / extension / failed  -> probation_salary
    passed                        -> pass_probation_salary
    no active record              -> pass_probation_salary once
                                     pass_probation_date <= as_of (or when the
                                     employment has no probation date),
                                     probation_salary before that
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select

from hrms.core.exceptions import ValidationError
from hrms.models import db
from hrms.models.funding import SALARY_PASS_PROBATION, SALARY_PROBATION
from hrms.models.probation import EVENT_PASSED, ProbationRecord

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class SalaryContext:
    salary_base: Decimal
    salary_type: str

    def amount_for(self, fte: Decimal) -> Decimal:
        return allocated_amount(self.salary_base, fte)


def allocated_amount(salary_base: Decimal, fte: Decimal) -> Decimal:
    """salary_base × fte rounded half-up to cents."""
    return (Decimal(salary_base) * Decimal(fte)).quantize(_CENT, rounding=ROUND_HALF_UP)


def active_probation_record(employment_id: int) -> ProbationRecord | None:
    return db.session.execute(
        select(ProbationRecord)
        .where(
            ProbationRecord.employment_id == employment_id,
            ProbationRecord.is_active.is_(True),
        )
        .order_by(ProbationRecord.id.desc())
    ).scalars().first()


def resolve_salary(employment, as_of: date | None = None) -> SalaryContext:
    """Return the salary base and salary type an allocation must use.

    Args:
        employment: Employment row.
        as_of:      Reference date for the no-ledger fallback. Defaults to today.

    Raises:
        ValidationError: The employment defines neither salary.
    """
    probation_salary = employment.probation_salary
    pass_salary = employment.pass_probation_salary
    if probation_salary is None and pass_salary is None:
        raise ValidationError(
            "Employment must define a salary before allocations can be created.",
            details={"pass_probation_salary": "required"},
        )

    record = active_probation_record(employment.id) if employment.id is not None else None
    if record is not None:
        passed = record.event_type == EVENT_PASSED
    else:
        as_of = as_of or date.today()
        passed = employment.pass_probation_date is None or employment.pass_probation_date <= as_of

    if passed:
        base = pass_salary if pass_salary is not None else probation_salary
        return SalaryContext(Decimal(base), SALARY_PASS_PROBATION)

    base = probation_salary if probation_salary is not None else pass_salary
    return SalaryContext(Decimal(base), SALARY_PROBATION)
