"""
HRMS Funding Allocation Service
Employee funding allocation model.

An allocation row attributes a fraction (``fte``) of an employment's salary
to one funding source. The source is either a GrantItem (grant-funded
position line) or a Grant directly (organisation-funded). The two nullable FK
columns are only ever written through the ``source`` property, which takes a
``GrantItemSource`` or an ``OrgFundedSource``; a table CHECK constraint backs
the same rule at the database level.

Rows are never edited into a new split. A new split ends the current rows
(``end_date`` set, ``end_date IS NULL`` means active) and inserts a new set,
so payroll history stays intact.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar, Union

from hrms.models import db

ALLOCATION_GRANT = "grant"
ALLOCATION_ORG_FUNDED = "org_funded"
ALLOCATION_TYPES = {ALLOCATION_GRANT, ALLOCATION_ORG_FUNDED}

SALARY_PROBATION = "probation_salary"
SALARY_PASS_PROBATION = "pass_probation_salary"
SALARY_TYPES = {SALARY_PROBATION, SALARY_PASS_PROBATION}

STATUS_ACTIVE = "active"
STATUS_HISTORICAL = "historical"      # superseded by a replacement set
STATUS_INACTIVE = "inactive"          # bulk-deactivated
STATUS_TERMINATED = "terminated"      # employment or probation ended
ALLOCATION_STATUSES = {STATUS_ACTIVE, STATUS_HISTORICAL, STATUS_INACTIVE, STATUS_TERMINATED}


@dataclass(frozen=True)
class GrantItemSource:
    """Funding drawn from a grant position line."""

    grant_item_id: int
    allocation_type: ClassVar[str] = ALLOCATION_GRANT


@dataclass(frozen=True)
class OrgFundedSource:
    """Funding drawn from the organisation's own budget under a Grant code."""

    grant_id: int
    allocation_type: ClassVar[str] = ALLOCATION_ORG_FUNDED


FundingSource = Union[GrantItemSource, OrgFundedSource]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmployeeFundingAllocation(db.Model):
    __tablename__ = "employee_funding_allocations"
    __table_args__ = (
        db.CheckConstraint(
            "(allocation_type = 'grant' AND grant_item_id IS NOT NULL AND grant_id IS NULL)"
            " OR (allocation_type = 'org_funded' AND grant_id IS NOT NULL AND grant_item_id IS NULL)",
            name="ck_efa_funding_source",
        ),
        db.CheckConstraint("fte > 0 AND fte <= 1", name="ck_efa_fte_range"),
        db.Index("idx_efa_employment_end", "employment_id", "end_date"),
        db.Index("idx_efa_grant_item_end", "grant_item_id", "end_date"),
        db.Index("idx_efa_employee", "employee_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer,
        db.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    employment_id = db.Column(
        db.Integer,
        db.ForeignKey("employments.id", ondelete="CASCADE"),
        nullable=False,
    )
    allocation_type = db.Column(db.String(20), nullable=False, comment="grant | org_funded")
    grant_item_id = db.Column(
        db.Integer,
        db.ForeignKey("grant_items.id", ondelete="RESTRICT"),
        nullable=True,
    )
    grant_id = db.Column(
        db.Integer,
        db.ForeignKey("grants.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    fte = db.Column(db.Numeric(5, 4), nullable=False, comment="Fraction 0 < fte <= 1")
    allocated_amount = db.Column(db.Numeric(12, 2), nullable=False)
    salary_type = db.Column(
        db.String(30), nullable=False, comment="probation_salary | pass_probation_salary",
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True, comment="NULL = currently active")
    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    created_by = db.Column(db.String(150), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    employment = db.relationship("Employment", back_populates="funding_allocations")
    employee = db.relationship("Employee")
    grant_item = db.relationship("GrantItem")
    org_grant = db.relationship("Grant", foreign_keys=[grant_id])

    # ── Funding source (tagged union) ────────────────────────────────────

    @property
    def source(self) -> FundingSource | None:
        if self.allocation_type == ALLOCATION_GRANT:
            return GrantItemSource(grant_item_id=self.grant_item_id)
        if self.allocation_type == ALLOCATION_ORG_FUNDED:
            return OrgFundedSource(grant_id=self.grant_id)
        return None

    @source.setter
    def source(self, value: FundingSource) -> None:
        if isinstance(value, GrantItemSource):
            self.allocation_type = ALLOCATION_GRANT
            self.grant_item_id = value.grant_item_id
            self.grant_id = None
        elif isinstance(value, OrgFundedSource):
            self.allocation_type = ALLOCATION_ORG_FUNDED
            self.grant_id = value.grant_id
            self.grant_item_id = None
        else:
            raise TypeError(f"Unsupported funding source: {value!r}")

    @property
    def is_active(self) -> bool:
        return self.end_date is None

    @property
    def grant(self):
        """The Grant this row draws on, whichever way it is referenced."""
        if self.allocation_type == ALLOCATION_GRANT:
            return self.grant_item.grant if self.grant_item else None
        return self.org_grant

    def to_dict(self) -> dict:
        grant = self.grant
        fte = float(self.fte) if self.fte is not None else None
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "employment_id": self.employment_id,
            "allocation_type": self.allocation_type,
            "grant_item_id": self.grant_item_id,
            "grant_id": self.grant_id,
            "fte": fte,
            "fte_percentage": round(fte * 100, 2) if fte is not None else None,
            "allocated_amount": (
                float(self.allocated_amount) if self.allocated_amount is not None else None
            ),
            "salary_type": self.salary_type,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "grant_code": grant.code if grant else None,
            "grant_name": grant.name if grant else None,
            "grant_position": self.grant_item.grant_position if self.grant_item else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return (
            f"<EmployeeFundingAllocation {self.id}: employment={self.employment_id} "
            f"{self.allocation_type} fte={self.fte}>"
        )
