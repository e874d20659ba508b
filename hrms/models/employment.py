"""
HRMS Funding Allocation Service
Personnel models.

Models:
    - Employee:   minimal personnel identity referenced by employments and
                  funding allocations.
    - Employment: one job assignment of an employee. Carries the two salary
                  figures the allocation engine prices against.

Employment deliberately has no probation status column. Whether an
employment is still on probation is read from its single active
ProbationRecord (see ``hrms.models.probation``).
"""

from datetime import datetime, timezone

from hrms.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value):
    return float(value) if value is not None else None


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.String(50), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=True)
    organization = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    employments = db.relationship(
        "Employment", back_populates="employee", lazy="select", order_by="Employment.id",
    )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "organization": self.organization,
        }

    def __repr__(self):
        return f"<Employee {self.id}: {self.staff_id}>"


class Employment(db.Model):
    """Job assignment. Soft-deleted on termination (``deleted_at``)."""

    __tablename__ = "employments"
    __table_args__ = (
        db.Index("idx_employment_employee", "employee_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer,
        db.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id = db.Column(db.Integer, nullable=True)
    position_id = db.Column(db.Integer, nullable=True)
    site_id = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    pass_probation_date = db.Column(db.Date, nullable=True)
    probation_salary = db.Column(db.Numeric(12, 2), nullable=True)
    pass_probation_salary = db.Column(db.Numeric(12, 2), nullable=True)
    status = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(150), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    employee = db.relationship("Employee", back_populates="employments")
    probation_records = db.relationship(
        "ProbationRecord",
        back_populates="employment",
        lazy="select",
        order_by="ProbationRecord.id",
        cascade="all, delete-orphan",
    )
    funding_allocations = db.relationship(
        "EmployeeFundingAllocation",
        back_populates="employment",
        lazy="select",
        order_by="EmployeeFundingAllocation.id",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def active_allocations(self) -> list:
        return [a for a in self.funding_allocations if a.end_date is None]

    def to_dict(self, include_allocations: bool = False) -> dict:
        d = {
            "id": self.id,
            "employee_id": self.employee_id,
            "department_id": self.department_id,
            "position_id": self.position_id,
            "site_id": self.site_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "pass_probation_date": (
                self.pass_probation_date.isoformat() if self.pass_probation_date else None
            ),
            "probation_salary": _money(self.probation_salary),
            "pass_probation_salary": _money(self.pass_probation_salary),
            "status": self.status,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_allocations:
            d["allocations"] = [a.to_dict() for a in self.active_allocations]
        return d

    def __repr__(self):
        return f"<Employment {self.id}: employee={self.employee_id}>"
