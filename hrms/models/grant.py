"""
HRMS Funding Allocation Service
Grant registry models.

Models:
    - Grant:     an external (or organisation) funding source with a unique code.
    - GrantItem: a funded position line inside a Grant, with a fixed number of
                 position slots (``grant_position_number``).

Both are reference data maintained by administrators; the allocation engine
reads them but never mutates them.
"""

from datetime import datetime, timezone

from hrms.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Grant(db.Model):
    """Funding source. ``code`` is unique across the registry."""

    __tablename__ = "grants"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    organization = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    items = db.relationship(
        "GrantItem",
        back_populates="grant",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="GrantItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "organization": self.organization,
            "description": self.description,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            d["grant_items"] = [item.to_dict() for item in self.items]
        return d

    def __repr__(self):
        return f"<Grant {self.id}: {self.code}>"


class GrantItem(db.Model):
    """Position line within a Grant.

    Capacity is enforced by counting active EmployeeFundingAllocation rows
    that reference the item; it is never stored as a counter.
    """

    __tablename__ = "grant_items"
    __table_args__ = (
        db.CheckConstraint("grant_position_number >= 1", name="ck_grant_items_capacity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(
        db.Integer,
        db.ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grant_position = db.Column(db.String(255), nullable=True, comment="Position label")
    grant_salary = db.Column(db.Numeric(12, 2), nullable=True)
    grant_benefit = db.Column(db.Numeric(12, 2), nullable=True)
    grant_level_of_effort = db.Column(db.Numeric(5, 4), nullable=True)
    grant_position_number = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Number of concurrently active allocations allowed",
    )
    budgetline_code = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    grant = db.relationship("Grant", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "grant_id": self.grant_id,
            "grant_position": self.grant_position,
            "grant_salary": float(self.grant_salary) if self.grant_salary is not None else None,
            "grant_benefit": float(self.grant_benefit) if self.grant_benefit is not None else None,
            "grant_level_of_effort": (
                float(self.grant_level_of_effort) if self.grant_level_of_effort is not None else None
            ),
            "grant_position_number": self.grant_position_number,
            "budgetline_code": self.budgetline_code,
        }

    def __repr__(self):
        return f"<GrantItem {self.id}: {self.grant_position} x{self.grant_position_number}>"
