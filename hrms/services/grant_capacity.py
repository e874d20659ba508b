"""
Grant capacity queries.

Capacity is derived by counting EmployeeFundingAllocation rows that reference
a GrantItem with ``end_date IS NULL``; there is no stored counter to drift.
"""

from __future__ import annotations

from sqlalchemy import func, select

from hrms.core.exceptions import NotFoundError
from hrms.models import db
from hrms.models.funding import ALLOCATION_GRANT, EmployeeFundingAllocation
from hrms.models.grant import Grant, GrantItem


def count_active_allocations(grant_item_id: int, exclude_employment_id: int | None = None) -> int:
    """Number of active allocation rows referencing the grant item.

    Rows belonging to ``exclude_employment_id`` are left out so an
    employment's own set does not count against itself while it is replaced.
    """
    stmt = select(func.count(EmployeeFundingAllocation.id)).where(
        EmployeeFundingAllocation.grant_item_id == grant_item_id,
        EmployeeFundingAllocation.allocation_type == ALLOCATION_GRANT,
        EmployeeFundingAllocation.end_date.is_(None),
    )
    if exclude_employment_id is not None:
        stmt = stmt.where(EmployeeFundingAllocation.employment_id != exclude_employment_id)
    return db.session.execute(stmt).scalar_one()


def get_capacity(grant_item_id: int) -> dict:
    """Return ``{total_allocations, active_allocations, ...}`` for a grant item.

    Raises:
        NotFoundError: Unknown grant item.
    """
    item = db.session.get(GrantItem, grant_item_id)
    if item is None:
        raise NotFoundError(resource="GrantItem", resource_id=grant_item_id)

    total = db.session.execute(
        select(func.count(EmployeeFundingAllocation.id)).where(
            EmployeeFundingAllocation.grant_item_id == grant_item_id,
        )
    ).scalar_one()
    active = count_active_allocations(grant_item_id)
    return {
        "grant_item_id": item.id,
        "grant_position": item.grant_position,
        "grant_position_number": item.grant_position_number,
        "total_allocations": total,
        "active_allocations": active,
        "available_slots": max(item.grant_position_number - active, 0),
    }


def grant_slot_summary(grant_id: int) -> list[dict]:
    """Per-item slot usage for every position line in a grant."""
    grant = db.session.get(Grant, grant_id)
    if grant is None:
        raise NotFoundError(resource="Grant", resource_id=grant_id)

    summary = []
    for item in grant.items:
        total_slots = item.grant_position_number or 0
        allocated = count_active_allocations(item.id)
        summary.append({
            "grant_item_id": item.id,
            "position": item.grant_position,
            "total_slots": total_slots,
            "allocated_slots": allocated,
            "available_slots": max(0, total_slots - allocated),
            "utilization_percentage": round(allocated / total_slots * 100, 2) if total_slots else 0,
        })
    return summary
