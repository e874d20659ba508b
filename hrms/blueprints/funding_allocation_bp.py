"""
Employee funding allocation blueprint.

Endpoints:
    GET    /api/v1/employee-funding-allocations                          list (filters)
    POST   /api/v1/employee-funding-allocations                          create first set
    GET    /api/v1/employee-funding-allocations/grant-structure          grants + items + slots
    POST   /api/v1/employee-funding-allocations/bulk-deactivate          end listed rows
    GET    /api/v1/employee-funding-allocations/employee/<employee_id>   rows + summary
    PUT    /api/v1/employee-funding-allocations/employee/<employee_id>   replace active set
    GET    /api/v1/employee-funding-allocations/by-grant-item/<id>       rows + capacity
    GET    /api/v1/employee-funding-allocations/<id>                     show
    PUT    /api/v1/employee-funding-allocations/<id>                     correct fte / start_date
    DELETE /api/v1/employee-funding-allocations/<id>                     delete an ended row

Request fte values are percentages (0-100); responses carry both the
stored fraction (``fte``) and ``fte_percentage``.
"""

import logging

from flask import Blueprint, request

import hrms.services.funding_allocation_service as fas
from hrms.blueprints import json_body, ok, paginate_query, register_error_handlers
from hrms.core.exceptions import ValidationError
from hrms.middleware.permission_required import require_permission

logger = logging.getLogger(__name__)

funding_allocation_bp = register_error_handlers(
    Blueprint("funding_allocation", __name__, url_prefix="/api/v1/employee-funding-allocations")
)


def _truthy(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


@funding_allocation_bp.route("", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def list_allocations():
    items, total = paginate_query(fas.allocation_query(request.args))
    return ok([a.to_dict() for a in items], "Funding allocations retrieved successfully", total=total)


@funding_allocation_bp.route("", methods=["POST"])
@require_permission("employee_funding_allocation.create")
def create_allocations():
    """Create the first active allocation set of an employment.

    Body: {
        employment_id,
        start_date?,
        allocations: [{allocation_type: "grant", grant_item_id, fte}
                      | {allocation_type: "org_funded", grant_id, fte}]
    }
    """
    data = json_body()
    employment_id = fas._as_int(data.get("employment_id"))
    if employment_id is None:
        raise ValidationError("employment_id is required", details={"employment_id": "required"})
    rows = fas.create_allocations(employment_id, data.get("allocations"), start_date=data.get("start_date"))
    return ok(rows, "Funding allocations created successfully", 201)


@funding_allocation_bp.route("/grant-structure", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def grant_structure():
    return ok(fas.grant_structure(), "Grant structure retrieved successfully")


@funding_allocation_bp.route("/bulk-deactivate", methods=["POST"])
@require_permission("employee_funding_allocation.update")
def bulk_deactivate():
    data = json_body()
    result = fas.bulk_deactivate(data.get("allocation_ids"), end_date=data.get("end_date"))
    return ok(result, f"{len(result['deactivated'])} allocation(s) deactivated")


@funding_allocation_bp.route("/employee/<int:employee_id>", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def employee_allocations(employee_id):
    result = fas.get_employee_allocations(employee_id, include_history=_truthy("include_history"))
    return ok(result, "Employee funding allocations retrieved successfully")


@funding_allocation_bp.route("/employee/<int:employee_id>", methods=["PUT"])
@require_permission("employee_funding_allocation.update")
def replace_employee_allocations(employee_id):
    """Replace the active set.

    Body: {employment_id?, start_date?, allocations: [...]}
    """
    data = json_body()
    employment = fas.resolve_employment_for_employee(employee_id, data.get("employment_id"))
    result = fas.replace_allocations(employment.id, data.get("allocations"), start_date=data.get("start_date"))
    return ok(result, "Employee funding allocations updated successfully")


@funding_allocation_bp.route("/by-grant-item/<int:grant_item_id>", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def allocations_by_grant_item(grant_item_id):
    result = fas.allocations_by_grant_item(grant_item_id, active_only=_truthy("active_only"))
    return ok(result, "Grant item allocations retrieved successfully")


@funding_allocation_bp.route("/<int:allocation_id>", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def get_allocation(allocation_id):
    return ok(fas.get_allocation(allocation_id).to_dict(), "Funding allocation retrieved successfully")


@funding_allocation_bp.route("/<int:allocation_id>", methods=["PUT"])
@require_permission("employee_funding_allocation.update")
def update_allocation(allocation_id):
    return ok(fas.update_allocation(allocation_id, json_body()), "Funding allocation updated successfully")


@funding_allocation_bp.route("/<int:allocation_id>", methods=["DELETE"])
@require_permission("employee_funding_allocation.delete")
def delete_allocation(allocation_id):
    fas.delete_allocation(allocation_id)
    return ok(None, "Funding allocation deleted successfully")
