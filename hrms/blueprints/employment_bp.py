"""
Employee and employment blueprint.

Endpoints:
    GET    /api/v1/employees                                 list (search, organization)
    POST   /api/v1/employees                                 create
    GET    /api/v1/employments                               list (employee_id, department_id, ...)
    POST   /api/v1/employments                               create, optional ``allocations``
    GET    /api/v1/employments/<id>                          show with active allocations
    PUT    /api/v1/employments/<id>                          update fields / salaries
    DELETE /api/v1/employments/<id>                          terminate (soft delete)
    GET    /api/v1/employments/<id>/funding-allocations      active + history

Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, request

import hrms.services.employment_service as es
from hrms.blueprints import json_body, ok, paginate_query, register_error_handlers
from hrms.middleware.permission_required import require_permission

logger = logging.getLogger(__name__)

employment_bp = register_error_handlers(Blueprint("employment", __name__, url_prefix="/api/v1"))


# ── Employees ────────────────────────────────────────────────────────────────


@employment_bp.route("/employees", methods=["GET"])
@require_permission("employment.read")
def list_employees():
    items, total = paginate_query(es.employee_query(request.args))
    return ok([e.to_dict() for e in items], "Employees retrieved successfully", total=total)


@employment_bp.route("/employees", methods=["POST"])
@require_permission("employment.create")
def create_employee():
    employee = es.create_employee(json_body())
    return ok(employee.to_dict(), "Employee created successfully", 201)


# ── Employments ──────────────────────────────────────────────────────────────


@employment_bp.route("/employments", methods=["GET"])
@require_permission("employment.read")
def list_employments():
    items, total = paginate_query(es.employment_query(request.args))
    return ok([e.to_dict() for e in items], "Employments retrieved successfully", total=total)


@employment_bp.route("/employments", methods=["POST"])
@require_permission("employment.create")
def create_employment():
    """Create an employment.

    Body: {
        employee_id, start_date, end_date?, pass_probation_date?,
        probation_salary?, pass_probation_salary,
        department_id?, position_id?, site_id?,
        allocations?: [{allocation_type, grant_item_id|grant_id, fte}],
        allocation_start_date?
    }
    """
    employment = es.create_employment(json_body())
    return ok(employment.to_dict(include_allocations=True), "Employment created successfully", 201)


@employment_bp.route("/employments/<int:employment_id>", methods=["GET"])
@require_permission("employment.read")
def get_employment(employment_id):
    employment = es.get_employment(employment_id)
    return ok(employment.to_dict(include_allocations=True), "Employment retrieved successfully")


@employment_bp.route("/employments/<int:employment_id>", methods=["PUT"])
@require_permission("employment.update")
def update_employment(employment_id):
    employment = es.update_employment(employment_id, json_body())
    return ok(employment.to_dict(include_allocations=True), "Employment updated successfully")


@employment_bp.route("/employments/<int:employment_id>", methods=["DELETE"])
@require_permission("employment.delete")
def terminate_employment(employment_id):
    data = json_body()
    end_date = data.get("end_date") or request.args.get("end_date")
    result = es.terminate_employment(employment_id, end_date=end_date)
    return ok(result, "Employment terminated successfully")


@employment_bp.route("/employments/<int:employment_id>/funding-allocations", methods=["GET"])
@require_permission("employee_funding_allocation.read")
def employment_funding_allocations(employment_id):
    return ok(es.get_funding_allocations(employment_id), "Funding allocations retrieved successfully")
