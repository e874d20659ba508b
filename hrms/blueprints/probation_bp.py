"""
Probation blueprint.

Endpoints:
    GET  /api/v1/employments/<id>/probation           ledger history + summary
    POST /api/v1/employments/<id>/probation/extend    {new_end_date, reason?, notes?}
    POST /api/v1/employments/<id>/probation/pass      {effective_date?, notes?, recalculate?}
    POST /api/v1/employments/<id>/probation/fail      {effective_date?, reason?, notes?}
    GET  /api/v1/probation/statistics                 counts by state
"""

import logging

from flask import Blueprint

import hrms.services.probation_service as ps
from hrms.blueprints import json_body, ok, register_error_handlers
from hrms.core.exceptions import ValidationError
from hrms.middleware.permission_required import require_permission
from hrms.services.funding_allocation_service import _parse_date

logger = logging.getLogger(__name__)

probation_bp = register_error_handlers(Blueprint("probation", __name__, url_prefix="/api/v1"))


def _flag(value):
    if value is None or isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes")


@probation_bp.route("/employments/<int:employment_id>/probation", methods=["GET"])
@require_permission("probation.read")
def probation_history(employment_id):
    return ok(ps.get_history(employment_id), "Probation history retrieved successfully")


@probation_bp.route("/employments/<int:employment_id>/probation/extend", methods=["POST"])
@require_permission("probation.update")
def extend_probation(employment_id):
    data = json_body()
    new_end = _parse_date(data.get("new_end_date"), "new_end_date")
    if new_end is None:
        raise ValidationError("new_end_date is required", details={"new_end_date": "required"})
    result = ps.mark_extension(
        employment_id, new_end, reason=data.get("reason"), notes=data.get("notes"),
    )
    return ok(result, "Probation extended successfully")


@probation_bp.route("/employments/<int:employment_id>/probation/pass", methods=["POST"])
@require_permission("probation.update")
def pass_probation(employment_id):
    data = json_body()
    result = ps.mark_passed(
        employment_id,
        effective_date=_parse_date(data.get("effective_date"), "effective_date"),
        notes=data.get("notes"),
        recalculate=_flag(data.get("recalculate")),
    )
    return ok(result, "Probation marked as passed")


@probation_bp.route("/employments/<int:employment_id>/probation/fail", methods=["POST"])
@require_permission("probation.update")
def fail_probation(employment_id):
    data = json_body()
    result = ps.mark_failed(
        employment_id,
        effective_date=_parse_date(data.get("effective_date"), "effective_date"),
        reason=data.get("reason"),
        notes=data.get("notes"),
    )
    return ok(result, "Probation marked as failed")


@probation_bp.route("/probation/statistics", methods=["GET"])
@require_permission("probation.read")
def probation_statistics():
    return ok(ps.get_statistics(), "Probation statistics retrieved successfully")
