"""
Grant registry blueprint.

Endpoints:
    GET  /api/v1/grants                         list (search, organization)
    POST /api/v1/grants                         create, optionally with grant_items
    GET  /api/v1/grants/<id>                    grant with its items
    PUT  /api/v1/grants/<id>                    update descriptive fields
    GET  /api/v1/grants/<id>/slots              per-item slot usage
    POST /api/v1/grants/<id>/items              add a position line
    PUT  /api/v1/grant-items/<id>               update a position line
    GET  /api/v1/grant-items/<id>/capacity      capacity of one position line
"""

import logging

from flask import Blueprint, request

import hrms.services.grant_service as gs
from hrms.blueprints import json_body, ok, paginate_query, register_error_handlers
from hrms.middleware.permission_required import require_permission
from hrms.services.grant_capacity import get_capacity, grant_slot_summary

logger = logging.getLogger(__name__)

grant_bp = register_error_handlers(Blueprint("grant", __name__, url_prefix="/api/v1"))


@grant_bp.route("/grants", methods=["GET"])
@require_permission("grant.read")
def list_grants():
    items, total = paginate_query(gs.grant_query(request.args))
    return ok([g.to_dict() for g in items], "Grants retrieved successfully", total=total)


@grant_bp.route("/grants", methods=["POST"])
@require_permission("grant.create")
def create_grant():
    grant = gs.create_grant(json_body())
    return ok(grant.to_dict(include_items=True), "Grant created successfully", 201)


@grant_bp.route("/grants/<int:grant_id>", methods=["GET"])
@require_permission("grant.read")
def get_grant(grant_id):
    return ok(gs.get_grant(grant_id).to_dict(include_items=True), "Grant retrieved successfully")


@grant_bp.route("/grants/<int:grant_id>", methods=["PUT"])
@require_permission("grant.update")
def update_grant(grant_id):
    grant = gs.update_grant(grant_id, json_body())
    return ok(grant.to_dict(include_items=True), "Grant updated successfully")


@grant_bp.route("/grants/<int:grant_id>/slots", methods=["GET"])
@require_permission("grant.read")
def grant_slots(grant_id):
    return ok(grant_slot_summary(grant_id), "Grant position slots retrieved successfully")


@grant_bp.route("/grants/<int:grant_id>/items", methods=["POST"])
@require_permission("grant.update")
def add_grant_item(grant_id):
    item = gs.add_grant_item(grant_id, json_body())
    return ok(item.to_dict(), "Grant item created successfully", 201)


@grant_bp.route("/grant-items/<int:grant_item_id>", methods=["PUT"])
@require_permission("grant.update")
def update_grant_item(grant_item_id):
    item = gs.update_grant_item(grant_item_id, json_body())
    return ok(item.to_dict(), "Grant item updated successfully")


@grant_bp.route("/grant-items/<int:grant_item_id>/capacity", methods=["GET"])
@require_permission("grant.read")
def grant_item_capacity(grant_item_id):
    return ok(get_capacity(grant_item_id), "Grant item capacity retrieved successfully")
