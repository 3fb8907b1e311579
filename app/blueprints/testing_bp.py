"""
QA Tracking Dashboard
Testing Blueprint — cycles, per-cycle results and the issue views.

Endpoints:
    CYCLES    /api/v1/cycles                                      GET, POST
              /api/v1/cycles/<cid>                                GET
              /api/v1/cycles/<cid>/close                          POST
    RESULTS   /api/v1/cycles/<cid>/results/<rid>                  GET, PUT
              /api/v1/cycles/<cid>/results/<rid>/status           PUT
              /api/v1/cycles/<cid>/results/<rid>/retest-reason    PUT
    ISSUES    /api/v1/cycles/<cid>/issues                         GET
              /api/v1/cycles/<cid>/backlog-board                  GET
              /api/v1/cycles/<cid>/test-queue                     GET

Result writes answer a failed commit with ``previous_status`` in the
error body so the caller can revert an optimistic status.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import json_body
from app.core.exceptions import ValidationError
from app.models.requirement import Requirement
from app.services import issue_service, result_service
from app.services import requirement_service as svc
from app.services.requirement_filters import ISSUE_STATES, IssueFilter
from app.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

testing_bp = Blueprint("testing", __name__, url_prefix="/api/v1")


def _result_body(requirement, result, previous_status=None):
    return {
        "requirement_id": requirement.id,
        "display_id": requirement.display_id,
        "previous_status": previous_status,
        "result": result.to_dict() if result else None,
    }


# ═════════════════════════════════════════════════════════════════════════
# CYCLES
# ═════════════════════════════════════════════════════════════════════════

@testing_bp.route("/cycles", methods=["GET"])
def list_cycles():
    return jsonify([c.to_dict() for c in svc.list_cycles()]), 200


@testing_bp.route("/cycles", methods=["POST"])
def create_cycle():
    cycle = svc.create_cycle(json_body().get("name"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(cycle.to_dict()), 201


@testing_bp.route("/cycles/<int:cycle_id>", methods=["GET"])
def get_cycle(cycle_id):
    return jsonify(svc.get_cycle(cycle_id).to_dict()), 200


@testing_bp.route("/cycles/<int:cycle_id>/close", methods=["POST"])
def close_cycle(cycle_id):
    cycle = svc.close_cycle(svc.get_cycle(cycle_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(cycle.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# RESULTS
# ═════════════════════════════════════════════════════════════════════════

@testing_bp.route("/cycles/<int:cycle_id>/results/<int:req_id>", methods=["GET"])
def get_result(cycle_id, req_id):
    cycle = svc.get_cycle(cycle_id)
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    return jsonify(_result_body(req, result_service.get_result(req.id, cycle.id))), 200


@testing_bp.route("/cycles/<int:cycle_id>/results/<int:req_id>", methods=["PUT"])
def save_result(cycle_id, req_id):
    """Full detail-panel save.

    Body: {status?, tester?, note?, retest_reason?,
           issue_items? | issue_ids? + issue_raised? + issue_fixed?}
    """
    cycle = svc.get_cycle(cycle_id)
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    result, previous, changes = result_service.save_result(req, cycle, json_body())
    err = db_commit_or_error(extra={"previous_status": previous})
    if err:
        return err
    svc.log_changes(changes)
    return jsonify(_result_body(req, result, previous)), 200


@testing_bp.route("/cycles/<int:cycle_id>/results/<int:req_id>/status", methods=["PUT"])
def set_status(cycle_id, req_id):
    """Body: {status, tester?}. Re-sending the current status changes nothing."""
    cycle = svc.get_cycle(cycle_id)
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    data = json_body()
    if not data.get("status"):
        raise ValidationError("status is required", details={"status": "required"})
    result, previous, changes = result_service.set_status(req, cycle, data["status"], data.get("tester"))
    if not changes:
        return jsonify(_result_body(req, result, previous)), 200
    err = db_commit_or_error(extra={"previous_status": previous})
    if err:
        return err
    svc.log_changes(changes)
    return jsonify(_result_body(req, result, previous)), 200


@testing_bp.route("/cycles/<int:cycle_id>/results/<int:req_id>/retest-reason", methods=["PUT"])
def set_retest_reason(cycle_id, req_id):
    """Body: {retest_reason}. null clears the flag."""
    cycle = svc.get_cycle(cycle_id)
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    result, changes = result_service.set_retest_reason(req, cycle, json_body().get("retest_reason"))
    err = db_commit_or_error()
    if err:
        return err
    svc.log_changes(changes)
    return jsonify(_result_body(req, result)), 200


# ═════════════════════════════════════════════════════════════════════════
# ISSUES
# ═════════════════════════════════════════════════════════════════════════

@testing_bp.route("/cycles/<int:cycle_id>/issues", methods=["GET"])
def issues(cycle_id):
    """Issue tab. Query params: system_id*, issue_state*, severity*."""
    svc.get_cycle(cycle_id)
    return jsonify(issue_service.issue_view(cycle_id, IssueFilter.from_args(request.args))), 200


@testing_bp.route("/cycles/<int:cycle_id>/backlog-board", methods=["GET"])
def backlog_board(cycle_id):
    """Fail / Block board. Query param: view = all | not_raised | raised | fixed."""
    svc.get_cycle(cycle_id)
    view = request.args.get("view", "all")
    if view != "all" and view not in ISSUE_STATES:
        raise ValidationError("Invalid view", details={"view": view})
    return jsonify(issue_service.backlog_board(cycle_id, view)), 200


@testing_bp.route("/cycles/<int:cycle_id>/test-queue", methods=["GET"])
def test_queue(cycle_id):
    svc.get_cycle(cycle_id)
    return jsonify(issue_service.test_queue(cycle_id)), 200
