"""
QA Tracking Dashboard
Dashboard Blueprint — read-only aggregates for one test cycle.

Endpoints:
    GET /api/v1/cycles/<cid>/dashboard        totals, progress rate, per-system breakdown
    GET /api/v1/cycles/<cid>/depth-groups     per (system, depth_0) feature-area progress
    GET /api/v1/cycles/<cid>/issue-stats      Fail / Block counts + raised / fixed
    GET /api/v1/cycles/<cid>/scenario-stats   scenario progress by type
"""

from flask import Blueprint, jsonify

from app.services import dashboard_service as svc
from app.services.requirement_service import get_cycle

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/cycles")


@dashboard_bp.route("/<int:cycle_id>/dashboard", methods=["GET"])
def dashboard(cycle_id):
    """Overall and per-system status counts."""
    get_cycle(cycle_id)
    return jsonify(svc.dashboard_stats(cycle_id)), 200


@dashboard_bp.route("/<int:cycle_id>/depth-groups", methods=["GET"])
def depth_groups(cycle_id):
    get_cycle(cycle_id)
    return jsonify(svc.depth_group_stats(cycle_id)), 200


@dashboard_bp.route("/<int:cycle_id>/issue-stats", methods=["GET"])
def issue_stats(cycle_id):
    get_cycle(cycle_id)
    return jsonify(svc.issue_stats(cycle_id)), 200


@dashboard_bp.route("/<int:cycle_id>/scenario-stats", methods=["GET"])
def scenario_stats(cycle_id):
    get_cycle(cycle_id)
    return jsonify(svc.scenario_stats(cycle_id)), 200
