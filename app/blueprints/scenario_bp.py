"""
QA Tracking Dashboard
Scenario Blueprint — scenario CRUD, graph links and scenario results.

Endpoints:
    SCENARIOS     /api/v1/scenarios                                  GET, POST
                  /api/v1/scenarios/<id>                             GET, PUT, DELETE
    LINKS         /api/v1/scenarios/<id>/requirements                GET, PUT
                  /api/v1/scenarios/<id>/parents                     GET, PUT
                  /api/v1/scenarios/<id>/children                    GET, PUT
                  /api/v1/scenarios/<id>/children/reorder            POST
    RESULTS       /api/v1/cycles/<cid>/scenario-results/<sid>        PUT

Link writes are replace-all: the body lists the complete new set.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import json_body
from app.core.exceptions import ValidationError
from app.services import composition, result_service, scenario_service
from app.services import requirement_service as svc
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

scenario_bp = Blueprint("scenario", __name__, url_prefix="/api/v1")


def _list_field(data, key):
    value = data.get(key)
    if value is None:
        raise ValidationError(f"{key} is required", details={key: "required"})
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list", details={key: value})
    return value


# ═════════════════════════════════════════════════════════════════════════
# SCENARIOS
# ═════════════════════════════════════════════════════════════════════════

@scenario_bp.route("/scenarios", methods=["GET"])
def list_scenarios():
    """Query params: cycle_id, scenario_type, status, q, system_id, e2e (id | none)."""
    filters = {k: request.args.get(k) for k in ("scenario_type", "status", "q", "e2e")}
    system_id = request.args.get("system_id", type=int)
    if system_id is not None:
        filters["system_id"] = system_id
    cycle_id = request.args.get("cycle_id", type=int)
    rows = scenario_service.list_scenarios(cycle_id, filters)
    return jsonify({"items": rows, "total": len(rows)}), 200


@scenario_bp.route("/scenarios", methods=["POST"])
def create_scenario():
    """Body: scenario fields plus optional requirements / parents / children."""
    scenario = scenario_service.create_scenario(json_body())
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Scenario %s created (%s)", scenario.id, scenario.scenario_type)
    return jsonify(scenario_service.get_scenario_detail(scenario.id)), 201


@scenario_bp.route("/scenarios/<int:scenario_id>", methods=["GET"])
def get_scenario(scenario_id):
    cycle_id = request.args.get("cycle_id", type=int)
    return jsonify(scenario_service.get_scenario_detail(scenario_id, cycle_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>", methods=["PUT"])
def update_scenario(scenario_id):
    scenario = scenario_service.get_scenario(scenario_id)
    scenario_service.update_scenario(scenario, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(scenario_service.get_scenario_detail(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>", methods=["DELETE"])
def delete_scenario(scenario_id):
    scenario = scenario_service.get_scenario(scenario_id)
    scenario_service.delete_scenario(scenario)
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Scenario %s deleted", scenario_id)
    return jsonify({"deleted": scenario_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# LINKS
# ═════════════════════════════════════════════════════════════════════════

@scenario_bp.route("/scenarios/<int:scenario_id>/requirements", methods=["GET"])
def get_requirements(scenario_id):
    scenario_service.get_scenario(scenario_id)
    return jsonify(composition.get_linked_requirements(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/requirements", methods=["PUT"])
def set_requirements(scenario_id):
    """Body: {requirements: [id | {requirement_id, order_index?, verify_note?}]}"""
    scenario_service.get_scenario(scenario_id)
    composition.set_scenario_requirements(scenario_id, _list_field(json_body(), "requirements"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(composition.get_linked_requirements(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/parents", methods=["GET"])
def get_parents(scenario_id):
    scenario_service.get_scenario(scenario_id)
    return jsonify(composition.get_parent_e2es(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/parents", methods=["PUT"])
def set_parents(scenario_id):
    """Body: {parents: [id | {parent_id, order_index}]} — integration scenarios only."""
    scenario_service.get_scenario(scenario_id)
    composition.set_compositions_from_child(scenario_id, _list_field(json_body(), "parents"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(composition.get_parent_e2es(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/children", methods=["GET"])
def get_children(scenario_id):
    scenario_service.get_scenario(scenario_id)
    cycle_id = request.args.get("cycle_id", type=int)
    return jsonify(composition.get_child_integrations(scenario_id, cycle_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/children", methods=["PUT"])
def set_children(scenario_id):
    """Body: {children: [id | {child_id, order_index}]} — e2e scenarios only."""
    scenario_service.get_scenario(scenario_id)
    composition.set_compositions_from_parent(scenario_id, _list_field(json_body(), "children"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(composition.get_child_integrations(scenario_id)), 200


@scenario_bp.route("/scenarios/<int:scenario_id>/children/reorder", methods=["POST"])
def reorder_children(scenario_id):
    """Body: {action: move|move_to|remove, index, direction?, position?}"""
    children = composition.reorder_children(scenario_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(children), 200


# ═════════════════════════════════════════════════════════════════════════
# RESULTS
# ═════════════════════════════════════════════════════════════════════════

@scenario_bp.route("/cycles/<int:cycle_id>/scenario-results/<int:scenario_id>", methods=["PUT"])
def save_scenario_result(cycle_id, scenario_id):
    """Body: {status?, tester?, note?, issue_items?}"""
    cycle = svc.get_cycle(cycle_id)
    scenario = scenario_service.get_scenario(scenario_id)
    result, previous = result_service.upsert_scenario_result(scenario, cycle, json_body())
    err = db_commit_or_error(extra={"previous_status": previous})
    if err:
        return err
    return jsonify({"scenario_id": scenario.id, "previous_status": previous,
                    "result": result.to_dict()}), 200
