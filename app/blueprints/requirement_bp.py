"""
QA Tracking Dashboard
Requirement Blueprint — systems, requirements, import and change history.

Endpoints:
    SYSTEMS       /api/v1/systems                                GET, POST
    REQUIREMENTS  /api/v1/requirements                           GET, POST
                  /api/v1/requirements/<id>                      GET, PUT
                  /api/v1/requirements/bulk-delete               POST
                  /api/v1/requirements/by-display-id/<n>         GET
                  /api/v1/requirements/depth-options             GET
                  /api/v1/requirements/related-search            GET
                  /api/v1/requirements/related-names             GET
                  /api/v1/requirements/next-recommended          GET
                  /api/v1/requirements/<id>/history              GET
    IMPORT        /api/v1/requirements/import                    POST (multipart)

Transaction policy: services flush, handlers commit once. Field changes
are appended to the history after the main commit and never fail the
request.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import joinedload

from app.blueprints import json_body, paginate_list
from app.core.exceptions import ValidationError
from app.models.requirement import Requirement
from app.models.testing import TestResult
from app.services import aggregation
from app.services import requirement_service as svc
from app.services.bulk_import_service import BulkImportError, import_requirements, preview_import
from app.services.requirement_filters import (
    apply_filters,
    build_depth_index,
    depth1_options,
    depth2_options,
    filter_state_from_args,
)
from app.utils.helpers import db_commit_or_error, get_or_404, parse_int_list

logger = logging.getLogger(__name__)

requirement_bp = Blueprint("requirement", __name__, url_prefix="/api/v1")


@requirement_bp.errorhandler(BulkImportError)
def handle_bulk_import_error(e):
    return jsonify({"error": e.message}), e.status_code


# ── helpers ──────────────────────────────────────────────────────────────

def _cycle_id_arg(required=False):
    raw = request.args.get("cycle_id")
    if raw in (None, ""):
        if required:
            raise ValidationError("cycle_id is required", details={"cycle_id": "required"})
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("cycle_id must be an integer", details={"cycle_id": raw})


def _requirement_row(req, result):
    row = req.to_dict()
    row["depth_path"] = req.depth_path
    row["has_scenario"] = req.has_scenario
    row["status"] = aggregation.result_status(result)
    row["result"] = result.to_dict() if result else None
    return row


def _depth_scope(requirements, state_args):
    """Depth options come from the requirements of the selected systems only."""
    try:
        systems = set(parse_int_list(state_args.getlist("system_id")))
    except ValueError:
        raise ValidationError("system_id must be an integer", details={"system_id": state_args.getlist("system_id")})
    if not systems:
        return requirements
    return [r for r in requirements if r.system_id in systems]


# ═════════════════════════════════════════════════════════════════════════
# SYSTEMS
# ═════════════════════════════════════════════════════════════════════════

@requirement_bp.route("/systems", methods=["GET"])
def list_systems():
    return jsonify([s.to_dict() for s in svc.list_systems()]), 200


@requirement_bp.route("/systems", methods=["POST"])
def create_system():
    data = json_body()
    system = svc.create_system(data.get("name"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(system.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# REQUIREMENTS
# ═════════════════════════════════════════════════════════════════════════

@requirement_bp.route("/requirements", methods=["GET"])
def list_requirements():
    """Filtered, sorted, paginated requirement rows with cycle status.

    Query params:
        cycle_id, system_id*, depth0*, depth1*, depth2*, status*, priority*,
        scenario (has|none), q, id_from, id_to, sort, dir, limit, offset
        (* repeatable or comma-joined)
    """
    cycle_id = _cycle_id_arg()
    requirements = (
        Requirement.query.options(joinedload(Requirement.system))
        .order_by(Requirement.display_id, Requirement.id)
        .all()
    )
    results_by_req = {}
    if cycle_id is not None:
        results_by_req = aggregation.index_results(TestResult.query.filter_by(cycle_id=cycle_id).all())
    status_of = aggregation.status_lookup(results_by_req)

    depth_index = build_depth_index(_depth_scope(requirements, request.args))
    state = filter_state_from_args(request.args, depth_index)
    filtered = apply_filters(state, requirements, status_of)
    page, total = paginate_list(filtered)

    return jsonify({
        "items": [_requirement_row(r, results_by_req.get(r.id)) for r in page],
        "total": total,
        "counts": aggregation.compute_status_counts(filtered, status_of),
        "filters": state.to_dict(),
    }), 200


@requirement_bp.route("/requirements/depth-options", methods=["GET"])
def depth_options():
    """Cascading depth options for the current selection (pruned)."""
    requirements = Requirement.query.all()
    depth_index = build_depth_index(_depth_scope(requirements, request.args))
    state = filter_state_from_args(request.args, depth_index)
    return jsonify({
        "depth_0": list(depth_index.depth_0),
        "depth_1": depth1_options(state),
        "depth_2": depth2_options(state),
        "selected": {
            "depth0": sorted(state.depth0),
            "depth1": sorted(state.depth1),
            "depth2": sorted(state.depth2),
        },
    }), 200


@requirement_bp.route("/requirements", methods=["POST"])
def create_requirement():
    data = json_body()
    req = svc.create_requirement(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(req.to_dict()), 201


@requirement_bp.route("/requirements/<int:req_id>", methods=["GET"])
def get_requirement(req_id):
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    cycle_id = _cycle_id_arg()
    result = None
    if cycle_id is not None:
        result = TestResult.query.filter_by(requirement_id=req.id, cycle_id=cycle_id).first()
    row = _requirement_row(req, result)
    row["related"] = {str(k): v for k, v in svc.resolve_related_names(req.related_ids).items()}
    return jsonify(row), 200


@requirement_bp.route("/requirements/<int:req_id>", methods=["PUT"])
def update_requirement(req_id):
    """Update the fields present in the body; changed fields are logged."""
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    changes = svc.update_requirement(req, json_body())
    err = db_commit_or_error()
    if err:
        return err
    svc.log_changes(changes)
    body = req.to_dict()
    body["changes"] = len(changes)
    return jsonify(body), 200


@requirement_bp.route("/requirements/bulk-delete", methods=["POST"])
def bulk_delete_requirements():
    data = json_body()
    try:
        ids = parse_int_list(data.get("ids"))
    except ValueError:
        raise ValidationError("ids must be integers", details={"ids": data.get("ids")})
    if not ids:
        raise ValidationError("ids is required", details={"ids": "required"})
    deleted = svc.delete_requirements(ids)
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Deleted %d requirement(s)", deleted)
    return jsonify({"deleted": deleted}), 200


@requirement_bp.route("/requirements/by-display-id/<int:display_id>", methods=["GET"])
def get_requirement_by_display_id(display_id):
    req = svc.get_requirement_by_display_id(display_id)
    return jsonify(req.to_dict()), 200


@requirement_bp.route("/requirements/related-search", methods=["GET"])
def related_search():
    exclude = request.args.get("exclude_id", type=int)
    rows = svc.search_related(request.args.get("q", ""), exclude_id=exclude)
    return jsonify([
        {
            "id": r.id,
            "display_id": r.display_id,
            "feature_name": r.feature_name,
            "depth_path": r.depth_path,
            "system_name": r.system.name if r.system else None,
        }
        for r in rows
    ]), 200


@requirement_bp.route("/requirements/related-names", methods=["GET"])
def related_names():
    names = svc.resolve_related_names(request.args.get("ids", ""))
    return jsonify({str(k): v for k, v in names.items()}), 200


@requirement_bp.route("/requirements/next-recommended", methods=["GET"])
def next_recommended():
    cycle_id = _cycle_id_arg(required=True)
    svc.get_cycle(cycle_id)
    limit = request.args.get("limit", 5, type=int)
    return jsonify([r.to_dict() for r in svc.get_next_recommended(cycle_id, limit=limit)]), 200


@requirement_bp.route("/requirements/<int:req_id>/history", methods=["GET"])
def requirement_history(req_id):
    req, err = get_or_404(Requirement, req_id)
    if err:
        return err
    limit = request.args.get("limit", type=int)
    return jsonify([c.to_dict() for c in svc.get_change_history(req.id, limit=limit)]), 200


# ═════════════════════════════════════════════════════════════════════════
# IMPORT
# ═════════════════════════════════════════════════════════════════════════

@requirement_bp.route("/requirements/import", methods=["POST"])
def import_sheet():
    """Import an .xlsx / .csv planning sheet for one system.

    Form fields: file, system_id, preview (1 → mapped rows only, no write)
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("file is required", details={"file": "required"})
    content = upload.read()

    if request.form.get("preview") in ("1", "true"):
        return jsonify(preview_import(content, upload.filename)), 200

    result = import_requirements(request.form.get("system_id"), content, upload.filename)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 201
