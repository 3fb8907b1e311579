"""
Scenario service layer — business logic extracted from scenario_bp.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Create and update accept the graph links in the same payload
(``requirements`` for unit/integration, ``parents`` for integration,
``children`` for e2e) and write them in the same transaction as the
scenario row, matching the single Save action of the editor.
"""

import logging

from sqlalchemy import func

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.scenario import (
    REQUIREMENT_LINK_TYPES,
    SCENARIO_STATUSES,
    SCENARIO_TYPES,
    ScenarioComposition,
    ScenarioRequirement,
    ScenarioResult,
    TestScenario,
)
from app.services import composition

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("business_context", "precondition", "steps", "expected_result")


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
    return value or None


def get_scenario(scenario_id) -> TestScenario:
    scenario = db.session.get(TestScenario, scenario_id)
    if not scenario:
        raise NotFoundError("TestScenario", scenario_id)
    return scenario


def _system_ids(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("system_ids must be a list", details={"system_ids": raw})
    try:
        return [int(s) for s in raw]
    except (TypeError, ValueError):
        raise ValidationError("system_ids must be integers", details={"system_ids": raw})


def _apply_fields(scenario, data, creating=False):
    if creating or "title" in data:
        title = _clean(data.get("title"))
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        scenario.title = title
    if creating or "scenario_type" in data:
        scenario_type = data.get("scenario_type") or "integration"
        if scenario_type not in SCENARIO_TYPES:
            raise ValidationError("Invalid scenario_type", details={"scenario_type": scenario_type})
        scenario.scenario_type = scenario_type
    if creating or "status" in data:
        status = data.get("status") or "active"
        if status not in SCENARIO_STATUSES:
            raise ValidationError("Invalid status", details={"status": status})
        scenario.status = status
    if creating or "system_ids" in data:
        scenario.system_ids = _system_ids(data.get("system_ids"))
    for f in _TEXT_FIELDS:
        if creating or f in data:
            setattr(scenario, f, _clean(data.get(f)))
    if "ai_generated" in data:
        scenario.ai_generated = bool(data["ai_generated"])


def _apply_links(scenario, data):
    if "requirements" in data and scenario.scenario_type in REQUIREMENT_LINK_TYPES:
        composition.set_scenario_requirements(scenario.id, data["requirements"])
    if "parents" in data and scenario.scenario_type == "integration":
        composition.set_compositions_from_child(scenario.id, data["parents"])
    if "children" in data and scenario.scenario_type == "e2e":
        composition.set_compositions_from_parent(scenario.id, data["children"])


def create_scenario(data) -> TestScenario:
    scenario = TestScenario()
    _apply_fields(scenario, data, creating=True)
    db.session.add(scenario)
    db.session.flush()
    _apply_links(scenario, data)
    return scenario


def update_scenario(scenario, data) -> TestScenario:
    """Update fields and any links present in the payload.

    Changing the type drops links the new type may not hold.
    """
    old_type = scenario.scenario_type
    _apply_fields(scenario, data)
    if scenario.scenario_type != old_type:
        if scenario.scenario_type not in REQUIREMENT_LINK_TYPES:
            ScenarioRequirement.query.filter_by(scenario_id=scenario.id).delete(synchronize_session="fetch")
        if scenario.scenario_type != "integration":
            ScenarioComposition.query.filter_by(child_id=scenario.id).delete(synchronize_session="fetch")
        if scenario.scenario_type != "e2e":
            ScenarioComposition.query.filter_by(parent_id=scenario.id).delete(synchronize_session="fetch")
        logger.info("Scenario %s type %s → %s; incompatible links removed",
                    scenario.id, old_type, scenario.scenario_type)
    db.session.flush()
    _apply_links(scenario, data)
    return scenario


def delete_scenario(scenario):
    """Delete the scenario with its links, compositions (both roles) and results."""
    sid = scenario.id
    ScenarioRequirement.query.filter_by(scenario_id=sid).delete(synchronize_session="fetch")
    ScenarioComposition.query.filter(
        (ScenarioComposition.parent_id == sid) | (ScenarioComposition.child_id == sid)
    ).delete(synchronize_session="fetch")
    ScenarioResult.query.filter_by(scenario_id=sid).delete(synchronize_session="fetch")
    db.session.delete(scenario)
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def list_scenarios(cycle_id=None, filters=None) -> list[dict]:
    """Scenario rows with link counts, cycle result and graph context.

    filters: scenario_type, status, q (title substring), system_id,
    e2e (integration only: ``"none"`` or an e2e scenario id).
    Newest first. Counts, results and parent edges are each one query.
    """
    filters = filters or {}
    query = TestScenario.query
    if filters.get("scenario_type"):
        query = query.filter(TestScenario.scenario_type == filters["scenario_type"])
    if filters.get("status"):
        query = query.filter(TestScenario.status == filters["status"])
    if filters.get("q"):
        query = query.filter(TestScenario.title.ilike(f"%{filters['q']}%"))
    scenarios = query.order_by(TestScenario.created_at.desc(), TestScenario.id.desc()).all()

    if filters.get("system_id") is not None:
        wanted = int(filters["system_id"])
        scenarios = [s for s in scenarios if wanted in (s.system_ids or [])]

    req_counts = dict(
        db.session.query(ScenarioRequirement.scenario_id, func.count(ScenarioRequirement.id))
        .group_by(ScenarioRequirement.scenario_id).all()
    )
    child_counts = dict(
        db.session.query(ScenarioComposition.parent_id, func.count(ScenarioComposition.child_id))
        .group_by(ScenarioComposition.parent_id).all()
    )
    parents_by_child: dict[int, list] = {}
    edges = (
        db.session.query(ScenarioComposition.child_id, ScenarioComposition.order_index,
                         TestScenario.id, TestScenario.title)
        .join(TestScenario, TestScenario.id == ScenarioComposition.parent_id)
        .order_by(ScenarioComposition.order_index, TestScenario.title)
        .all()
    )
    for child_id, order, parent_id, title in edges:
        parents_by_child.setdefault(child_id, []).append(
            {"e2e_id": parent_id, "title": title, "order_index": order},
        )
    results = {}
    if cycle_id is not None:
        results = {
            r.scenario_id: r for r in ScenarioResult.query.filter_by(cycle_id=cycle_id).all()
        }

    e2e_filter = filters.get("e2e")
    rows = []
    for s in scenarios:
        parents = parents_by_child.get(s.id, []) if s.scenario_type == "integration" else []
        if e2e_filter and s.scenario_type == "integration":
            if e2e_filter == "none":
                if parents:
                    continue
            elif not any(str(p["e2e_id"]) == str(e2e_filter) for p in parents):
                continue
        row = s.to_dict()
        row["req_count"] = req_counts.get(s.id, 0)
        row["result"] = results[s.id].to_dict() if s.id in results else None
        row["parent_e2es"] = parents
        row["child_count"] = child_counts.get(s.id, 0) if s.scenario_type == "e2e" else 0
        rows.append(row)
    return rows


def get_scenario_detail(scenario_id, cycle_id=None) -> dict:
    scenario = get_scenario(scenario_id)
    detail = scenario.to_dict()
    detail["linked_requirements"] = (
        composition.get_linked_requirements(scenario.id)
        if scenario.scenario_type in REQUIREMENT_LINK_TYPES else []
    )
    detail["parent_e2es"] = (
        composition.get_parent_e2es(scenario.id) if scenario.scenario_type == "integration" else []
    )
    detail["children"] = (
        composition.get_child_integrations(scenario.id, cycle_id)
        if scenario.scenario_type == "e2e" else []
    )
    result = None
    if cycle_id is not None:
        result = ScenarioResult.query.filter_by(scenario_id=scenario.id, cycle_id=cycle_id).first()
    detail["result"] = result.to_dict() if result else None
    return detail
