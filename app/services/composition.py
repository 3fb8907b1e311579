"""
Composition resolver — the two-level scenario graph.

    e2e ──(ordered)──▶ integration ──(ordered)──▶ requirement
                       unit        ──(ordered)──▶ requirement

Transaction policy: flush() only; the route handler commits once.

Replace-all writers (compositions from either side, requirement links)
validate every referenced scenario first and only then delete + insert
inside the caller's transaction. A failed validation writes nothing; a
failed write is rolled back by the caller with the old edges intact.

Reordering works on an in-memory list (``move_item``,
``move_to_position``, ``remove_item``) and is persisted with one
replace-all call.
"""

import logging

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.requirement import Requirement, System
from app.models.scenario import (
    REQUIREMENT_LINK_TYPES,
    ScenarioComposition,
    ScenarioRequirement,
    ScenarioResult,
    TestScenario,
)

logger = logging.getLogger(__name__)


def _load_scenarios(ids) -> dict:
    """One query for every id; missing ids raise before anything is written."""
    ids = list(dict.fromkeys(ids))
    found = {s.id: s for s in TestScenario.query.filter(TestScenario.id.in_(ids)).all()} if ids else {}
    missing = [i for i in ids if i not in found]
    if missing:
        raise ValidationError("Unknown scenario id(s)", details={"missing": missing})
    return found


def _require_type(scenario, expected, role):
    if scenario.scenario_type != expected:
        raise ValidationError(
            f"{role} must be an {expected} scenario",
            details={"scenario_id": scenario.id, "scenario_type": scenario.scenario_type},
        )


def _edge_list(items, id_key):
    """Normalise ``[id, ...]`` or ``[{id_key, order_index}, ...]`` to (id, order) pairs.

    Bare ids take their list position as order_index.
    """
    pairs = []
    for position, item in enumerate(items or []):
        if isinstance(item, dict):
            raw_id = item.get(id_key, item.get("id"))
            order = item.get("order_index", position)
        else:
            raw_id, order = item, position
        try:
            pairs.append((int(raw_id), int(order)))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {id_key}", details={id_key: raw_id})
    ids = [p[0] for p in pairs]
    if len(ids) != len(set(ids)):
        raise ValidationError(f"Duplicate {id_key} in list", details={id_key: ids})
    return pairs


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def get_parent_e2es(child_id) -> list[dict]:
    """E2E parents of an integration scenario, each with its own order_index."""
    rows = (
        db.session.query(ScenarioComposition.order_index, TestScenario.id, TestScenario.title)
        .join(TestScenario, TestScenario.id == ScenarioComposition.parent_id)
        .filter(ScenarioComposition.child_id == child_id)
        .order_by(ScenarioComposition.order_index, TestScenario.title)
        .all()
    )
    return [{"e2e_id": sid, "title": title, "order_index": order} for order, sid, title in rows]


def get_child_integrations(parent_id, cycle_id=None) -> list[dict]:
    """Ordered integration children of an e2e scenario, with cycle results attached."""
    rows = (
        db.session.query(ScenarioComposition.order_index, TestScenario.id, TestScenario.title)
        .join(TestScenario, TestScenario.id == ScenarioComposition.child_id)
        .filter(ScenarioComposition.parent_id == parent_id)
        .order_by(ScenarioComposition.order_index, TestScenario.title)
        .all()
    )
    results = {}
    if cycle_id is not None and rows:
        child_ids = [sid for _order, sid, _title in rows]
        results = {
            r.scenario_id: r
            for r in ScenarioResult.query.filter(
                ScenarioResult.cycle_id == cycle_id,
                ScenarioResult.scenario_id.in_(child_ids),
            ).all()
        }
    return [
        {
            "integration_id": sid,
            "title": title,
            "order_index": order,
            "result": results[sid].to_dict() if sid in results else None,
        }
        for order, sid, title in rows
    ]


def get_linked_requirements(scenario_id) -> list[dict]:
    rows = (
        db.session.query(ScenarioRequirement, Requirement, System.name)
        .join(Requirement, Requirement.id == ScenarioRequirement.requirement_id)
        .join(System, System.id == Requirement.system_id)
        .filter(ScenarioRequirement.scenario_id == scenario_id)
        .order_by(ScenarioRequirement.order_index, ScenarioRequirement.id)
        .all()
    )
    return [
        {
            "requirement_id": req.id,
            "display_id": req.display_id,
            "feature_name": req.feature_name,
            "depth_path": req.depth_path,
            "system_name": system_name,
            "order_index": link.order_index,
            "verify_note": link.verify_note,
        }
        for link, req, system_name in rows
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Replace-all writers
# ═════════════════════════════════════════════════════════════════════════════

def set_compositions_from_child(child_id, parents) -> list[ScenarioComposition]:
    """Replace every edge where ``child_id`` is the child.

    ``parents``: parent ids, or ``{"parent_id", "order_index"}`` dicts
    (order_index is per parent, so each edge keeps its own value).
    """
    pairs = _edge_list(parents, "parent_id")
    scenarios = _load_scenarios([child_id] + [p for p, _ in pairs])
    _require_type(scenarios[child_id], "integration", "Child")
    for parent_id, _order in pairs:
        _require_type(scenarios[parent_id], "e2e", "Parent")

    ScenarioComposition.query.filter_by(child_id=child_id).delete(synchronize_session="fetch")
    edges = [ScenarioComposition(parent_id=p, child_id=child_id, order_index=o) for p, o in pairs]
    db.session.add_all(edges)
    db.session.flush()
    return edges


def set_compositions_from_parent(parent_id, children) -> list[ScenarioComposition]:
    """Replace every edge where ``parent_id`` is the parent."""
    pairs = _edge_list(children, "child_id")
    scenarios = _load_scenarios([parent_id] + [c for c, _ in pairs])
    _require_type(scenarios[parent_id], "e2e", "Parent")
    for child_id, _order in pairs:
        _require_type(scenarios[child_id], "integration", "Child")

    ScenarioComposition.query.filter_by(parent_id=parent_id).delete(synchronize_session="fetch")
    edges = [ScenarioComposition(parent_id=parent_id, child_id=c, order_index=o) for c, o in pairs]
    db.session.add_all(edges)
    db.session.flush()
    return edges


def set_scenario_requirements(scenario_id, items) -> list[ScenarioRequirement]:
    """Ordered replace-all of a unit/integration scenario's requirement links.

    ``items``: requirement ids or ``{"requirement_id", "order_index"?, "verify_note"?}``.
    """
    scenario = _load_scenarios([scenario_id])[scenario_id]
    if scenario.scenario_type not in REQUIREMENT_LINK_TYPES:
        raise ValidationError("e2e scenarios cannot link requirements directly",
                              details={"scenario_id": scenario_id})

    pairs = _edge_list(items, "requirement_id")
    notes = {}
    for item in items or []:
        if isinstance(item, dict) and item.get("verify_note"):
            notes[int(item.get("requirement_id", item.get("id")))] = item["verify_note"]

    req_ids = [r for r, _ in pairs]
    if req_ids:
        found = {r for (r,) in db.session.query(Requirement.id).filter(Requirement.id.in_(req_ids))}
        missing = [r for r in req_ids if r not in found]
        if missing:
            raise ValidationError("Unknown requirement id(s)", details={"missing": missing})

    ScenarioRequirement.query.filter_by(scenario_id=scenario_id).delete(synchronize_session="fetch")
    links = [
        ScenarioRequirement(scenario_id=scenario_id, requirement_id=r, order_index=o,
                            verify_note=notes.get(r))
        for r, o in pairs
    ]
    db.session.add_all(links)
    db.session.flush()
    return links


# ═════════════════════════════════════════════════════════════════════════════
# In-memory reordering
# ═════════════════════════════════════════════════════════════════════════════

def move_item(items, index, direction) -> list:
    """Swap item ``index`` with its neighbour; ``direction`` is "up" or "down".

    Out-of-range moves return an unchanged copy.
    """
    if direction not in ("up", "down"):
        raise ValidationError("direction must be 'up' or 'down'", details={"direction": direction})
    out = list(items)
    target = index - 1 if direction == "up" else index + 1
    if 0 <= index < len(out) and 0 <= target < len(out):
        out[index], out[target] = out[target], out[index]
    return out


def move_to_position(items, from_index, position) -> list:
    """Move one item to 0-based ``position`` (clamped to the list bounds)."""
    out = list(items)
    if not 0 <= from_index < len(out):
        raise ValidationError("Index out of range", details={"index": from_index})
    item = out.pop(from_index)
    position = max(0, min(position, len(out)))
    out.insert(position, item)
    return out


def remove_item(items, index) -> list:
    out = list(items)
    if not 0 <= index < len(out):
        raise ValidationError("Index out of range", details={"index": index})
    del out[index]
    return out


def reorder_children(parent_id, op: dict) -> list[dict]:
    """Apply one reorder op to an e2e scenario's children and persist once.

    ``op``: ``{"action": "move", "index", "direction"}``,
    ``{"action": "move_to", "index", "position"}`` or
    ``{"action": "remove", "index"}``.
    """
    parent = db.session.get(TestScenario, parent_id)
    if not parent:
        raise NotFoundError("TestScenario", parent_id)
    children = [c["integration_id"] for c in get_child_integrations(parent_id)]

    action = op.get("action")
    try:
        index = int(op.get("index"))
    except (TypeError, ValueError):
        raise ValidationError("index is required", details={"index": op.get("index")})

    if action == "move":
        children = move_item(children, index, op.get("direction"))
    elif action == "move_to":
        try:
            position = int(op.get("position"))
        except (TypeError, ValueError):
            raise ValidationError("position is required", details={"position": op.get("position")})
        children = move_to_position(children, index, position)
    elif action == "remove":
        children = remove_item(children, index)
    else:
        raise ValidationError("Unknown reorder action", details={"action": action})

    set_compositions_from_parent(parent_id, children)
    return get_child_integrations(parent_id)
