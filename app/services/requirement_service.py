"""
Requirement service layer — business logic extracted from requirement_bp.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Exception: ``log_changes`` commits its own unit. It runs after the
primary commit and swallows store errors, so a failed history append
never fails or rolls back the edit it describes.

Extracted operations:
- Systems / cycles: list, create, close
- Requirement create (single + bulk) with display_id assignment
- Requirement update with tracked-field diffs
- Chunked bulk delete
- Related-requirement search and display-id lookups
- Change history append + read
- Next recommended (untested) requirements for a cycle
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.requirement import (
    DEFAULT_SYSTEMS,
    DEPTH_FIELDS,
    Requirement,
    RequirementChange,
    System,
    format_related_ids,
    normalize_priority,
    parse_related_ids,
)
from app.models.scenario import ScenarioRequirement
from app.models.testing import TestCycle, TestResult, UNTESTED

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "feature_name", "original_spec",
    "precondition", "test_steps", "expected_result",
    "scenario_link", "backlog_link",
)

RELATED_SEARCH_LIMIT = 8


def _clean(value):
    """Strip strings; empty → None so blanks are stored as NULL."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _priority(value):
    try:
        return normalize_priority(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"priority": value})


def change_entry(requirement_id, changed_field, old_value, new_value, reason=None) -> dict:
    """Pending audit row, written later by ``log_changes``."""
    return {
        "requirement_id": requirement_id,
        "changed_field": changed_field,
        "old_value": None if old_value is None else str(old_value),
        "new_value": None if new_value is None else str(new_value),
        "change_reason": reason,
    }


def _format_related(raw) -> str | None:
    ids = parse_related_ids(raw)
    return ", ".join(f"#{n}" for n in ids) if ids else None


# ═════════════════════════════════════════════════════════════════════════════
# Systems & cycles
# ═════════════════════════════════════════════════════════════════════════════

def list_systems() -> list[System]:
    return System.query.order_by(System.id).all()


def create_system(name) -> System:
    name = _clean(name)
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if System.query.filter_by(name=name).first():
        raise ConflictError("System", "name", name)
    system = System(name=name)
    db.session.add(system)
    db.session.flush()
    return system


def seed_systems() -> int:
    """Create any missing default system. Returns how many were added."""
    existing = {s.name for s in System.query.all()}
    missing = [name for name in DEFAULT_SYSTEMS if name not in existing]
    for name in missing:
        db.session.add(System(name=name))
    db.session.flush()
    return len(missing)


def list_cycles() -> list[TestCycle]:
    return TestCycle.query.order_by(TestCycle.started_at.desc(), TestCycle.id.desc()).all()


def create_cycle(name) -> TestCycle:
    name = _clean(name)
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    cycle = TestCycle(name=name, started_at=datetime.now(timezone.utc))
    db.session.add(cycle)
    db.session.flush()
    return cycle


def close_cycle(cycle: TestCycle) -> TestCycle:
    if cycle.ended_at is None:
        cycle.ended_at = datetime.now(timezone.utc)
        db.session.flush()
    return cycle


def get_cycle(cycle_id) -> TestCycle:
    cycle = db.session.get(TestCycle, cycle_id)
    if not cycle:
        raise NotFoundError("TestCycle", cycle_id)
    return cycle


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

def _next_display_id() -> int:
    current = db.session.query(db.func.max(Requirement.display_id)).scalar()
    return (current or 0) + 1


def _require_system(system_id) -> System:
    if system_id in (None, ""):
        raise ValidationError("system_id is required", details={"system_id": "required"})
    try:
        system = db.session.get(System, int(system_id))
    except (TypeError, ValueError):
        system = None
    if not system:
        raise ValidationError("Unknown system", details={"system_id": system_id})
    return system


def _build_requirement(system_id, data, display_id) -> Requirement:
    req = Requirement(system_id=system_id, display_id=display_id)
    for f in DEPTH_FIELDS + TEXT_FIELDS:
        setattr(req, f, _clean(data.get(f)))
    req.priority = _priority(data.get("priority"))
    req.related_ids = format_related_ids(data.get("related_ids"))
    req.current_policy = _clean(data.get("current_policy"))
    req.policy_note = _clean(data.get("policy_note"))
    if req.current_policy:
        req.policy_updated_at = datetime.now(timezone.utc)
    return req


def create_requirement(data) -> Requirement:
    """Create one requirement. ``system_id`` is required."""
    system = _require_system(data.get("system_id"))
    req = _build_requirement(system.id, data, _next_display_id())
    db.session.add(req)
    db.session.flush()
    return req


def bulk_create_requirements(system_id, rows) -> int:
    """Create requirements in row order with consecutive display ids."""
    system = _require_system(system_id)
    display_id = _next_display_id()
    for row in rows:
        db.session.add(_build_requirement(system.id, row, display_id))
        display_id += 1
    db.session.flush()
    return len(rows)


# ═════════════════════════════════════════════════════════════════════════════
# Update (with diff)
# ═════════════════════════════════════════════════════════════════════════════

def update_requirement(requirement: Requirement, data) -> list[dict]:
    """Apply the keys present in ``data``; return pending change entries.

    The depth path is diffed and logged as one ``path`` change. The
    system is logged by name, related ids as ``#n`` lists, and a policy
    change carries ``policy_note`` as its reason and restamps
    ``policy_updated_at``.
    """
    changes = []
    rid = requirement.id

    for f in TEXT_FIELDS:
        if f in data:
            new = _clean(data[f])
            if new != getattr(requirement, f):
                changes.append(change_entry(rid, f, getattr(requirement, f), new))
                setattr(requirement, f, new)

    if "system_id" in data and data["system_id"] != requirement.system_id:
        system = _require_system(data["system_id"])
        if system.id != requirement.system_id:
            old_name = requirement.system.name if requirement.system else None
            changes.append(change_entry(rid, "system", old_name, system.name))
            requirement.system_id = system.id
            requirement.system = system

    if any(f in data for f in DEPTH_FIELDS):
        old_path = requirement.depth_path
        for f in DEPTH_FIELDS:
            if f in data:
                setattr(requirement, f, _clean(data[f]))
        new_path = requirement.depth_path
        if new_path != old_path:
            changes.append(change_entry(rid, "path", old_path or None, new_path or None))

    if "priority" in data:
        new = _priority(data["priority"])
        if new != requirement.priority:
            changes.append(change_entry(rid, "priority", requirement.priority, new))
            requirement.priority = new

    if "related_ids" in data:
        new = format_related_ids(data["related_ids"])
        if new != requirement.related_ids:
            changes.append(change_entry(
                rid, "related_ids",
                _format_related(requirement.related_ids), _format_related(new),
            ))
            requirement.related_ids = new

    if "current_policy" in data:
        new = _clean(data["current_policy"])
        note = _clean(data.get("policy_note"))
        if new != requirement.current_policy:
            changes.append(change_entry(rid, "current_policy", requirement.current_policy, new, reason=note))
            requirement.current_policy = new
            requirement.policy_note = note
            requirement.policy_updated_at = datetime.now(timezone.utc)
    elif "policy_note" in data:
        requirement.policy_note = _clean(data["policy_note"])

    db.session.flush()
    return changes


# ═════════════════════════════════════════════════════════════════════════════
# Delete
# ═════════════════════════════════════════════════════════════════════════════

def delete_requirements(ids) -> int:
    """Bulk delete in chunks. Dependent rows are removed chunk by chunk."""
    ids = [int(i) for i in ids]
    chunk = current_app.config.get("REQUIREMENT_DELETE_CHUNK", 100)
    deleted = 0
    for start in range(0, len(ids), chunk):
        batch = ids[start:start + chunk]
        for model in (TestResult, RequirementChange, ScenarioRequirement):
            model.query.filter(model.requirement_id.in_(batch)).delete(synchronize_session=False)
        deleted += Requirement.query.filter(Requirement.id.in_(batch)).delete(
            synchronize_session=False,
        )
    db.session.flush()
    db.session.expire_all()
    return deleted


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════

def get_requirement_by_display_id(display_id) -> Requirement:
    req = Requirement.query.filter_by(display_id=display_id).first()
    if not req:
        raise NotFoundError("Requirement", f"#{display_id}")
    return req


def search_related(query, exclude_id=None) -> list[Requirement]:
    """Candidate related requirements for the picker.

    A numeric query matches the display id or the feature name; any other
    query matches the feature name or the first two depth levels.
    """
    text = (query or "").strip().lstrip("#")
    if not text:
        return []
    pattern = f"%{text}%"
    q = Requirement.query
    if text.isdigit():
        q = q.filter(or_(Requirement.display_id == int(text),
                         Requirement.feature_name.ilike(pattern)))
    else:
        q = q.filter(or_(Requirement.feature_name.ilike(pattern),
                         Requirement.depth_0.ilike(pattern),
                         Requirement.depth_1.ilike(pattern)))
    if exclude_id is not None:
        q = q.filter(Requirement.id != exclude_id)
    return q.order_by(Requirement.display_id).limit(RELATED_SEARCH_LIMIT).all()


def resolve_related_names(display_ids) -> dict:
    """``{display_id: {id, name, system_name}}`` for the given display ids."""
    ids = parse_related_ids(display_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(Requirement, System.name)
        .join(System, Requirement.system_id == System.id)
        .filter(Requirement.display_id.in_(ids))
        .all()
    )
    return {
        req.display_id: {"id": req.id, "name": req.feature_name, "system_name": system_name}
        for req, system_name in rows
    }


def get_next_recommended(cycle_id, limit=5) -> list[Requirement]:
    """Requirements still untested in the cycle, in creation order."""
    tested = db.select(TestResult.requirement_id).where(
        TestResult.cycle_id == cycle_id, TestResult.status != UNTESTED,
    )
    return (
        Requirement.query
        .filter(Requirement.id.notin_(tested))
        .order_by(Requirement.display_id, Requirement.id)
        .limit(limit)
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Change history
# ═════════════════════════════════════════════════════════════════════════════

def log_changes(entries) -> int:
    """Append audit rows and commit them. Best-effort.

    Store failures are rolled back, logged as warnings and swallowed.
    Returns the number of rows written (0 on failure).
    """
    entries = [e for e in entries or [] if e]
    if not entries:
        return 0
    try:
        for entry in entries:
            db.session.add(RequirementChange(**entry))
        db.session.commit()
        return len(entries)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning(
            "Change history append failed for requirement(s) %s: %s",
            sorted({e["requirement_id"] for e in entries}), exc,
        )
        return 0


def get_change_history(requirement_id, limit=None) -> list[RequirementChange]:
    limit = limit or current_app.config.get("CHANGE_HISTORY_LIMIT", 20)
    return (
        RequirementChange.query
        .filter_by(requirement_id=requirement_id)
        .order_by(RequirementChange.changed_at.desc(), RequirementChange.id.desc())
        .limit(limit)
        .all()
    )
