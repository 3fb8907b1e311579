"""
QA Tracking Dashboard
Aggregation engine — status counts, progress rates and grouped views.

Pure functions over a snapshot of rows. Inputs may be ORM instances or
plain dicts; nothing here touches the session.

Callers pre-index results by entity id (``index_results``) and pass a
``status_of`` callable so every count is a single O(n) pass.

StatusCount shape::

    {"Pass": int, "Fail": int, "Block": int, "In Progress": int,
     "미테스트": int, "total": int}

plus ``"unknown": int`` only when a row carried a status outside the five
buckets. ``total`` always equals the number of items counted.
"""

import logging

from app.models.scenario import SCENARIO_TYPES
from app.models.testing import RESULT_STATUSES, TESTED_STATUSES, UNTESTED

logger = logging.getLogger(__name__)

UNKNOWN_BUCKET = "unknown"
SCENARIO_TYPE_ORDER = ("unit", "integration", "e2e")


def _get(obj, name, default=None):
    """Attribute or key access, so dict rows and ORM rows both work."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def index_results(results, key="requirement_id") -> dict:
    """Map entity id → result row. Later rows win on duplicate keys."""
    return {_get(r, key): r for r in results}


def result_status(result) -> str:
    """Status of a (possibly missing) result row."""
    if result is None:
        return UNTESTED
    return _get(result, "status") or UNTESTED


def status_lookup(results_by_id: dict, key="id"):
    """Build a ``status_of`` callable over a pre-indexed result map."""
    def status_of(item):
        return result_status(results_by_id.get(_get(item, key)))
    return status_of


def empty_counts() -> dict:
    counts = {status: 0 for status in RESULT_STATUSES}
    counts["total"] = 0
    return counts


# ═════════════════════════════════════════════════════════════════════════════
# Counting
# ═════════════════════════════════════════════════════════════════════════════

def compute_status_counts(items, status_of) -> dict:
    """Count items per status bucket.

    A ``None`` status counts as untested. A status outside the five known
    buckets is logged as a data error and counted under ``unknown``; it is
    never dropped from ``total``.
    """
    counts = empty_counts()
    for item in items:
        status = status_of(item) or UNTESTED
        if status in counts and status != "total":
            counts[status] += 1
        else:
            logger.error("Unknown result status %r on %r", status, item)
            counts[UNKNOWN_BUCKET] = counts.get(UNKNOWN_BUCKET, 0) + 1
        counts["total"] += 1
    return counts


def compute_progress_rate(counts: dict) -> int:
    """Percentage of items with any tested status, rounded half-up.

    Integer arithmetic only, so the same counts always give the same rate.
    """
    total = counts.get("total", 0)
    if total <= 0:
        return 0
    done = sum(counts.get(status, 0) for status in TESTED_STATUSES)
    return (200 * done + total) // (2 * total)


# ═════════════════════════════════════════════════════════════════════════════
# Grouped views
# ═════════════════════════════════════════════════════════════════════════════

def group_by_system(requirements, systems, results_by_req: dict) -> list[dict]:
    """One entry per system, in ``systems`` order, zero-filled when empty."""
    status_of = status_lookup(results_by_req)
    by_system = {_get(s, "id"): [] for s in systems}
    for req in requirements:
        bucket = by_system.get(_get(req, "system_id"))
        if bucket is not None:
            bucket.append(req)

    out = []
    for system in systems:
        counts = compute_status_counts(by_system[_get(system, "id")], status_of)
        out.append({
            "system": {"id": _get(system, "id"), "name": _get(system, "name")},
            "counts": counts,
            "progress_rate": compute_progress_rate(counts),
        })
    return out


def group_by_feature_area(requirements, results_by_req: dict, systems=None) -> list[dict]:
    """Group by ``(system_id, depth_0)`` in first-occurrence order.

    Requirements with an empty ``depth_0`` are left out of this view; they
    still count in the per-system totals.
    """
    status_of = status_lookup(results_by_req)
    names = {_get(s, "id"): _get(s, "name") for s in (systems or [])}
    groups: dict[tuple, list] = {}
    for req in requirements:
        depth_0 = (_get(req, "depth_0") or "").strip()
        if not depth_0:
            continue
        groups.setdefault((_get(req, "system_id"), depth_0), []).append(req)

    out = []
    for (system_id, depth_0), members in groups.items():
        counts = compute_status_counts(members, status_of)
        out.append({
            "system_id": system_id,
            "system_name": names.get(system_id),
            "depth_0": depth_0,
            "counts": counts,
            "progress_rate": compute_progress_rate(counts),
        })
    return out


# ═════════════════════════════════════════════════════════════════════════════
# Issue statistics
# ═════════════════════════════════════════════════════════════════════════════

def compute_issue_stats(results, status_filter=frozenset({"Fail", "Block"})) -> dict:
    """Fail/Block counts plus raised/fixed completion.

    Two completion metrics are reported side by side and never summed:
        items   — raised/fixed flags summed over every issue item
        results — per-result ``issue_raised`` / ``issue_fixed`` booleans
    ``basis`` names the one the headline counts come from: ``items`` when
    any filtered row carries issue items, otherwise ``results``.
    """
    filtered = [r for r in results if result_status(r) in status_filter]

    items_total = items_raised = items_fixed = 0
    results_raised = results_fixed = 0
    for row in filtered:
        for item in _get(row, "issue_items") or []:
            items_total += 1
            items_raised += bool(_get(item, "raised"))
            items_fixed += bool(_get(item, "fixed"))
        results_raised += bool(_get(row, "issue_raised"))
        results_fixed += bool(_get(row, "issue_fixed"))

    basis = "items" if items_total else "results"
    return {
        "fail_count": sum(1 for r in filtered if result_status(r) == "Fail"),
        "block_count": sum(1 for r in filtered if result_status(r) == "Block"),
        "basis": basis,
        "issue_raised_count": items_raised if basis == "items" else results_raised,
        "issue_fixed_count": items_fixed if basis == "items" else results_fixed,
        "items": {"total": items_total, "raised": items_raised, "fixed": items_fixed},
        "results": {"raised": results_raised, "fixed": results_fixed},
    }


def compute_issue_board(rows) -> dict:
    """Issue board summary over ``(requirement, result)`` pairs.

    ``rows`` should already be narrowed to the issue-bearing requirements.
    Item-level buckets are mutually exclusive except ``fixed``/``raised``:
    an item counts as ``raised`` only while it is not yet fixed.
    """
    item_stats = {"total": 0, "not_raised": 0, "raised": 0, "fixed": 0,
                  "critical": 0, "high": 0}
    req_stats = {"total": 0, "raised": 0, "fixed": 0, "need_retest": 0}

    for _req, result in rows:
        req_stats["total"] += 1
        if result is None:
            continue
        req_stats["raised"] += bool(_get(result, "issue_raised"))
        req_stats["fixed"] += bool(_get(result, "issue_fixed"))
        req_stats["need_retest"] += bool(_get(result, "retest_reason"))
        for item in _get(result, "issue_items") or []:
            if not _get(item, "text"):
                continue
            item_stats["total"] += 1
            raised, fixed = bool(_get(item, "raised")), bool(_get(item, "fixed"))
            if not raised:
                item_stats["not_raised"] += 1
            if raised and not fixed:
                item_stats["raised"] += 1
            if fixed:
                item_stats["fixed"] += 1
            severity = _get(item, "severity")
            if severity in ("critical", "high"):
                item_stats[severity] += 1
    return {"items": item_stats, "requirements": req_stats}


# ═════════════════════════════════════════════════════════════════════════════
# Scenario statistics
# ═════════════════════════════════════════════════════════════════════════════

def compute_scenario_stats(scenarios, results, cycle_id) -> dict:
    """Active scenarios only, with the same five-bucket model split by type."""
    active = [s for s in scenarios if _get(s, "status") == "active"]
    in_cycle = [r for r in results if _get(r, "cycle_id") == cycle_id]
    status_of = status_lookup(index_results(in_cycle, key="scenario_id"))

    total = compute_status_counts(active, status_of)
    by_type = {}
    for scenario_type in SCENARIO_TYPE_ORDER:
        members = [s for s in active if _get(s, "scenario_type") == scenario_type]
        counts = compute_status_counts(members, status_of)
        by_type[scenario_type] = {
            "counts": counts,
            "progress_rate": compute_progress_rate(counts),
        }

    stray = [s for s in active if _get(s, "scenario_type") not in SCENARIO_TYPES]
    if stray:
        logger.error("Scenarios with unknown type excluded from by_type: %s",
                     [_get(s, "id") for s in stray])

    return {
        "total": total,
        "progress_rate": compute_progress_rate(total),
        "by_type": by_type,
    }
