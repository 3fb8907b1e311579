"""
Issue views — issue tab (item / requirement), backlog board and test queue.

Read-only over one cycle snapshot.

    issue requirements  status Fail, or any issue items, and never Block
    issue rows          one per issue item that has text
    backlog board       every Fail / Block requirement
    test queue          untested, or flagged for retest; priority first,
                        retests ahead of fresh items at equal priority
"""

from app.models.testing import UNTESTED
from app.services import aggregation
from app.services.dashboard_service import load_snapshot
from app.services.requirement_filters import (
    PRIORITY_RANK,
    PRIORITY_RANK_NONE,
    IssueFilter,
    filter_issue_requirements,
    filter_issue_rows,
)


def _pairs(cycle_id):
    requirements, results_by_req, _systems = load_snapshot(cycle_id)
    return [(req, results_by_req.get(req.id)) for req in requirements]


def _is_issue_requirement(result) -> bool:
    if result is None:
        return False
    return (result.status == "Fail" or bool(result.issue_items)) and result.status != "Block"


def issue_requirements(cycle_id) -> list[tuple]:
    return [(req, res) for req, res in _pairs(cycle_id) if _is_issue_requirement(res)]


def build_issue_rows(pairs) -> list[dict]:
    rows = []
    for req, result in pairs:
        for index, item in enumerate(result.issue_items or []):
            if item.get("text"):
                rows.append({"requirement": req, "result": result, "item_index": index, "item": item})
    return rows


def _summary(req) -> dict:
    return {
        "id": req.id,
        "display_id": req.display_id,
        "system_id": req.system_id,
        "system_name": req.system.name if req.system else None,
        "feature_name": req.feature_name,
        "depth_path": req.depth_path,
        "priority": req.priority,
    }


def issue_view(cycle_id, issue_filter: IssueFilter | None = None) -> dict:
    """Both views of the issue tab plus the item-level stats (unfiltered)."""
    issue_filter = issue_filter or IssueFilter()
    pairs = issue_requirements(cycle_id)
    rows = build_issue_rows(pairs)
    board = aggregation.compute_issue_board(pairs)

    return {
        "stats": board["items"],
        "systems": sorted({req.system_id for req, _ in pairs}),
        "by_item": [
            {
                "requirement": _summary(r["requirement"]),
                "item_index": r["item_index"],
                "item": r["item"],
                "retest_reason": r["result"].retest_reason,
            }
            for r in filter_issue_rows(rows, issue_filter)
        ],
        "by_requirement": [
            {"requirement": _summary(req), "result": res.to_dict() if res else None}
            for req, res in filter_issue_requirements(pairs, issue_filter)
        ],
    }


def backlog_board(cycle_id, view="all") -> dict:
    """Fail / Block requirements with raised / fixed / retest counts.

    ``view``: all | not_raised | raised | fixed (per-result flags).
    """
    pairs = [
        (req, res) for req, res in _pairs(cycle_id)
        if res is not None and res.status in ("Fail", "Block")
    ]
    board = aggregation.compute_issue_board(pairs)
    if view != "all":
        pairs = filter_issue_requirements(pairs, IssueFilter(states=frozenset({view})))
    return {
        "stats": board["requirements"],
        "items": [
            {"requirement": _summary(req), "result": res.to_dict()} for req, res in pairs
        ],
    }


def test_queue(cycle_id) -> dict:
    """Untested plus retest-flagged requirements in work order."""
    queue = []
    for req, res in _pairs(cycle_id):
        status = aggregation.result_status(res)
        # An untested row with a reason still counts (and ranks) as a retest
        retest = res is not None and bool(res.retest_reason)
        if status == UNTESTED or retest:
            queue.append((req, res, retest))
    queue.sort(key=lambda t: (PRIORITY_RANK.get(t[0].priority, PRIORITY_RANK_NONE), 0 if t[2] else 1))
    return {
        "untested": sum(1 for t in queue if not t[2]),
        "retest": sum(1 for t in queue if t[2]),
        "items": [
            {"requirement": _summary(req), "result": res.to_dict() if res else None, "retest": retest}
            for req, res, retest in queue
        ],
    }
