"""
Result service — per-(entity, cycle) outcome state machine.

Transaction policy: flush() only, never commit(). The route handler
commits once; on commit failure it rolls back and answers with the
``previous_status`` this module hands back, so the client can restore
the status it optimistically showed.

State model:
    미테스트 (no row) → Pass | Fail | Block | In Progress, and any of
    those to any other. No terminal state.

Every status change upserts the (entity, cycle) row and stamps
``tested_at``. For requirements the caller also receives a change entry
(old → new status, tester as reason) to append to the audit log.

Issue items are normalised at the boundary: rich ``issue_items`` and
the legacy ``issue_ids`` + flags payload both become the rich list.
``issue_raised`` / ``issue_fixed`` / ``issue_ids`` are recomputed from
that list on every save.
"""

import logging
from datetime import datetime, timezone

from app.core.exceptions import ValidationError
from app.models import db
from app.models.scenario import ScenarioResult
from app.models.testing import (
    ISSUE_SEVERITIES,
    RESULT_STATUSES,
    RETEST_REASONS,
    SEVERITY_ALIASES,
    SEVERITY_UNSET,
    TestResult,
    UNTESTED,
)
from app.services.requirement_service import change_entry

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Issue items
# ═════════════════════════════════════════════════════════════════════════════

def _normalize_severity(value):
    if value in (None, "", SEVERITY_UNSET, "미설정"):
        return None
    severity = SEVERITY_ALIASES.get(value, str(value).lower())
    if severity not in ISSUE_SEVERITIES:
        raise ValidationError("Invalid issue severity", details={"severity": value})
    return severity


def _normalize_item(raw) -> dict:
    if isinstance(raw, str):
        raw = {"text": raw}
    if not isinstance(raw, dict):
        raise ValidationError("Issue items must be objects", details={"item": repr(raw)})
    item = {
        "text": (raw.get("text") or "").strip(),
        "raised": bool(raw.get("raised")),
        "fixed": bool(raw.get("fixed")),
    }
    issue_no = raw.get("issue_no", raw.get("issueNo"))
    if issue_no not in (None, ""):
        item["issue_no"] = str(issue_no).strip()
    severity = _normalize_severity(raw.get("severity"))
    if severity:
        item["severity"] = severity
    return item


def normalize_issue_items(payload: dict):
    """Rich issue list from either payload shape, or None when neither is present.

    Legacy shape: ``issue_ids`` (comma-joined numbers) with the result-level
    ``issue_raised`` / ``issue_fixed`` flags applied to every item.
    """
    if "issue_items" in payload:
        items = payload["issue_items"] or []
        if not isinstance(items, list):
            raise ValidationError("issue_items must be a list")
        return [_normalize_item(i) for i in items]

    if "issue_ids" in payload:
        raised = bool(payload.get("issue_raised"))
        fixed = bool(payload.get("issue_fixed"))
        tokens = [t.strip() for t in str(payload["issue_ids"] or "").split(",") if t.strip()]
        return [
            {"text": token, "issue_no": token, "raised": raised, "fixed": fixed}
            for token in tokens
        ]
    return None


def derive_issue_flags(items) -> tuple[bool, bool]:
    """(raised, fixed): each true iff the list is non-empty and every item has it."""
    items = list(items or [])
    if not items:
        return False, False
    return all(i.get("raised") for i in items), all(i.get("fixed") for i in items)


def legacy_issue_ids(items) -> str | None:
    numbers = [i["issue_no"] for i in items or [] if i.get("issue_no")]
    return ",".join(numbers) if numbers else None


def _apply_issue_items(result, items):
    result.issue_items = items
    result.issue_raised, result.issue_fixed = derive_issue_flags(items)
    result.issue_ids = legacy_issue_ids(items)


# ═════════════════════════════════════════════════════════════════════════════
# Validation helpers
# ═════════════════════════════════════════════════════════════════════════════

def _check_status(status):
    if status not in RESULT_STATUSES:
        raise ValidationError("Invalid status", details={"status": status,
                                                         "allowed": list(RESULT_STATUSES)})
    return status


def _check_retest_reason(reason):
    reason = reason or None
    if reason is not None and reason not in RETEST_REASONS:
        raise ValidationError("Invalid retest_reason", details={"retest_reason": reason})
    return reason


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
    return value or None


# ═════════════════════════════════════════════════════════════════════════════
# Requirement results
# ═════════════════════════════════════════════════════════════════════════════

def get_result(requirement_id, cycle_id) -> TestResult | None:
    return TestResult.query.filter_by(requirement_id=requirement_id, cycle_id=cycle_id).first()


def current_status(requirement_id, cycle_id) -> str:
    result = get_result(requirement_id, cycle_id)
    return result.status if result else UNTESTED


def upsert_test_result(requirement, cycle, data: dict) -> TestResult:
    """Create or update the single result row for ``(requirement, cycle)``.

    Only keys present in ``data`` are applied. ``tested_at`` is always
    restamped.
    """
    result = get_result(requirement.id, cycle.id)
    if result is None:
        result = TestResult(requirement_id=requirement.id, cycle_id=cycle.id,
                            status=UNTESTED, issue_items=[])
        db.session.add(result)

    if "status" in data:
        result.status = _check_status(data["status"])
    if "tester" in data:
        result.tester = _clean(data["tester"])
    if "note" in data:
        result.note = _clean(data["note"])
    if "retest_reason" in data:
        result.retest_reason = _check_retest_reason(data["retest_reason"])

    items = normalize_issue_items(data)
    if items is not None:
        _apply_issue_items(result, items)
    elif result.issue_items is None:
        _apply_issue_items(result, [])

    result.tested_at = datetime.now(timezone.utc)
    db.session.flush()
    return result


def set_status(requirement, cycle, status, tester=None):
    """Direct status transition.

    Returns ``(result, previous_status, changes)``. Re-selecting the
    current status is a no-op: nothing is written and ``changes`` is empty.
    """
    _check_status(status)
    previous = current_status(requirement.id, cycle.id)
    if status == previous:
        return get_result(requirement.id, cycle.id), previous, []

    data = {"status": status}
    if tester is not None:
        data["tester"] = tester
    result = upsert_test_result(requirement, cycle, data)
    logger.info("Requirement #%s cycle %s: %s → %s", requirement.display_id, cycle.id, previous, status)
    return result, previous, [
        change_entry(requirement.id, "status", previous, status, reason=_clean(tester)),
    ]


def set_retest_reason(requirement, cycle, reason):
    """Set or clear the retest flag without touching status.

    Returns ``(result, changes)``.
    """
    reason = _check_retest_reason(reason)
    existing = get_result(requirement.id, cycle.id)
    previous = existing.retest_reason if existing else None
    result = upsert_test_result(requirement, cycle, {"retest_reason": reason})
    changes = []
    if reason != previous:
        changes.append(change_entry(requirement.id, "retest_reason", previous, reason))
    return result, changes


def _flag_label(value, yes, no):
    return yes if value else no


def save_result(requirement, cycle, data: dict):
    """Full detail-panel save for one cycle.

    Returns ``(result, previous_status, changes)``; changes cover the
    status, retest reason and the derived raised / fixed flags.
    """
    existing = get_result(requirement.id, cycle.id)
    prev_status = existing.status if existing else UNTESTED
    prev_retest = existing.retest_reason if existing else None
    prev_raised = bool(existing.issue_raised) if existing else False
    prev_fixed = bool(existing.issue_fixed) if existing else False

    result = upsert_test_result(requirement, cycle, data)

    rid = requirement.id
    changes = []
    if result.status != prev_status:
        changes.append(change_entry(rid, "status", prev_status, result.status,
                                    reason=result.tester))
    if result.retest_reason != prev_retest:
        changes.append(change_entry(rid, "retest_reason", prev_retest, result.retest_reason))
    if bool(result.issue_raised) != prev_raised:
        changes.append(change_entry(
            rid, "issue_raised",
            _flag_label(prev_raised, "raised", "not raised"),
            _flag_label(result.issue_raised, "raised", "not raised"),
        ))
    if bool(result.issue_fixed) != prev_fixed:
        changes.append(change_entry(
            rid, "issue_fixed",
            _flag_label(prev_fixed, "fixed", "not fixed"),
            _flag_label(result.issue_fixed, "fixed", "not fixed"),
        ))
    return result, prev_status, changes


# ═════════════════════════════════════════════════════════════════════════════
# Scenario results
# ═════════════════════════════════════════════════════════════════════════════

def get_scenario_result(scenario_id, cycle_id) -> ScenarioResult | None:
    return ScenarioResult.query.filter_by(scenario_id=scenario_id, cycle_id=cycle_id).first()


def upsert_scenario_result(scenario, cycle, data: dict):
    """Same upsert contract keyed by ``(scenario, cycle)``; no audit entry.

    Returns ``(result, previous_status)``.
    """
    result = get_scenario_result(scenario.id, cycle.id)
    previous = result.status if result else UNTESTED
    if result is None:
        result = ScenarioResult(scenario_id=scenario.id, cycle_id=cycle.id,
                                status=UNTESTED, issue_items=[])
        db.session.add(result)

    if "status" in data:
        result.status = _check_status(data["status"])
    if "tester" in data:
        result.tester = _clean(data["tester"])
    if "note" in data:
        result.note = _clean(data["note"])
    items = normalize_issue_items(data)
    if items is not None:
        result.issue_items = items

    result.tested_at = datetime.now(timezone.utc)
    db.session.flush()
    return result, previous
