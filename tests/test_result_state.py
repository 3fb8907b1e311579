"""
QA Tracking Dashboard
Tests — result state machine and issue-item normalisation.

Covers:
    - One row per (requirement, cycle) across repeated saves
    - Derived raised / fixed flags
    - Legacy issue_ids payload normalisation
    - Same-status re-selection is a no-op
    - Change entries for status / retest / flags
    - Scenario result upsert
"""

import pytest

from app.core.exceptions import ValidationError
from app.models import db
from app.models import testing as tm
from app.services import result_service, scenario_service
from app.services.result_service import derive_issue_flags, normalize_issue_items


class TestIssueItems:

    def test_flags_require_every_item(self):
        items = [{"text": "a", "raised": True, "fixed": False},
                 {"text": "b", "raised": True, "fixed": True}]
        assert derive_issue_flags(items) == (True, False)

    def test_empty_list_has_no_flags(self):
        assert derive_issue_flags([]) == (False, False)

    def test_legacy_payload_becomes_items(self):
        items = normalize_issue_items({"issue_ids": "12, 13,", "issue_raised": True, "issue_fixed": False})
        assert items == [
            {"text": "12", "issue_no": "12", "raised": True, "fixed": False},
            {"text": "13", "issue_no": "13", "raised": True, "fixed": False},
        ]

    def test_rich_items_take_precedence(self):
        items = normalize_issue_items({"issue_items": [{"text": " 버튼 미노출 ", "issueNo": 7,
                                                        "severity": "하이"}],
                                       "issue_ids": "99"})
        assert items == [{"text": "버튼 미노출", "raised": False, "fixed": False,
                          "issue_no": "7", "severity": "high"}]

    def test_no_issue_keys_returns_none(self):
        assert normalize_issue_items({"status": "Pass"}) is None

    def test_invalid_severity(self):
        with pytest.raises(ValidationError):
            normalize_issue_items({"issue_items": [{"text": "x", "severity": "urgent"}]})


class TestRequirementResults:

    def test_upsert_is_idempotent(self, make_requirement, cycle):
        req = make_requirement()
        result_service.upsert_test_result(req, cycle, {"status": "Pass", "tester": "kim"})
        result_service.upsert_test_result(req, cycle, {"status": "Fail"})
        db.session.commit()
        rows = tm.TestResult.query.filter_by(requirement_id=req.id, cycle_id=cycle.id).all()
        assert len(rows) == 1
        assert rows[0].status == "Fail"
        assert rows[0].tester == "kim"
        assert rows[0].tested_at is not None

    def test_save_result_derives_flags(self, make_requirement, cycle):
        req = make_requirement()
        result, previous, changes = result_service.save_result(req, cycle, {
            "status": "Fail",
            "issue_items": [{"text": "a", "raised": True, "fixed": False, "issue_no": "101"},
                            {"text": "b", "raised": True, "fixed": True}],
        })
        assert previous == "미테스트"
        assert result.issue_raised is True
        assert result.issue_fixed is False
        assert result.issue_ids == "101"
        assert {c["changed_field"] for c in changes} == {"status", "issue_raised"}

    def test_legacy_save_round_trips_to_flags(self, make_requirement, cycle):
        req = make_requirement()
        result, _prev, _changes = result_service.save_result(
            req, cycle, {"status": "Fail", "issue_ids": "5,6", "issue_raised": True, "issue_fixed": True},
        )
        assert len(result.issue_items) == 2
        assert (result.issue_raised, result.issue_fixed) == (True, True)
        assert result.issue_ids == "5,6"

    def test_same_status_is_noop(self, make_requirement, cycle):
        req = make_requirement()
        _r, previous, changes = result_service.set_status(req, cycle, "Pass", tester="lee")
        db.session.commit()
        assert previous == "미테스트"
        assert changes[0]["change_reason"] == "lee"

        result, previous, changes = result_service.set_status(req, cycle, "Pass")
        assert previous == "Pass"
        assert changes == []
        assert result.status == "Pass"

    def test_invalid_status(self, make_requirement, cycle):
        req = make_requirement()
        with pytest.raises(ValidationError):
            result_service.set_status(req, cycle, "Done")

    def test_retest_reason_set_and_clear(self, make_requirement, cycle):
        req = make_requirement()
        result_service.set_status(req, cycle, "Fail")
        result, changes = result_service.set_retest_reason(req, cycle, "policy change")
        assert result.retest_reason == "policy change"
        assert result.status == "Fail"
        assert changes[0]["new_value"] == "policy change"

        result, changes = result_service.set_retest_reason(req, cycle, None)
        assert result.retest_reason is None
        assert changes[0]["old_value"] == "policy change"

    def test_invalid_retest_reason(self, make_requirement, cycle):
        req = make_requirement()
        with pytest.raises(ValidationError):
            result_service.set_retest_reason(req, cycle, "because")


class TestScenarioResults:

    def test_upsert_returns_previous(self, cycle):
        scenario = scenario_service.create_scenario({"title": "주문 흐름", "scenario_type": "e2e"})
        db.session.commit()
        _result, previous = result_service.upsert_scenario_result(scenario, cycle, {"status": "Block"})
        assert previous == "미테스트"
        result, previous = result_service.upsert_scenario_result(scenario, cycle, {"status": "Pass",
                                                                                   "note": "재확인"})
        assert previous == "Block"
        assert result.note == "재확인"
        db.session.commit()
        assert result_service.get_scenario_result(scenario.id, cycle.id).status == "Pass"
