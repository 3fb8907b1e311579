"""
QA Tracking Dashboard
Tests — requirement filter reducer, predicate and sort.

Covers:
    - Depth cascade pruning at every level
    - System toggle resets the depth selection
    - OR-within / AND-across field semantics
    - Priority "none", id range, search, scenario presence
    - Sort order and direction toggling
    - Issue-view filters
"""

import pytest
from werkzeug.datastructures import MultiDict

from app.core.exceptions import ValidationError
from app.services.requirement_filters import (
    FilterState,
    IssueFilter,
    apply_filters,
    build_depth_index,
    depth1_options,
    depth2_options,
    filter_issue_rows,
    filter_state_from_args,
    matches,
    reduce_filters,
    sort_requirements,
)

ROWS = [
    {"id": 1, "display_id": 1, "system_id": 1, "depth_0": "주문", "depth_1": "결제", "depth_2": "카드",
     "feature_name": "카드 결제", "original_spec": "신용카드 결제", "priority": "high"},
    {"id": 2, "display_id": 2, "system_id": 1, "depth_0": "주문", "depth_1": "배송", "depth_2": "조회",
     "feature_name": "배송 조회", "original_spec": "배송 상태 확인", "priority": None},
    {"id": 3, "display_id": 3, "system_id": 2, "depth_0": "상품", "depth_1": "등록", "depth_2": None,
     "feature_name": "상품 등록", "original_spec": "도매 상품 등록", "priority": "low",
     "test_steps": "1. 등록"},
    {"id": 4, "display_id": None, "system_id": 2, "depth_0": "상품", "depth_1": None, "depth_2": None,
     "feature_name": "Bulk Upload", "original_spec": "엑셀 업로드", "priority": "medium"},
]


def _state(**kw):
    state = reduce_filters(FilterState(), {"type": "load_depth_index", "index": build_depth_index(ROWS)})
    for key, value in kw.items():
        state = reduce_filters(state, {"type": key, "value": value})
    return state


def _ids(rows):
    return [r["id"] for r in rows]


# ═════════════════════════════════════════════════════════════════════════════
# DEPTH CASCADE
# ═════════════════════════════════════════════════════════════════════════════

class TestDepthCascade:

    def test_options_follow_parent_selection(self):
        state = _state(toggle_depth0="주문")
        assert depth1_options(state) == ["결제", "배송"]
        state = reduce_filters(state, {"type": "toggle_depth1", "value": "결제"})
        assert depth2_options(state) == ["카드"]

    def test_deselecting_parent_prunes_every_deeper_level(self):
        state = _state(toggle_depth0="주문")
        state = reduce_filters(state, {"type": "toggle_depth1", "value": "결제"})
        state = reduce_filters(state, {"type": "toggle_depth2", "value": "카드"})
        assert state.depth2 == {"카드"}

        state = reduce_filters(state, {"type": "toggle_depth0", "value": "주문"})
        assert state.depth0 == frozenset()
        assert state.depth1 == frozenset()
        assert state.depth2 == frozenset()

    def test_selection_reachable_from_other_parent_survives(self):
        state = _state(toggle_depth0="주문")
        state = reduce_filters(state, {"type": "toggle_depth0", "value": "상품"})
        state = reduce_filters(state, {"type": "toggle_depth1", "value": "등록"})
        state = reduce_filters(state, {"type": "toggle_depth0", "value": "주문"})
        assert state.depth0 == {"상품"}
        assert state.depth1 == {"등록"}

    def test_orphan_depth1_is_dropped(self):
        state = _state(toggle_depth1="결제")
        assert state.depth1 == frozenset()

    def test_toggle_system_clears_depths(self):
        state = _state(toggle_depth0="주문")
        state = reduce_filters(state, {"type": "toggle_system", "value": 1})
        assert state.systems == {1}
        assert state.depth0 == frozenset()

    def test_reducer_never_mutates_input(self):
        before = _state(toggle_depth0="주문")
        after = reduce_filters(before, {"type": "toggle_depth0", "value": "주문"})
        assert before.depth0 == {"주문"}
        assert after is not before

    def test_toggle_before_index_loaded_keeps_selection(self):
        state = reduce_filters(FilterState(), {"type": "toggle_depth0", "value": "주문"})
        state = reduce_filters(state, {"type": "toggle_depth1", "value": "결제"})
        assert state.depth0 == {"주문"}
        assert state.depth1 == {"결제"}

        state = reduce_filters(state, {"type": "load_depth_index", "index": build_depth_index(ROWS)})
        assert state.depth0 == {"주문"}

    def test_empty_loaded_index_prunes(self):
        state = reduce_filters(FilterState(), {"type": "load_depth_index", "index": build_depth_index([])})
        state = reduce_filters(state, {"type": "toggle_depth0", "value": "주문"})
        assert state.depth0 == frozenset()

    def test_query_args_are_pruned_too(self):
        args = MultiDict([("depth0", "상품"), ("depth1", "결제")])
        state = filter_state_from_args(args, build_depth_index(ROWS))
        assert state.depth0 == {"상품"}
        assert state.depth1 == frozenset()


# ═════════════════════════════════════════════════════════════════════════════
# PREDICATE
# ═════════════════════════════════════════════════════════════════════════════

class TestMatches:

    def test_empty_state_matches_everything(self):
        assert _ids(apply_filters(FilterState(), ROWS, lambda r: "미테스트")) == [1, 2, 3, 4]

    def test_or_within_and_across(self):
        state = reduce_filters(FilterState(), {"type": "set_priority", "values": ["high", "low"]})
        state = reduce_filters(state, {"type": "toggle_system", "value": 1})
        assert _ids([r for r in ROWS if matches(state, r, "미테스트")]) == [1]

    def test_priority_none_matches_unset(self):
        state = reduce_filters(FilterState(), {"type": "set_priority", "values": ["none"]})
        assert _ids([r for r in ROWS if matches(state, r, "미테스트")]) == [2]

    def test_status_filter_uses_cycle_status(self):
        state = reduce_filters(FilterState(), {"type": "set_status", "values": ["Fail"]})
        statuses = {1: "Fail", 2: "Pass"}
        kept = [r for r in ROWS if matches(state, r, statuses.get(r["id"]))]
        assert _ids(kept) == [1]

    def test_id_range_excludes_missing_display_id(self):
        state = reduce_filters(FilterState(), {"type": "set_id_range", "id_from": 2, "id_to": None})
        assert _ids([r for r in ROWS if matches(state, r, None)]) == [2, 3]

    def test_search_is_case_insensitive_over_spec(self):
        state = reduce_filters(FilterState(), {"type": "set_search", "value": "bulk"})
        assert _ids([r for r in ROWS if matches(state, r, None)]) == [4]
        state = reduce_filters(FilterState(), {"type": "set_search", "value": "도매"})
        assert _ids([r for r in ROWS if matches(state, r, None)]) == [3]

    def test_scenario_presence(self):
        state = reduce_filters(FilterState(), {"type": "set_scenario", "value": "has"})
        assert _ids([r for r in ROWS if matches(state, r, None)]) == [3]

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            reduce_filters(FilterState(), {"type": "set_status", "values": ["Done"]})

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            reduce_filters(FilterState(), {"type": "explode"})


# ═════════════════════════════════════════════════════════════════════════════
# SORT
# ═════════════════════════════════════════════════════════════════════════════

class TestSort:

    def test_display_id_missing_goes_last_both_directions(self):
        assert _ids(sort_requirements(ROWS, "display_id", "asc")) == [1, 2, 3, 4]
        assert _ids(sort_requirements(ROWS, "display_id", "desc")) == [3, 2, 1, 4]

    def test_priority_rank(self):
        assert _ids(sort_requirements(ROWS, "priority")) == [1, 4, 3, 2]

    def test_status_rank(self):
        statuses = {1: "Pass", 2: "Fail", 3: "Block"}
        rows = sort_requirements(ROWS, "status", status_of=lambda r: statuses.get(r["id"], "미테스트"))
        assert _ids(rows) == [1, 3, 2, 4]

    def test_feature_name_case_insensitive_then_hangul(self):
        rows = [{"id": i, "feature_name": name} for i, name in enumerate(["주문", "bulk", "Alpha", "가입", None])]
        assert [r["feature_name"] for r in sort_requirements(rows, "feature_name")] == [
            None, "Alpha", "bulk", "가입", "주문",
        ]

    def test_same_field_toggles_direction(self):
        state = reduce_filters(FilterState(), {"type": "sort", "field": "display_id"})
        assert state.sort_dir == "desc"
        state = reduce_filters(state, {"type": "sort", "field": "priority"})
        assert (state.sort_field, state.sort_dir) == ("priority", "asc")


# ═════════════════════════════════════════════════════════════════════════════
# ISSUE FILTERS
# ═════════════════════════════════════════════════════════════════════════════

class TestIssueFilter:

    def _rows(self):
        return [
            {"requirement": {"system_id": 1}, "item": {"text": "a", "raised": True, "fixed": False}},
            {"requirement": {"system_id": 1}, "item": {"text": "b", "raised": True, "fixed": True,
                                                       "severity": "critical"}},
            {"requirement": {"system_id": 2}, "item": {"text": "c", "raised": False, "fixed": False,
                                                       "severity": "low"}},
        ]

    def test_severity_sort_unset_last(self):
        rows = filter_issue_rows(self._rows(), IssueFilter())
        assert [r["item"]["text"] for r in rows] == ["b", "c", "a"]

    def test_state_raised_excludes_fixed(self):
        rows = filter_issue_rows(self._rows(), IssueFilter(states=frozenset({"raised"})))
        assert [r["item"]["text"] for r in rows] == ["a"]

    def test_from_args_rejects_unknown_state(self):
        with pytest.raises(ValidationError):
            IssueFilter.from_args(MultiDict([("issue_state", "closed")]))
