"""
QA Tracking Dashboard
Requirement filter layer — immutable filter state, one reducer, predicates.

State is a frozen ``FilterState``; every change goes through
``reduce_filters(state, action)`` which returns a new state with all
depth-cascade pruning already applied. No selection at depth N survives
once no selected depth N-1 value can reach it.

Semantics:
    - multi-select fields are OR within a field, AND across fields
    - an empty field means "no constraint", never "match nothing"
    - an active id range excludes rows without a display_id
    - search is a case-insensitive substring over the feature name,
      the depth path and the original spec text

Actions (dicts with a ``type`` key):
    toggle_system {value}   clear_systems
    toggle_depth0 {value}   toggle_depth1 {value}   toggle_depth2 {value}
    clear_depths            load_depth_index {index}
    set_status {values}     set_priority {values}   set_scenario {value}
    set_search {value}      set_id_range {id_from, id_to}
    sort {field}            reset
"""

from dataclasses import dataclass, field, replace

from app.core.exceptions import ValidationError
from app.models.requirement import DEPTH_FIELDS
from app.models.testing import RESULT_STATUSES, SEVERITY_ORDER, SEVERITY_UNSET, UNTESTED

# ── Rank tables ──────────────────────────────────────────────────────────────

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
PRIORITY_RANK_NONE = 3
STATUS_RANK = {"Pass": 0, "In Progress": 1, "Block": 2, "Fail": 3, UNTESTED: 4}

SORT_FIELDS = {"display_id", "feature_name", "priority", "status"}
SORT_DIRECTIONS = {"asc", "desc"}
SCENARIO_FILTERS = {"has", "none"}
PRIORITY_FILTERS = {"high", "medium", "low", "none"}

ISSUE_STATES = {"not_raised", "raised", "fixed"}

SEARCH_FIELDS = ("feature_name",) + DEPTH_FIELDS + ("original_spec",)


def _get(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


# ═════════════════════════════════════════════════════════════════════════════
# Depth index (cascading options)
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DepthIndex:
    """Observed depth values: all depth_0, and children keyed by parent value."""

    depth_0: tuple = ()
    depth_1_by_parent: dict = field(default_factory=dict)
    depth_2_by_parent: dict = field(default_factory=dict)
    # False until built from rows; an unloaded index prunes nothing
    loaded: bool = False

    def to_dict(self):
        return {
            "depth_0": list(self.depth_0),
            "depth_1_by_parent": {k: list(v) for k, v in self.depth_1_by_parent.items()},
            "depth_2_by_parent": {k: list(v) for k, v in self.depth_2_by_parent.items()},
        }


def build_depth_index(rows) -> DepthIndex:
    depth_0 = set()
    by_0: dict[str, set] = {}
    by_1: dict[str, set] = {}
    for row in rows:
        d0, d1, d2 = _get(row, "depth_0"), _get(row, "depth_1"), _get(row, "depth_2")
        if d0:
            depth_0.add(d0)
            if d1:
                by_0.setdefault(d0, set()).add(d1)
        if d1 and d2:
            by_1.setdefault(d1, set()).add(d2)
    return DepthIndex(
        depth_0=tuple(sorted(depth_0)),
        depth_1_by_parent={k: tuple(sorted(v)) for k, v in by_0.items()},
        depth_2_by_parent={k: tuple(sorted(v)) for k, v in by_1.items()},
        loaded=True,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Filter state + reducer
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FilterState:
    systems: frozenset = frozenset()
    depth0: frozenset = frozenset()
    depth1: frozenset = frozenset()
    depth2: frozenset = frozenset()
    status: frozenset = frozenset()
    priority: frozenset = frozenset()
    scenario: str | None = None
    search: str = ""
    id_from: int | None = None
    id_to: int | None = None
    sort_field: str = "display_id"
    sort_dir: str = "asc"
    depth_index: DepthIndex = field(default_factory=DepthIndex)

    @property
    def has_id_range(self) -> bool:
        return self.id_from is not None or self.id_to is not None

    def to_dict(self):
        return {
            "systems": sorted(self.systems),
            "depth0": sorted(self.depth0),
            "depth1": sorted(self.depth1),
            "depth2": sorted(self.depth2),
            "status": sorted(self.status),
            "priority": sorted(self.priority),
            "scenario": self.scenario,
            "search": self.search,
            "id_from": self.id_from,
            "id_to": self.id_to,
            "sort_field": self.sort_field,
            "sort_dir": self.sort_dir,
        }


def depth1_options(state: FilterState) -> list[str]:
    """depth_1 values reachable from the selected depth_0 values."""
    index = state.depth_index
    return sorted({v for parent in state.depth0 for v in index.depth_1_by_parent.get(parent, ())})


def depth2_options(state: FilterState) -> list[str]:
    """depth_2 values reachable from the selected depth_1 values."""
    index = state.depth_index
    return sorted({v for parent in state.depth1 for v in index.depth_2_by_parent.get(parent, ())})


def _prune_depths(state: FilterState) -> FilterState:
    """Drop every depth selection no longer reachable from its parents."""
    if not state.depth_index.loaded:
        return state
    depth0 = state.depth0 & frozenset(state.depth_index.depth_0)
    state = replace(state, depth0=depth0)
    depth1 = state.depth1 & frozenset(depth1_options(state))
    state = replace(state, depth1=depth1)
    depth2 = state.depth2 & frozenset(depth2_options(state))
    return replace(state, depth2=depth2)


def _toggle(values: frozenset, value) -> frozenset:
    return values - {value} if value in values else values | {value}


def _checked(values, allowed, label) -> frozenset:
    values = frozenset(values or ())
    bad = values - allowed
    if bad:
        raise ValidationError(f"Invalid {label} filter", details={label: sorted(bad)})
    return values


def reduce_filters(state: FilterState, action: dict) -> FilterState:
    """Return the next filter state for ``action``. Never mutates ``state``."""
    kind = action.get("type")

    if kind == "toggle_system":
        return replace(
            state, systems=_toggle(state.systems, action["value"]),
            depth0=frozenset(), depth1=frozenset(), depth2=frozenset(),
        )
    if kind == "clear_systems":
        return replace(
            state, systems=frozenset(),
            depth0=frozenset(), depth1=frozenset(), depth2=frozenset(),
        )
    if kind == "toggle_depth0":
        return _prune_depths(replace(state, depth0=_toggle(state.depth0, action["value"])))
    if kind == "toggle_depth1":
        return _prune_depths(replace(state, depth1=_toggle(state.depth1, action["value"])))
    if kind == "toggle_depth2":
        return _prune_depths(replace(state, depth2=_toggle(state.depth2, action["value"])))
    if kind == "clear_depths":
        return replace(state, depth0=frozenset(), depth1=frozenset(), depth2=frozenset())
    if kind == "load_depth_index":
        return _prune_depths(replace(state, depth_index=action["index"]))
    if kind == "set_status":
        return replace(state, status=_checked(action.get("values"), set(RESULT_STATUSES), "status"))
    if kind == "set_priority":
        return replace(state, priority=_checked(action.get("values"), PRIORITY_FILTERS, "priority"))
    if kind == "set_scenario":
        value = action.get("value") or None
        if value is not None and value not in SCENARIO_FILTERS:
            raise ValidationError("Invalid scenario filter", details={"scenario": value})
        return replace(state, scenario=value)
    if kind == "set_search":
        return replace(state, search=(action.get("value") or "").strip())
    if kind == "set_id_range":
        return replace(state, id_from=action.get("id_from"), id_to=action.get("id_to"))
    if kind == "sort":
        sort_field = action["field"]
        if sort_field not in SORT_FIELDS:
            raise ValidationError("Invalid sort field", details={"sort": sort_field})
        if sort_field == state.sort_field:
            return replace(state, sort_dir="desc" if state.sort_dir == "asc" else "asc")
        return replace(state, sort_field=sort_field, sort_dir="asc")
    if kind == "reset":
        return FilterState(depth_index=state.depth_index)

    raise ValidationError(f"Unknown filter action: {kind!r}")


# ═════════════════════════════════════════════════════════════════════════════
# Predicate + sort
# ═════════════════════════════════════════════════════════════════════════════

def matches(state: FilterState, requirement, status: str) -> bool:
    """True when ``requirement`` (with its cycle ``status``) passes every field."""
    if state.systems and _get(requirement, "system_id") not in state.systems:
        return False
    if state.depth0 and _get(requirement, "depth_0") not in state.depth0:
        return False
    if state.depth1 and _get(requirement, "depth_1") not in state.depth1:
        return False
    if state.depth2 and _get(requirement, "depth_2") not in state.depth2:
        return False
    if state.status and (status or UNTESTED) not in state.status:
        return False

    if state.priority:
        priority = _get(requirement, "priority")
        if priority is None:
            if "none" not in state.priority:
                return False
        elif priority not in state.priority:
            return False

    if state.scenario:
        has = any(_get(requirement, f) for f in ("precondition", "test_steps", "expected_result"))
        if (state.scenario == "has") != has:
            return False

    if state.has_id_range:
        display_id = _get(requirement, "display_id")
        if display_id is None:
            return False
        if state.id_from is not None and display_id < state.id_from:
            return False
        if state.id_to is not None and display_id > state.id_to:
            return False

    if state.search:
        needle = state.search.casefold()
        if not any(needle in (_get(requirement, f) or "").casefold() for f in SEARCH_FIELDS):
            return False

    return True


def sort_requirements(rows, sort_field="display_id", direction="asc", status_of=None) -> list:
    """Stable sort by one field. Rows without a display_id go last on that sort."""
    reverse = direction == "desc"
    rows = list(rows)

    if sort_field == "display_id":
        present = [r for r in rows if _get(r, "display_id") is not None]
        missing = [r for r in rows if _get(r, "display_id") is None]
        present.sort(key=lambda r: _get(r, "display_id"), reverse=reverse)
        return present + missing
    if sort_field == "feature_name":
        key = lambda r: (_get(r, "feature_name") or "").casefold()  # noqa: E731
    elif sort_field == "priority":
        key = lambda r: PRIORITY_RANK.get(_get(r, "priority"), PRIORITY_RANK_NONE)  # noqa: E731
    elif sort_field == "status":
        status_of = status_of or (lambda r: UNTESTED)
        key = lambda r: STATUS_RANK.get(status_of(r) or UNTESTED, len(STATUS_RANK))  # noqa: E731
    else:
        raise ValidationError("Invalid sort field", details={"sort": sort_field})
    rows.sort(key=key, reverse=reverse)
    return rows


def apply_filters(state: FilterState, rows, status_of) -> list:
    kept = [r for r in rows if matches(state, r, status_of(r))]
    return sort_requirements(kept, state.sort_field, state.sort_dir, status_of)


def _int_or_none(value, label):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer", details={label: value})


def filter_state_from_args(args, depth_index: DepthIndex | None = None) -> FilterState:
    """Build a state from query-string args (a werkzeug MultiDict).

    Repeatable keys: system_id, depth0, depth1, depth2, status, priority.
    Each may also be comma-joined.
    """
    def many(key):
        out = []
        for raw in args.getlist(key):
            out.extend(v.strip() for v in raw.split(",") if v.strip())
        return out

    state = FilterState(depth_index=depth_index or DepthIndex())
    systems = frozenset(_int_or_none(v, "system_id") for v in many("system_id"))
    state = replace(state, systems=systems, depth0=frozenset(many("depth0")),
                    depth1=frozenset(many("depth1")), depth2=frozenset(many("depth2")))
    if depth_index is not None:
        state = _prune_depths(state)

    state = reduce_filters(state, {"type": "set_status", "values": many("status")})
    state = reduce_filters(state, {"type": "set_priority", "values": many("priority")})
    state = reduce_filters(state, {"type": "set_scenario", "value": args.get("scenario")})
    state = reduce_filters(state, {"type": "set_search", "value": args.get("q")})
    state = reduce_filters(state, {
        "type": "set_id_range",
        "id_from": _int_or_none(args.get("id_from"), "id_from"),
        "id_to": _int_or_none(args.get("id_to"), "id_to"),
    })

    sort_field = args.get("sort") or "display_id"
    sort_dir = args.get("dir") or "asc"
    if sort_field not in SORT_FIELDS:
        raise ValidationError("Invalid sort field", details={"sort": sort_field})
    if sort_dir not in SORT_DIRECTIONS:
        raise ValidationError("Invalid sort direction", details={"dir": sort_dir})
    return replace(state, sort_field=sort_field, sort_dir=sort_dir)


# ═════════════════════════════════════════════════════════════════════════════
# Issue-view filters
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IssueFilter:
    systems: frozenset = frozenset()
    states: frozenset = frozenset()
    severities: frozenset = frozenset()

    @classmethod
    def from_args(cls, args):
        def many(key):
            return [v.strip() for raw in args.getlist(key) for v in raw.split(",") if v.strip()]

        systems = frozenset(_int_or_none(v, "system_id") for v in many("system_id"))
        states = _checked(many("issue_state"), ISSUE_STATES, "issue_state")
        severities = _checked(many("severity"), set(SEVERITY_ORDER), "severity")
        return cls(systems=systems, states=states, severities=severities)


def _state_matches(states, raised, fixed) -> bool:
    if not states:
        return True
    return (
        ("not_raised" in states and not raised)
        or ("raised" in states and raised and not fixed)
        or ("fixed" in states and fixed)
    )


def filter_issue_rows(rows, issue_filter: IssueFilter) -> list:
    """Item-level rows (``{requirement, result, item_index, item}``), severity-sorted."""
    out = []
    for row in rows:
        item = row["item"]
        if issue_filter.systems and _get(row["requirement"], "system_id") not in issue_filter.systems:
            continue
        if not _state_matches(issue_filter.states, bool(item.get("raised")), bool(item.get("fixed"))):
            continue
        severity = item.get("severity") or SEVERITY_UNSET
        if issue_filter.severities and severity not in issue_filter.severities:
            continue
        out.append(row)
    out.sort(key=lambda r: SEVERITY_ORDER.get(r["item"].get("severity") or SEVERITY_UNSET,
                                              SEVERITY_ORDER[SEVERITY_UNSET]))
    return out


def filter_issue_requirements(pairs, issue_filter: IssueFilter) -> list:
    """Requirement-level view over ``(requirement, result)`` pairs.

    Severity does not apply here; state uses the per-result flags.
    """
    out = []
    for req, result in pairs:
        if issue_filter.systems and _get(req, "system_id") not in issue_filter.systems:
            continue
        raised = bool(result is not None and _get(result, "issue_raised"))
        fixed = bool(result is not None and _get(result, "issue_fixed"))
        if not _state_matches(issue_filter.states, raised, fixed):
            continue
        out.append((req, result))
    return out
