"""
Dashboard service — reads one snapshot per call, delegates to the aggregation engine.

Read-only: no flush, no commit. Each function issues a fixed number of
queries regardless of the number of requirements.
"""

import logging

from sqlalchemy.orm import joinedload

from app.models.requirement import Requirement, System
from app.models.scenario import ScenarioResult, TestScenario
from app.models.testing import TestResult
from app.services import aggregation

logger = logging.getLogger(__name__)


def load_snapshot(cycle_id):
    """(requirements, results_by_requirement, systems) for one cycle."""
    requirements = (
        Requirement.query.options(joinedload(Requirement.system))
        .order_by(Requirement.display_id, Requirement.id)
        .all()
    )
    results = TestResult.query.filter_by(cycle_id=cycle_id).all()
    systems = System.query.order_by(System.id).all()
    return requirements, aggregation.index_results(results), systems


def dashboard_stats(cycle_id) -> dict:
    requirements, results_by_req, systems = load_snapshot(cycle_id)
    status_of = aggregation.status_lookup(results_by_req)
    total = aggregation.compute_status_counts(requirements, status_of)
    return {
        "cycle_id": cycle_id,
        "total": total,
        "progress_rate": aggregation.compute_progress_rate(total),
        "by_system": aggregation.group_by_system(requirements, systems, results_by_req),
    }


def depth_group_stats(cycle_id) -> list[dict]:
    requirements, results_by_req, systems = load_snapshot(cycle_id)
    return aggregation.group_by_feature_area(requirements, results_by_req, systems)


def issue_stats(cycle_id) -> dict:
    results = TestResult.query.filter_by(cycle_id=cycle_id).all()
    return aggregation.compute_issue_stats(results)


def scenario_stats(cycle_id) -> dict:
    scenarios = TestScenario.query.all()
    results = ScenarioResult.query.filter_by(cycle_id=cycle_id).all()
    return aggregation.compute_scenario_stats(scenarios, results, cycle_id)
