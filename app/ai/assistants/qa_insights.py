"""
QA Tracking Dashboard
QA Insights Assistant.

Pipeline:
    1. Load every requirement with its status in the cycle (one snapshot)
    2. Group system → depth_0 → items, one line per requirement
    3. Build the status summary
    4. Render the qa_insights prompt
    5. Stream the model output back as plain text chunks
"""

import logging

from app.models.testing import RESULT_STATUSES
from app.services import aggregation
from app.services.dashboard_service import load_snapshot

logger = logging.getLogger(__name__)

UNKNOWN_SYSTEM = "알 수 없음"
UNCLASSIFIED = "(분류 없음)"
UNNAMED = "(이름없음)"
SPEC_PREVIEW = 80


def format_item(req, status: str) -> str:
    """``  - #12 [Pass] 장바구니 담기 — first 80 chars of original_spec``"""
    ident = f"#{req.display_id}" if req.display_id is not None else ""
    name = req.feature_name or UNNAMED
    spec = f" — {req.original_spec[:SPEC_PREVIEW]}" if req.original_spec else ""
    return f"  - {ident} [{status}] {name}{spec}"


def group_requirements(requirements, status_of) -> dict:
    """{system name: {depth_0: [line, ...]}} in first-seen order."""
    grouped: dict[str, dict[str, list[str]]] = {}
    for req in requirements:
        system = req.system.name if req.system else UNKNOWN_SYSTEM
        area = req.depth_0 or UNCLASSIFIED
        grouped.setdefault(system, {}).setdefault(area, []).append(format_item(req, status_of(req)))
    return grouped


def serialize_groups(grouped: dict) -> str:
    blocks = []
    for system, areas in grouped.items():
        area_blocks = [f"[{area}]\n" + "\n".join(lines) for area, lines in areas.items()]
        blocks.append(f"=== {system} ===\n" + "\n\n".join(area_blocks))
    return "\n\n".join(blocks)


def status_summary(counts: dict) -> str:
    return " / ".join(f"{status}: {counts.get(status, 0)}" for status in RESULT_STATUSES)


class QAInsights:
    """Streams a priority analysis of the whole requirement set for one cycle."""

    def __init__(self, gateway=None, prompt_registry=None, platform_context: str = ""):
        self.gateway = gateway
        self.prompt_registry = prompt_registry
        self.platform_context = platform_context

    def build_messages(self, cycle_id) -> list[dict]:
        requirements, results_by_req, _systems = load_snapshot(cycle_id)
        status_of = aggregation.status_lookup(results_by_req)
        counts = aggregation.compute_status_counts(requirements, status_of)
        return self.prompt_registry.render(
            "qa_insights",
            platform_context=self.platform_context,
            total=counts["total"],
            status_summary=status_summary(counts),
            requirements_text=serialize_groups(group_requirements(requirements, status_of)),
        )

    def stream(self, cycle_id):
        """Return a chunk generator. Credential and prompt errors raise here, before streaming."""
        self.gateway.require_configured()
        messages = self.build_messages(cycle_id)
        logger.info("QA insights requested for cycle %s", cycle_id)
        return self.gateway.stream(messages, purpose="qa_insights")
