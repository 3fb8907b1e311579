"""
QA Tracking Dashboard
Scenario Generator Assistant.

Pipeline:
    1. Load the selected requirements (one query, systems joined)
    2. Build the prompt from the scenario_generator template
    3. Call the LLM in JSON output mode
    4. Parse {title, precondition, steps, expected_result}

Nothing is persisted: the draft is returned to the editor, which saves it
through the normal scenario endpoints.
"""

import json
import logging
import re

from sqlalchemy.orm import joinedload

from app.core.exceptions import AIResponseParseError, ValidationError
from app.models.requirement import Requirement
from app.models.scenario import SCENARIO_TYPES

logger = logging.getLogger(__name__)

TYPE_LABELS = {
    "integration": "통합 테스트 (여러 시스템/기능이 연동되는 흐름 검증)",
    "unit": "단위 테스트 (단일 기능/화면 검증)",
    "e2e": "E2E 테스트 (사용자 전체 여정 검증)",
}

SCENARIO_FIELDS = ("title", "precondition", "steps", "expected_result")


def format_requirement(req) -> str:
    path = " > ".join(d for d in (req.depth_0, req.depth_1, req.depth_2) if d)
    system = req.system.name if req.system else ""
    display = req.display_id if req.display_id is not None else "-"
    lines = [
        f"[{system}] #{display} {req.feature_name or ''}",
        f"  경로: {path}" if path else "",
        f"  기존 요구사항: {req.original_spec}" if req.original_spec else "",
        f"  최종 정책: {req.current_policy}" if req.current_policy else "",
    ]
    return "\n".join(line for line in lines if line)


def parse_scenario(content: str) -> dict:
    """Parse the model's JSON scenario. Code fences are tolerated."""
    cleaned = (content or "").strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r'^```\w*\n?', '', cleaned)
        cleaned = re.sub(r'\n?```$', '', cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        raise AIResponseParseError("AI response is not valid JSON", raw=content)
    if not isinstance(data, dict) or not data.get("title"):
        raise AIResponseParseError("AI response does not match the scenario schema", raw=content)

    scenario = {}
    for field in SCENARIO_FIELDS:
        value = data.get(field)
        if isinstance(value, list):
            value = "\n".join(str(v) for v in value)
        scenario[field] = "" if value is None else str(value)
    return scenario


class ScenarioGenerator:
    """Drafts one test scenario spanning a set of requirements."""

    def __init__(self, gateway=None, prompt_registry=None, platform_context: str = ""):
        self.gateway = gateway
        self.prompt_registry = prompt_registry
        self.platform_context = platform_context

    def build_messages(self, requirement_ids, scenario_type="integration", context_hint=None) -> list[dict]:
        if scenario_type not in SCENARIO_TYPES:
            raise ValidationError("Invalid scenario_type", details={"scenario_type": scenario_type})
        requirements = (
            Requirement.query.options(joinedload(Requirement.system))
            .filter(Requirement.id.in_(requirement_ids))
            .order_by(Requirement.display_id, Requirement.id)
            .all()
        )
        if not requirements:
            raise ValidationError("No matching requirements", details={"requirement_ids": list(requirement_ids)})
        if len(requirements) < len(set(requirement_ids)):
            logger.warning("Scenario draft: %d of %d requirement ids not found",
                           len(set(requirement_ids)) - len(requirements), len(set(requirement_ids)))

        context_block = f"## 추가 컨텍스트\n{context_hint}\n" if context_hint else ""
        return self.prompt_registry.render(
            "scenario_generator",
            platform_context=self.platform_context,
            type_label=TYPE_LABELS[scenario_type],
            context_block=context_block,
            requirements_text="\n\n".join(format_requirement(r) for r in requirements),
        )

    def generate(self, requirement_ids, scenario_type="integration", context_hint=None) -> dict:
        self.gateway.require_configured()
        messages = self.build_messages(requirement_ids, scenario_type, context_hint)
        response = self.gateway.chat(messages, purpose="scenario_generator", json_output=True)
        return parse_scenario(response.get("content", ""))
