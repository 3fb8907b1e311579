"""
QA Tracking Dashboard
AI Blueprint.

Endpoints:
    INSIGHTS   /api/v1/ai/insights    POST  {cycle_id}                       → chunked text/plain
    SCENARIO   /api/v1/ai/scenario    POST  {requirement_ids, scenario_type,
                                             context_hint?}                 → JSON draft
    PROMPTS    /api/v1/ai/prompts     GET

camelCase body keys (cycleId, requirementIds, scenarioType, contextHint)
are accepted as well.
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, stream_with_context

from app.ai.assistants import QAInsights, ScenarioGenerator
from app.ai.gateway import LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.blueprints import json_body
from app.core.exceptions import (
    AIConfigurationError,
    AIResponseParseError,
    NotFoundError,
    ValidationError,
)
from app.services.requirement_service import get_cycle
from app.utils.errors import E, api_error
from app.utils.helpers import parse_int_list

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1/ai")

# Handled by the app-level error handlers
_PASSTHROUGH = (AIConfigurationError, AIResponseParseError, NotFoundError, ValidationError)


# ── Lazy singletons stored on Flask app (test-isolation safe) ───────────────

def get_gateway():
    if not hasattr(current_app, "_ai_gateway"):
        current_app._ai_gateway = LLMGateway.from_config(current_app.config)
    return current_app._ai_gateway


def get_prompt_registry():
    if not hasattr(current_app, "_ai_prompt_registry"):
        current_app._ai_prompt_registry = PromptRegistry()
    return current_app._ai_prompt_registry


def _arg(data, snake, camel, default=None):
    value = data.get(snake)
    if value is None:
        value = data.get(camel, default)
    return value


# ══════════════════════════════════════════════════════════════════════════════
# QA INSIGHTS
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/insights", methods=["POST"])
def insights():
    """
    POST /api/v1/ai/insights
    Body: { cycle_id: int }
    Streams markdown analysis as it is generated.
    """
    data = json_body()
    cycle_id = _arg(data, "cycle_id", "cycleId")
    if cycle_id in (None, ""):
        raise ValidationError("cycle_id is required", details={"cycle_id": "required"})
    try:
        cycle_id = int(cycle_id)
    except (TypeError, ValueError):
        raise ValidationError("cycle_id must be an integer", details={"cycle_id": cycle_id})

    assistant = QAInsights(
        gateway=get_gateway(),
        prompt_registry=get_prompt_registry(),
        platform_context=current_app.config.get("AI_PLATFORM_CONTEXT", ""),
    )
    # Credential check precedes the cycle lookup.
    assistant.gateway.require_configured()
    get_cycle(cycle_id)
    chunks = assistant.stream(cycle_id)

    return Response(
        stream_with_context(chunks),
        content_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ══════════════════════════════════════════════════════════════════════════════
# SCENARIO DRAFT
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/scenario", methods=["POST"])
def scenario():
    """
    POST /api/v1/ai/scenario
    Body: { requirement_ids: [int], scenario_type: str, context_hint?: str }
    Returns: { title, precondition, steps, expected_result }
    """
    data = json_body()
    raw_ids = _arg(data, "requirement_ids", "requirementIds")
    try:
        requirement_ids = parse_int_list(raw_ids)
    except ValueError:
        raise ValidationError("requirement_ids must be integers", details={"requirement_ids": raw_ids})
    if not requirement_ids:
        raise ValidationError("requirement_ids is required", details={"requirement_ids": "required"})

    assistant = ScenarioGenerator(
        gateway=get_gateway(),
        prompt_registry=get_prompt_registry(),
        platform_context=current_app.config.get("AI_PLATFORM_CONTEXT", ""),
    )
    try:
        draft = assistant.generate(
            requirement_ids,
            scenario_type=_arg(data, "scenario_type", "scenarioType", "integration"),
            context_hint=_arg(data, "context_hint", "contextHint"),
        )
    except _PASSTHROUGH:
        raise
    except Exception as exc:
        logger.error("Scenario draft upstream call failed: %s", exc)
        return api_error(E.AI_UPSTREAM, f"AI generation failed: {exc}")
    return jsonify(draft), 200


@ai_bp.route("/prompts", methods=["GET"])
def list_prompts():
    return jsonify(get_prompt_registry().list_templates()), 200
