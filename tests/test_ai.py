"""
QA Tracking Dashboard
Tests — AI endpoints and assistants.

Covers:
    - Insights streaming (local stub), camelCase body keys
    - Missing credential → 500, unparseable draft → 502 with raw text
    - Upstream failure → 502
    - Scenario draft validation
    - Prompt registry rendering and listing
    - Response parsing helpers
"""

from types import SimpleNamespace

import pytest

from app.ai.assistants.qa_insights import format_item, group_requirements, status_summary
from app.ai.assistants.scenario_generator import format_requirement, parse_scenario
from app.ai.gateway import GeminiProvider, LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.core.exceptions import AIConfigurationError, AIResponseParseError


class FakeGateway:
    """Configured gateway whose chat answer (or failure) is fixed."""

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def require_configured(self, model=None):
        return None

    def chat(self, messages, model=None, **kwargs):
        self.calls.append((messages, kwargs))
        if self.error:
            raise self.error
        return {"content": self.content}


@pytest.fixture()
def fake_gateway(app, monkeypatch):
    def _install(**kw):
        gateway = FakeGateway(**kw)
        monkeypatch.setattr(app, "_ai_gateway", gateway, raising=False)
        return gateway
    return _install


# ═════════════════════════════════════════════════════════════════════════════
# INSIGHTS
# ═════════════════════════════════════════════════════════════════════════════

class TestInsights:

    def test_stream_local_stub(self, client, cycle, make_requirement):
        make_requirement(depth_0="주문")
        res = client.post("/api/v1/ai/insights", json={"cycle_id": cycle.id})
        assert res.status_code == 200
        assert res.mimetype == "text/plain"
        assert res.headers["Cache-Control"] == "no-cache"
        assert res.get_data(as_text=True).startswith("### 1.")

    def test_camel_case_key(self, client, cycle):
        res = client.post("/api/v1/ai/insights", json={"cycleId": cycle.id})
        assert res.status_code == 200

    def test_cycle_required(self, client):
        res = client.post("/api/v1/ai/insights", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_cycle(self, client):
        assert client.post("/api/v1/ai/insights", json={"cycle_id": 123}).status_code == 404

    def test_missing_credential(self, app, client, cycle, monkeypatch):
        monkeypatch.setattr(app, "_ai_gateway", LLMGateway(default_model="gemini-2.0-flash"), raising=False)
        res = client.post("/api/v1/ai/insights", json={"cycle_id": cycle.id})
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_AI_CONFIG"
        assert "GEMINI_API_KEY" in body["error"]


# ═════════════════════════════════════════════════════════════════════════════
# SCENARIO DRAFT
# ═════════════════════════════════════════════════════════════════════════════

class TestScenarioDraft:

    def test_local_stub_draft(self, client, make_requirement):
        req = make_requirement()
        res = client.post("/api/v1/ai/scenario", json={"requirement_ids": [req.id]})
        assert res.status_code == 200
        body = res.get_json()
        assert set(body) == {"title", "precondition", "steps", "expected_result"}
        assert body["title"]

    def test_prompt_carries_requirements_and_hint(self, client, make_requirement, fake_gateway):
        gateway = fake_gateway(content='{"title": "T", "steps": ["1. a", "2. b"]}')
        req = make_requirement(feature_name="정산 승인", depth_0="정산")
        res = client.post("/api/v1/ai/scenario", json={
            "requirementIds": [req.id], "scenarioType": "e2e", "contextHint": "월말 정산",
        })
        assert res.status_code == 200
        assert res.get_json()["steps"] == "1. a\n2. b"

        messages, kwargs = gateway.calls[0]
        assert kwargs["json_output"] is True
        user = messages[-1]["content"]
        assert "정산 승인" in user
        assert "월말 정산" in user
        assert "E2E" in user

    def test_unparseable_response(self, client, make_requirement, fake_gateway):
        fake_gateway(content="not json")
        req = make_requirement()
        res = client.post("/api/v1/ai/scenario", json={"requirement_ids": [req.id]})
        assert res.status_code == 502
        body = res.get_json()
        assert body["code"] == "ERR_AI_PARSE"
        assert body["details"]["raw"] == "not json"

    def test_upstream_failure(self, client, make_requirement, fake_gateway):
        fake_gateway(error=RuntimeError("quota exceeded"))
        req = make_requirement()
        res = client.post("/api/v1/ai/scenario", json={"requirement_ids": [req.id]})
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_AI_UPSTREAM"

    def test_requirement_ids_required(self, client):
        assert client.post("/api/v1/ai/scenario", json={}).status_code == 400
        assert client.post("/api/v1/ai/scenario", json={"requirement_ids": ["x"]}).status_code == 400

    def test_unknown_requirements(self, client, systems):
        res = client.post("/api/v1/ai/scenario", json={"requirement_ids": [999]})
        assert res.status_code == 400

    def test_invalid_type(self, client, make_requirement):
        req = make_requirement()
        res = client.post("/api/v1/ai/scenario",
                          json={"requirement_ids": [req.id], "scenario_type": "smoke"})
        assert res.status_code == 400

    def test_missing_credential(self, app, client, make_requirement, monkeypatch):
        monkeypatch.setattr(app, "_ai_gateway", LLMGateway(default_model="claude-3-5-haiku-20241022"),
                            raising=False)
        req = make_requirement()
        res = client.post("/api/v1/ai/scenario", json={"requirement_ids": [req.id]})
        assert res.status_code == 500
        assert "ANTHROPIC_API_KEY" in res.get_json()["error"]


# ═════════════════════════════════════════════════════════════════════════════
# PROMPTS / HELPERS
# ═════════════════════════════════════════════════════════════════════════════

class TestPrompts:

    def test_registry_loads_templates(self):
        registry = PromptRegistry()
        assert registry.get("qa_insights") is not None
        assert registry.get("scenario_generator") is not None

    def test_render_substitutes_variables(self):
        messages = PromptRegistry().render(
            "qa_insights", platform_context="도매 B2B", total=3,
            status_summary="Pass: 1", requirements_text="=== 쇼핑몰 ===",
        )
        assert messages[0]["role"] == "system"
        assert "도매 B2B" in messages[0]["content"]
        assert "3건" in messages[1]["content"]

    def test_template_variables(self):
        tpl = PromptRegistry().get("scenario_generator")
        assert set(tpl.variables) == {"platform_context", "type_label", "context_block", "requirements_text"}

    def test_missing_value_left_in_place(self):
        messages = PromptRegistry().render("qa_insights", total=1)
        assert "{{requirements_text}}" in messages[-1]["content"]

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            PromptRegistry().render("nope")

    def test_list_endpoint(self, client):
        names = {p["name"] for p in client.get("/api/v1/ai/prompts").get_json()}
        assert names == {"qa_insights", "scenario_generator"}


class TestHelpers:

    def _req(self, **kw):
        base = dict(display_id=7, feature_name="담기", original_spec="x" * 100,
                    depth_0="주문", depth_1=None, depth_2=None, current_policy=None,
                    system=SimpleNamespace(name="쇼핑몰"))
        base.update(kw)
        return SimpleNamespace(**base)

    def test_format_item_truncates_spec(self):
        line = format_item(self._req(), "Pass")
        assert line == "  - #7 [Pass] 담기 — " + "x" * 80

    def test_format_item_placeholders(self):
        line = format_item(self._req(display_id=None, feature_name=None, original_spec=None), "미테스트")
        assert line == "  -  [미테스트] (이름없음)"

    def test_group_requirements(self):
        reqs = [self._req(), self._req(depth_0=None, system=None)]
        grouped = group_requirements(reqs, lambda r: "Fail")
        assert list(grouped) == ["쇼핑몰", "알 수 없음"]
        assert list(grouped["알 수 없음"]) == ["(분류 없음)"]

    def test_status_summary(self):
        assert status_summary({"Pass": 2}).startswith("Pass: 2 / Fail: 0")

    def test_format_requirement(self):
        text = format_requirement(self._req(current_policy="최대 50개"))
        assert text.splitlines()[0] == "[쇼핑몰] #7 담기"
        assert "최종 정책: 최대 50개" in text

    def test_parse_scenario_with_fence(self):
        draft = parse_scenario('```json\n{"title": "주문", "precondition": ["a", "b"]}\n```')
        assert draft == {"title": "주문", "precondition": "a\nb", "steps": "", "expected_result": ""}

    def test_parse_scenario_rejects_bad_shape(self):
        with pytest.raises(AIResponseParseError) as exc:
            parse_scenario('{"steps": "1"}')
        assert exc.value.raw == '{"steps": "1"}'

    def test_gateway_provider_resolution(self):
        gateway = LLMGateway(gemini_api_key="k")
        assert gateway.provider_name("claude-sonnet-4") == "anthropic"
        assert gateway.is_configured("gemini-2.5-pro")
        assert not gateway.is_configured("claude-sonnet-4")
        with pytest.raises(AIConfigurationError):
            gateway.provider_name("gpt-4o")


class RecordingProvider:
    """Provider whose stream records how far it was read and whether it was closed."""

    def __init__(self, chunks=("### 1.", " 결제", " 오류")):
        self.chunks = chunks
        self.emitted = 0
        self.closed = False

    def stream(self, messages, model, **kwargs):
        try:
            for text in self.chunks:
                self.emitted += 1
                yield text
        finally:
            self.closed = True


class FakeChunkStream:
    def __init__(self, texts):
        self._texts = iter(texts)
        self.closed = False

    def __iter__(self):
        for text in self._texts:
            yield SimpleNamespace(text=text)

    def close(self):
        self.closed = True


class TestGatewayStream:

    def _gateway(self, provider):
        gateway = LLMGateway(gemini_api_key="k")
        gateway._providers["gemini"] = provider
        return gateway

    def test_consumer_exit_closes_upstream(self):
        provider = RecordingProvider()
        chunks = self._gateway(provider).stream([{"role": "user", "content": "x"}])
        assert next(chunks) == "### 1."
        chunks.close()
        assert provider.closed
        assert provider.emitted == 1

    def test_full_read_closes_upstream(self):
        provider = RecordingProvider()
        text = "".join(self._gateway(provider).stream([{"role": "user", "content": "x"}]))
        assert text == "### 1. 결제 오류"
        assert provider.closed

    def test_gemini_stream_closes_sdk_iterator(self):
        upstream = FakeChunkStream(["a", "", "b"])
        provider = GeminiProvider("k")
        provider._client = SimpleNamespace(
            models=SimpleNamespace(generate_content_stream=lambda **kw: upstream),
        )
        chunks = provider.stream([{"role": "user", "content": "x"}])
        assert next(chunks) == "a"
        chunks.close()
        assert upstream.closed
