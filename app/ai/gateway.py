"""
QA Tracking Dashboard
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Gemini, Anthropic Claude, local stub)
    - Blocking chat (optionally JSON-only output) and chunked streaming
    - Token and latency logging
    - Credential check before any upstream call

No retry and no timeout: one upstream call per request, errors propagate.

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway(gemini_api_key="...", default_model="gemini-2.0-flash")
    result = gw.chat([{"role": "user", "content": "Summarise this cycle"}])
    for chunk in gw.stream(messages):
        ...
"""

import json
import logging
import time
from abc import ABC, abstractmethod

from app.core.exceptions import AIConfigurationError

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, json_output.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...

    @abstractmethod
    def stream(self, messages: list, model: str, **kwargs):
        """Yield text chunks as the model produces them."""
        ...


def _split_system(messages: list) -> tuple[str, list]:
    system_parts = []
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
        else:
            chat_messages.append(m)
    return "\n\n".join(system_parts), chat_messages


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider (AI Studio key).

    Models:
        - gemini-2.0-flash  (default; insights + scenario drafting)
        - gemini-2.5-flash
        - gemini-2.5-pro

    Environment:
        GEMINI_API_KEY
    """

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @staticmethod
    def _build_request(messages: list, **kwargs):
        from google.genai import types

        system_msg, chat_messages = _split_system(messages)
        contents = [
            types.Content(
                # Gemini uses "user" and "model" roles
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]
        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 4096),
        )
        if system_msg:
            config.system_instruction = system_msg
        if kwargs.get("json_output"):
            config.response_mime_type = "application/json"
        return contents, config

    def chat(self, messages: list, model: str = "gemini-2.0-flash", **kwargs) -> dict:
        client = self._get_client()
        contents, config = self._build_request(messages, **kwargs)
        response = client.models.generate_content(model=model, contents=contents, config=config)

        prompt_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
        completion_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        return {
            "content": response.text or "",
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "model": model,
        }

    def stream(self, messages: list, model: str = "gemini-2.0-flash", **kwargs):
        client = self._get_client()
        contents, config = self._build_request(messages, **kwargs)
        chunks = client.models.generate_content_stream(model=model, contents=contents, config=config)
        try:
            for chunk in chunks:
                if chunk.text:
                    yield chunk.text
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    @staticmethod
    def _params(messages: list, model: str, **kwargs) -> dict:
        system_msg, chat_messages = _split_system(messages)
        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg
        return params

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()
        response = client.messages.create(**self._params(messages, model, **kwargs))
        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }

    def stream(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs):
        client = self._get_client()
        # Leaving the context manager closes the HTTP stream, also on early exit.
        with client.messages.stream(**self._params(messages, model, **kwargs)) as upstream:
            for text in upstream.text_stream:
                if text:
                    yield text


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    STUB_INSIGHTS = (
        "### 1. 핵심 비즈니스 플로우 기반 우선 테스트 영역 TOP 5\n"
        "- 주문/결제\n- 정산\n- 상품 등록 승인\n- 발주/배송\n- 회원/권한\n\n"
        "### 2. 시스템별 우선순위 추천\n- 쇼핑몰 / 공급사 / 관리자 미테스트 항목 우선\n\n"
        "### 3. 현재 Fail/Block 중 비즈니스 위험 항목\n- 없음\n\n"
        "### 4. QA 전략 제안\n- 공급사 → 관리자 → 쇼핑몰 순서로 연결 흐름 검증\n"
    )

    STUB_SCENARIO = {
        "title": "주문 결제 통합 흐름 검증",
        "precondition": "테스트 계정 로그인\n승인된 상품 1개 이상",
        "steps": "1. 상품 상세 진입 — 가격 노출\n2. 주문/결제 — 결제 완료 화면",
        "expected_result": "주문이 생성되고 공급사 발주 목록에 노출된다",
    }

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        if kwargs.get("json_output"):
            content = json.dumps(self.STUB_SCENARIO, ensure_ascii=False)
        else:
            content = self.STUB_INSIGHTS
        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    def stream(self, messages: list, model: str = "local-stub", **kwargs):
        for line in self.STUB_INSIGHTS.splitlines(keepends=True):
            yield line


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Provider routing is by model name; a provider is only registered when
    its API key is set, except the local stub which is always available.
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # Google Gemini
        "gemini-2.0-flash": "gemini",
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        # Anthropic
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    # Provider → config key holding its credential
    PROVIDER_KEYS = {
        "gemini": "GEMINI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
    }

    DEFAULT_CHAT_MODEL = "gemini-2.0-flash"

    def __init__(self, *, gemini_api_key: str = "", anthropic_api_key: str = "",
                 default_model: str | None = None):
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self._providers: dict[str, LLMProvider] = {"local": LocalStubProvider()}
        if gemini_api_key:
            self._providers["gemini"] = GeminiProvider(gemini_api_key)
        if anthropic_api_key:
            self._providers["anthropic"] = AnthropicProvider(anthropic_api_key)

    @classmethod
    def from_config(cls, config) -> "LLMGateway":
        return cls(
            gemini_api_key=config.get("GEMINI_API_KEY", ""),
            anthropic_api_key=config.get("ANTHROPIC_API_KEY", ""),
            default_model=config.get("AI_CHAT_MODEL"),
        )

    # ── Provider resolution ───────────────────────────────────────────────

    def provider_name(self, model: str | None = None) -> str:
        model = model or self.default_model
        name = self.PROVIDER_MAP.get(model)
        if name is None:
            if model.startswith("gemini"):
                name = "gemini"
            elif model.startswith("claude"):
                name = "anthropic"
            else:
                raise AIConfigurationError(f"Unknown model: {model}")
        return name

    def is_configured(self, model: str | None = None) -> bool:
        try:
            return self.provider_name(model) in self._providers
        except AIConfigurationError:
            return False

    def require_configured(self, model: str | None = None) -> None:
        """Raise AIConfigurationError unless the model's provider has a credential."""
        name = self.provider_name(model)
        if name not in self._providers:
            raise AIConfigurationError(f"{self.PROVIDER_KEYS.get(name, name)} not configured")

    def _get_provider(self, model: str) -> LLMProvider:
        self.require_configured(model)
        return self._providers[self.provider_name(model)]

    # ── Calls ─────────────────────────────────────────────────────────────

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "", **kwargs) -> dict:
        """
        Send one chat completion request.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to the configured chat model).
            purpose: What the call is for, for the usage log line.
            **kwargs: temperature, max_tokens, json_output passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}
        """
        model = model or self.default_model
        provider = self._get_provider(model)
        start_time = time.time()
        try:
            result = provider.chat(messages, model, **kwargs)
        except Exception:
            logger.exception("LLM call failed: purpose=%s model=%s", purpose, model)
            raise
        latency_ms = int((time.time() - start_time) * 1000)
        result["latency_ms"] = latency_ms
        result["provider"] = self.provider_name(model)
        logger.info(
            "LLM call ok: purpose=%s model=%s prompt_tokens=%s completion_tokens=%s latency_ms=%d",
            purpose, model, result["prompt_tokens"], result["completion_tokens"], latency_ms,
            extra={"provider": result["provider"], "model": model, "purpose": purpose,
                   "latency_ms": latency_ms},
        )
        return result

    def stream(self, messages: list, model: str | None = None, *, purpose: str = "", **kwargs):
        """Yield text chunks. Closing the generator closes the upstream stream."""
        model = model or self.default_model
        provider = self._get_provider(model)
        start_time = time.time()
        chunks = 0
        upstream = provider.stream(messages, model, **kwargs)
        try:
            for text in upstream:
                chunks += 1
                yield text
        except GeneratorExit:
            logger.info("LLM stream closed by consumer: purpose=%s model=%s chunks=%d",
                        purpose, model, chunks)
            raise
        except Exception:
            logger.exception("LLM stream failed: purpose=%s model=%s chunks=%d", purpose, model, chunks)
            raise
        else:
            logger.info("LLM stream ok: purpose=%s model=%s chunks=%d latency_ms=%d",
                        purpose, model, chunks, int((time.time() - start_time) * 1000))
        finally:
            upstream.close()
