"""
Community Autopilot
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Gemini, Anthropic Claude, local stub)
    - Auto-retry with capped exponential backoff
    - Token and latency logging
    - Fallback to the local stub when a provider has no API key

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "Summarise..."}], model="gemini-2.5-flash")
"""

import hashlib
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod

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
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()

        # Separate system message
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)

        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Models:
        - gemini-2.5-flash  (per-workflow audit analyses)
        - gemini-2.5-pro    (consolidated research sweep)

    Environment:
        GEMINI_API_KEY
    """

    def __init__(self):
        self.api_key = os.getenv("GEMINI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        client = self._get_client()
        from google.genai import types

        # Separate system instruction from conversation messages
        system_parts = []
        contents = []
        for m in messages:
            if m["role"] == "system":
                system_parts.append(m["content"])
            else:
                # Gemini uses "user" and "model" roles
                role = "model" if m["role"] == "assistant" else "user"
                contents.append(
                    types.Content(
                        role=role,
                        parts=[types.Part(text=m["content"])],
                    )
                )

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 4096),
        )
        if system_parts:
            config.system_instruction = "\n\n".join(system_parts)
        if kwargs.get("json_mode"):
            config.response_mime_type = "application/json"

        response = client.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )

        prompt_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
        completion_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        return {
            "content": response.text or "",
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        # Extract last user message
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg, json_mode=kwargs.get("json_mode", False))

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str, json_mode: bool = False) -> str:
        """Deterministic answer; the score is derived from the prompt hash."""
        digest = hashlib.sha256(user_msg.encode()).digest()

        if json_mode:
            score = 55 + digest[0] % 40
            return json.dumps({
                "summary": "Stub analysis: the brand has a solid base with clear room "
                           "to grow on social channels and organic search.",
                "score": score,
                "sources": [
                    {"title": "Industry benchmark", "uri": "https://example.com/benchmark"},
                ],
                "tables": [
                    {
                        "title": "Key findings",
                        "headers": ["Area", "Observation"],
                        "rows": [
                            ["Visibility", "Moderate"],
                            ["Engagement", "Below sector average"],
                        ],
                    },
                ],
            })

        return (
            "RESEARCH REPORT (stub)\n"
            "Competitors: three regional players dominate paid social.\n"
            "Market: steady demand, seasonal peaks in spring.\n"
            "Keywords: local intent queries under-served.\n"
            "Trends: short video and creator partnerships."
        )


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Usage logging (tokens, latency, provider)
        - Fallback to the local stub when a provider is unavailable

    Usage:
        gw = LLMGateway(max_retries=3)
        result = gw.chat(
            messages=[{"role": "user", "content": "Analyse..."}],
            model="gemini-2.5-flash",
            purpose="audit:seo_audit",
        )
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # Google Gemini
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "gemini-2.0-flash": "gemini",
        # Anthropic
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        "claude-sonnet-4-20250514": "anthropic",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = "gemini-2.5-flash"

    def __init__(self, *, default_model: str | None = None, max_retries: int = 3,
                 backoff_base: float = 1.0, providers: dict | None = None):
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self.max_retries = max(1, int(max_retries))
        self.backoff_base = backoff_base
        self._providers = {}
        self._init_providers()
        if providers:
            self._providers.update(providers)

    @classmethod
    def from_config(cls, config) -> "LLMGateway":
        return cls(
            default_model=config.get("LLM_DEFAULT_CHAT_MODEL"),
            max_retries=config.get("LLM_MAX_RETRIES", 3),
        )

    def _init_providers(self):
        """Initialize available providers based on environment."""
        # Always register local stub
        self._providers["local"] = LocalStubProvider()

        # Register real providers if API keys present
        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider()

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._providers)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "local")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        # Fallback: local stub
        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "",
             max_retries: int | None = None, **kwargs) -> dict:
        """
        Send a chat completion request with retry.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to ``default_model``).
            purpose: What the call is for (e.g. "audit:seo_audit").
            max_retries: Attempts before giving up (defaults to the gateway's).
            **kwargs: temperature, max_tokens, json_mode passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            RuntimeError: every attempt failed.
        """
        model = model or self.default_model
        attempts = max_retries or self.max_retries
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, attempts + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
                latency_ms = int((time.time() - start_time) * 1000)
                result["latency_ms"] = latency_ms
                result["provider"] = provider_name
                logger.info(
                    "LLM call ok: purpose=%s provider=%s model=%s tokens=%d+%d latency=%dms",
                    purpose, provider_name, result.get("model", model),
                    result["prompt_tokens"], result["completion_tokens"], latency_ms,
                )
                return result
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed (%s): %s",
                               attempt, attempts, purpose, e)
                if attempt < attempts:
                    backoff = min(self.backoff_base * 2 ** (attempt - 1), 4)
                    threading.Event().wait(backoff)

        raise RuntimeError(f"LLM call failed after {attempts} attempts: {last_error}")
