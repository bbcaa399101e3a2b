"""OpenAI-style chat completion providers (OpenAI, DeepSeek, Perplexity)."""

from __future__ import annotations

from typing import Any

from ..models import GenerationParameters, ProviderType
from .base import ProviderAdapter, dig


class OpenAICompatibleAdapter(ProviderAdapter):
    """``choices[0].delta.content`` frames behind a bearer token."""

    provider = ProviderType.OPENAI

    def endpoint(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/chat/completions"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def build_body(
        self, model: str, prompt: str, params: GenerationParameters
    ) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
        }

    def extract_delta(self, frame: Any) -> str:
        content = dig(frame, "choices", 0, "delta", "content")
        return content if isinstance(content, str) else ""


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider = ProviderType.OPENAI


class DeepSeekAdapter(OpenAICompatibleAdapter):
    provider = ProviderType.DEEPSEEK


class PerplexityAdapter(OpenAICompatibleAdapter):
    provider = ProviderType.PERPLEXITY
