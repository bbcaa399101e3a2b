"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any

from ..models import GenerationParameters, ProviderType
from .base import ProviderAdapter, dig

ANTHROPIC_VERSION = "2023-06-01"
CONTENT_BLOCK_DELTA = "content_block_delta"


class AnthropicAdapter(ProviderAdapter):
    """``content_block_delta`` frames behind an ``x-api-key`` header."""

    provider = ProviderType.ANTHROPIC

    def endpoint(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/messages"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}

    def build_body(
        self, model: str, prompt: str, params: GenerationParameters
    ) -> dict[str, Any]:
        return {
            "model": model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "stream": True,
            "messages": [{"role": "user", "content": prompt}],
        }

    def extract_delta(self, frame: Any) -> str:
        if dig(frame, "type") != CONTENT_BLOCK_DELTA:
            return ""
        text = dig(frame, "delta", "text")
        return text if isinstance(text, str) else ""
