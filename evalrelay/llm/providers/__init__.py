"""
Provider adapters, one per supported LLM provider.
"""

from __future__ import annotations

from ..models import ProviderType
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, UpstreamRequest
from .openai_compat import DeepSeekAdapter, OpenAIAdapter, PerplexityAdapter

_ADAPTERS: dict[ProviderType, ProviderAdapter] = {
    ProviderType.OPENAI: OpenAIAdapter(),
    ProviderType.ANTHROPIC: AnthropicAdapter(),
    ProviderType.DEEPSEEK: DeepSeekAdapter(),
    ProviderType.PERPLEXITY: PerplexityAdapter(),
}


def get_adapter(provider: ProviderType) -> ProviderAdapter:
    """Return the stateless adapter for ``provider``."""
    return _ADAPTERS[provider]


__all__ = [
    "AnthropicAdapter",
    "DeepSeekAdapter",
    "OpenAIAdapter",
    "PerplexityAdapter",
    "ProviderAdapter",
    "UpstreamRequest",
    "get_adapter",
]
