"""
LLM provider integration for the streaming relay.

This package provides:
- Immutable provider and request models
- The relay error taxonomy
- Provider adapters (OpenAI, Anthropic, DeepSeek, Perplexity)
- SSE frame decoding
- The upstream connector (``evalrelay.llm.client``)
"""

from __future__ import annotations

from .exceptions import (
    BadRequest,
    ConfigurationError,
    DecodeNoise,
    DownstreamDisconnect,
    RelayError,
    UpstreamRejected,
    UpstreamUnreachable,
)
from .models import (
    PROVIDER_ALIASES,
    GenerationParameters,
    HttpClientSettings,
    ProviderSettings,
    ProviderType,
    RelaySettings,
    StreamRequest,
    resolve_provider,
)

__all__ = [
    "PROVIDER_ALIASES",
    # Exceptions
    "BadRequest",
    "ConfigurationError",
    "DecodeNoise",
    "DownstreamDisconnect",
    # Core models
    "GenerationParameters",
    "HttpClientSettings",
    "ProviderSettings",
    "ProviderType",
    "RelayError",
    "RelaySettings",
    "StreamRequest",
    "UpstreamRejected",
    "UpstreamUnreachable",
    "resolve_provider",
]
