"""
Core relay dataclasses.

This module provides the immutable value types shared by the relay:
- Provider identifiers and the client-facing alias table
- Generation parameters
- Per-provider settings and the process-wide relay settings
- The per-call stream request
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import BadRequest, ConfigurationError


class ProviderType(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    PERPLEXITY = "perplexity"


# Client-facing provider names
PROVIDER_ALIASES: Mapping[str, ProviderType] = MappingProxyType({
    "zhi1": ProviderType.OPENAI,
    "zhi2": ProviderType.ANTHROPIC,
    "zhi3": ProviderType.DEEPSEEK,
    "zhi4": ProviderType.PERPLEXITY,
})

MAX_TEMPERATURE = 2.0


def resolve_provider(name: str) -> ProviderType:
    """Map an alias (``zhi1``) or canonical name (``openai``) to a provider.

    Raises:
        BadRequest: If the name is not recognised.
    """
    if not isinstance(name, str) or not name.strip():
        raise BadRequest("Provider must be a non-empty string")

    key = name.strip().lower()
    if key in PROVIDER_ALIASES:
        return PROVIDER_ALIASES[key]
    try:
        return ProviderType(key)
    except ValueError:
        raise BadRequest(f"Unknown provider '{name}'") from None


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters forwarded to the provider."""
    max_tokens: int = 4000
    temperature: float = 0.7

    def __post_init__(self) -> None:
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int):
            raise BadRequest("max_tokens must be an integer")
        if self.max_tokens < 1:
            raise BadRequest("max_tokens must be at least 1")
        if not 0.0 <= self.temperature <= MAX_TEMPERATURE:
            raise BadRequest(f"temperature must be between 0 and {MAX_TEMPERATURE}")

    def merged(
        self, max_tokens: int | None = None, temperature: float | None = None
    ) -> GenerationParameters:
        """Return a copy with the given overrides applied."""
        return GenerationParameters(
            max_tokens=self.max_tokens if max_tokens is None else max_tokens,
            temperature=self.temperature if temperature is None else temperature,
        )


@dataclass(frozen=True)
class ProviderSettings:
    """Connection settings for one provider."""
    provider: ProviderType
    base_url: str
    model: str
    api_key: str | None = None
    extra_headers: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def env_var(self) -> str:
        return f"{self.provider.value.upper()}_API_KEY"

    def require_api_key(self) -> str:
        """Return the credential or fail before any network call is made."""
        if not self.api_key:
            raise ConfigurationError(
                f"API key '{self.env_var}' not found in environment variables "
                f"for provider '{self.provider.value}'",
                provider=self.provider.value,
            )
        return self.api_key


@dataclass(frozen=True)
class HttpClientSettings:
    """Upstream HTTP client timeouts, in seconds. ``None`` disables a timeout."""
    connect_timeout: float = 10.0
    read_timeout: float | None = 120.0
    write_timeout: float = 10.0
    pool_timeout: float = 10.0


@dataclass(frozen=True)
class RelaySettings:
    """Process-wide relay configuration, resolved once at startup."""
    providers: Mapping[ProviderType, ProviderSettings]
    http_client: HttpClientSettings = field(default_factory=HttpClientSettings)
    generation: GenerationParameters = field(default_factory=GenerationParameters)
    default_provider: str = "zhi1"

    def __post_init__(self) -> None:
        # Freeze the mapping so settings cannot be mutated at runtime
        object.__setattr__(self, "providers", MappingProxyType(dict(self.providers)))

    def provider(self, provider: ProviderType) -> ProviderSettings:
        try:
            return self.providers[provider]
        except KeyError:
            raise ConfigurationError(
                f"Provider '{provider.value}' is not configured",
                provider=provider.value,
            ) from None


@dataclass(frozen=True)
class StreamRequest:
    """One client call to the relay."""
    source_text: str
    provider: ProviderType
    prompt_template_id: str
    context: str | None = None
    extra_parameters: GenerationParameters = field(default_factory=GenerationParameters)

    def describe(self) -> dict[str, Any]:
        """Loggable summary; never includes the source text itself."""
        return {
            "provider": self.provider.value,
            "template": self.prompt_template_id,
            "text_length": len(self.source_text),
            "has_context": bool(self.context),
            "max_tokens": self.extra_parameters.max_tokens,
            "temperature": self.extra_parameters.temperature,
        }
