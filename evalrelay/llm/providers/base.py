"""
Provider adapter interface.

Each provider supplies only request construction and pure frame extraction.
Buffering, line splitting and flushing live in the shared decoder and emitter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models import GenerationParameters, ProviderSettings, ProviderType


@dataclass(frozen=True)
class UpstreamRequest:
    """A fully built provider HTTP request."""
    url: str
    headers: dict[str, str]
    json: dict[str, Any] = field(default_factory=dict)


def dig(frame: Any, *path: str | int) -> Any:
    """Follow ``path`` through nested dicts/lists, returning None when absent."""
    current = frame
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


class ProviderAdapter(ABC):
    """One implementation per provider."""

    provider: ProviderType

    def build_request(
        self,
        settings: ProviderSettings,
        api_key: str,
        prompt: str,
        params: GenerationParameters,
    ) -> UpstreamRequest:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **self.auth_headers(api_key),
            **dict(settings.extra_headers),
        }
        return UpstreamRequest(
            url=self.endpoint(settings.base_url),
            headers=headers,
            json=self.build_body(settings.model, prompt, params),
        )

    @abstractmethod
    def endpoint(self, base_url: str) -> str:
        ...

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        ...

    @abstractmethod
    def build_body(
        self, model: str, prompt: str, params: GenerationParameters
    ) -> dict[str, Any]:
        """Request body. Must always set the provider's streaming flag."""
        ...

    @abstractmethod
    def extract_delta(self, frame: Any) -> str:
        """Incremental text of a frame, or ``""`` when the frame carries none."""
        ...

    def extract_error(self, frame: Any) -> str | None:
        """Human-readable message if the frame reports a provider error."""
        error = dig(frame, "error")
        if error is None:
            return None
        if isinstance(error, dict):
            message = error.get("message") or error.get("type")
            return str(message) if message else "provider reported an error"
        return str(error)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider.value!r})"
