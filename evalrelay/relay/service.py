"""
Relay orchestration entry point.

Validates the client body, renders the prompt and builds the upstream
connector. Everything that can fail before the stream opens fails here, so
``BadRequest`` and ``ConfigurationError`` surface as plain JSON responses
without any network activity.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError

from evalrelay.llm.client import UpstreamConnector
from evalrelay.llm.exceptions import BadRequest
from evalrelay.llm.models import RelaySettings, StreamRequest, resolve_provider
from evalrelay.llm.providers import get_adapter
from evalrelay.prompts import DEFAULT_TEMPLATE, render_prompt

from .emitter import DownstreamEmitter
from .response import RelayStreamResponse
from .session import RelaySession

logger = logging.getLogger(__name__)


class StreamPayload(BaseModel):
    """Client request body."""
    model_config = ConfigDict(extra="ignore")

    text: StrictStr
    provider: StrictStr | None = None
    template: StrictStr | None = None
    context: StrictStr | None = None
    max_tokens: StrictInt | None = None
    temperature: StrictFloat | StrictInt | None = None


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "body"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


@dataclass(frozen=True)
class PreparedRelay:
    """A validated request waiting for its downstream response."""
    request: StreamRequest
    prompt: str
    connector: UpstreamConnector

    def session(self, emitter: DownstreamEmitter) -> RelaySession:
        return RelaySession(self.request, self.prompt, self.connector, emitter)


class RelayService:
    """Creates relay sessions from client payloads."""

    def __init__(
        self,
        settings: RelaySettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def build_request(
        self, payload: Mapping[str, Any], template_id: str | None = None
    ) -> StreamRequest:
        """Validate a client body into a ``StreamRequest``.

        A route-fixed ``template_id`` wins over the body's ``template`` field.

        Raises:
            BadRequest: On missing text, unknown provider or template, or
                out-of-range generation parameters.
        """
        if not isinstance(payload, Mapping):
            raise BadRequest("Request body must be a JSON object")
        if payload.get("text") is None:
            raise BadRequest("Text content is required")
        try:
            body = StreamPayload.model_validate(dict(payload))
        except ValidationError as e:
            raise BadRequest(f"Invalid request body: {_validation_message(e)}") from e

        if not body.text.strip():
            raise BadRequest("Text content is required")

        provider = resolve_provider(body.provider or self.settings.default_provider)
        params = self.settings.generation.merged(
            max_tokens=body.max_tokens,
            temperature=None if body.temperature is None else float(body.temperature),
        )
        return StreamRequest(
            source_text=body.text,
            provider=provider,
            prompt_template_id=template_id or body.template or DEFAULT_TEMPLATE,
            context=body.context,
            extra_parameters=params,
        )

    def credential_status(self) -> dict[str, str]:
        """``configured`` or ``missing`` per provider. Key values are never exposed."""
        status = {
            provider.value: "configured" if provider_settings.api_key else "missing"
            for provider, provider_settings in self.settings.providers.items()
        }
        logger.info("API status check: %s", status)
        return status

    def create_connector(self, request: StreamRequest) -> UpstreamConnector:
        """Raises ConfigurationError when the provider has no credential."""
        return UpstreamConnector(
            get_adapter(request.provider),
            self.settings.provider(request.provider),
            http_settings=self.settings.http_client,
            transport=self._transport,
        )

    def prepare(
        self, payload: Mapping[str, Any], template_id: str | None = None
    ) -> PreparedRelay:
        request = self.build_request(payload, template_id)
        prompt = render_prompt(
            request.prompt_template_id, request.source_text, request.context
        )
        connector = self.create_connector(request)
        logger.info("Prepared relay: %s", request.describe())
        return PreparedRelay(request=request, prompt=prompt, connector=connector)

    def stream_response(
        self, payload: Mapping[str, Any], template_id: str | None = None
    ) -> RelayStreamResponse:
        return RelayStreamResponse(self.prepare(payload, template_id))
