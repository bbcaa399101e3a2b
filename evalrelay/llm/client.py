"""
Upstream connector: opens one streaming completion against a provider.

The connector owns its ``httpx.AsyncClient`` for the lifetime of one relay
session and hands back the open response whose body is the provider's SSE
byte stream. Streaming completions are never retried (see ``NoAutoRetry``).
"""

from __future__ import annotations

import logging
from typing import Final

import httpx

from evalrelay.logging_utils import log_operation

from .exceptions import RelayError, UpstreamRejected, UpstreamUnreachable
from .models import GenerationParameters, HttpClientSettings, ProviderSettings
from .providers.base import ProviderAdapter, UpstreamRequest

logger = logging.getLogger(__name__)

# Longest provider error body carried into error messages
MAX_ERROR_BODY = 500


class NoAutoRetry:
    """Retry policy for streaming completions: one attempt, never retry.

    A retry after the provider accepted the request would bill the prompt
    twice and replay output the client has already rendered. Retrying is the
    caller's decision, made with the full request in hand.
    """

    name: Final = "NoAutoRetry"
    max_attempts: Final = 1

    @staticmethod
    def should_retry(error: RelayError, attempt: int) -> bool:
        return False


def build_timeout(settings: HttpClientSettings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.connect_timeout,
        read=settings.read_timeout,
        write=settings.write_timeout,
        pool=settings.pool_timeout,
    )


class UpstreamConnector:
    """Builds the provider request and opens its streaming response."""

    retry_policy = NoAutoRetry

    def __init__(
        self,
        adapter: ProviderAdapter,
        settings: ProviderSettings,
        http_settings: HttpClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # Fails with ConfigurationError before any client or socket exists
        self._api_key = settings.require_api_key()
        self.adapter = adapter
        self.settings = settings
        self.http_settings = http_settings or HttpClientSettings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.response: httpx.Response | None = None
        self.attempts = 0

    @property
    def provider(self) -> str:
        return self.settings.provider.value

    def build_request(
        self, prompt: str, params: GenerationParameters
    ) -> UpstreamRequest:
        return self.adapter.build_request(self.settings, self._api_key, prompt, params)

    @log_operation("upstream_connect")
    async def open(self, prompt: str, params: GenerationParameters) -> httpx.Response:
        """Send the streaming request and return the open response.

        Raises:
            UpstreamRejected: Provider answered with a non-2xx status.
            UpstreamUnreachable: DNS, TLS, connect, timeout or body decoding failure.
        """
        request = self.build_request(prompt, params)
        while True:
            self.attempts += 1
            try:
                return await self._send(request)
            except (UpstreamRejected, UpstreamUnreachable) as e:
                if not self.retry_policy.should_retry(e, self.attempts):
                    raise

    async def _send(self, upstream: UpstreamRequest) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=build_timeout(self.http_settings),
                transport=self._transport,
            )

        logger.info(
            "Opening %s stream: model=%s url=%s",
            self.provider, self.settings.model, upstream.url,
        )
        try:
            request = self._client.build_request(
                "POST", upstream.url, headers=upstream.headers, json=upstream.json
            )
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            raise UpstreamUnreachable(
                f"{self.provider} unreachable: {type(e).__name__}: {e}",
                provider=self.provider,
            ) from e

        if response.is_success:
            self.response = response
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.RequestError:
            body = ""
        finally:
            await response.aclose()

        logger.error(
            "%s rejected stream: status=%s body=%s",
            self.provider, response.status_code, body[:MAX_ERROR_BODY],
        )
        raise UpstreamRejected(
            f"{self.provider} API error: {response.status_code} - "
            f"{body[:MAX_ERROR_BODY]}",
            provider=self.provider,
            status_code=response.status_code,
            body=body,
        )

    async def aclose(self) -> None:
        """Release the upstream response and client. Safe to call repeatedly."""
        response, self.response = self.response, None
        client, self._client = self._client, None
        if response is not None:
            await response.aclose()
        if client is not None:
            await client.aclose()

    async def __aenter__(self) -> UpstreamConnector:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
