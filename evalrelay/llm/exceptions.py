"""
Error taxonomy for the streaming relay.

Every failure is scoped to a single relay session:
- BadRequest / ConfigurationError fail fast, before any network activity
- UpstreamRejected / UpstreamUnreachable end the downstream stream with an error line
- DecodeNoise is recovered locally by the frame decoder
- DownstreamDisconnect cancels the upstream read
"""

from __future__ import annotations


class RelayError(Exception):
    """Base relay error with provider context."""

    http_status: int = 500
    category: str = "relay_error"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class BadRequest(RelayError):
    """Malformed or missing client input."""

    http_status = 400
    category = "bad_request"


class ConfigurationError(RelayError):
    """A required provider credential or setting is missing."""

    http_status = 500
    category = "configuration_error"


class UpstreamRejected(RelayError):
    """Provider answered with a non-success status or an error frame."""

    http_status = 502
    category = "upstream_rejected"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        body: str = "",
    ):
        super().__init__(message, provider, status_code)
        self.body = body


class UpstreamUnreachable(RelayError):
    """Transport-level failure talking to the provider."""

    http_status = 504
    category = "upstream_unreachable"


class DecodeNoise(RelayError):
    """A single SSE line that could not be decoded. Never propagated."""

    category = "decode_noise"

    def __init__(self, message: str, raw_line: str = ""):
        super().__init__(message)
        self.raw_line = raw_line


class DownstreamDisconnect(RelayError):
    """The client went away mid-stream."""

    http_status = 499
    category = "downstream_disconnect"
