"""
Streaming relay: upstream pump, frame decoding and downstream emission.
"""

from __future__ import annotations

from .emitter import STREAM_HEADERS, DownstreamEmitter, format_error_line
from .response import RelayStreamResponse
from .service import PreparedRelay, RelayService, StreamPayload
from .session import RelaySession, SessionOutcome, SessionState

__all__ = [
    "STREAM_HEADERS",
    "DownstreamEmitter",
    "PreparedRelay",
    "RelayService",
    "RelaySession",
    "RelayStreamResponse",
    "SessionOutcome",
    "SessionState",
    "StreamPayload",
    "format_error_line",
]
