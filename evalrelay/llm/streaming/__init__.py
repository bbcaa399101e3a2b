"""
Streaming functionality for the relay.

This package contains:
- SSE line classification
- The carry-over frame decoder
- Decoder statistics
"""

from __future__ import annotations

from .models import DecoderStats, RawSSEChunk, SSEEventType, TextDelta
from .parser import DATA_PREFIX, DONE_SENTINEL, FrameDecoder, parse_sse_line

__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "DecoderStats",
    "FrameDecoder",
    "RawSSEChunk",
    "SSEEventType",
    "TextDelta",
    "parse_sse_line",
]
