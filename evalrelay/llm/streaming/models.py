"""
Streaming-specific dataclasses for the frame decoder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# A decoded fragment of model output. Never empty once it leaves the decoder.
TextDelta = str


class SSEEventType(Enum):
    """Classification of a single SSE line."""
    CHUNK = "chunk"
    COMPLETION = "completion"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class RawSSEChunk:
    """One ``data:`` line from the upstream response."""
    event_type: SSEEventType
    data: Any
    raw_data: str


@dataclass
class DecoderStats:
    """Per-session decoding counters."""
    lines: int = 0
    frames: int = 0
    deltas: int = 0
    noise: int = 0
    heartbeats: int = 0
    ignored: int = 0
    bytes_in: int = 0
    done: bool = field(default=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "lines": self.lines,
            "frames": self.frames,
            "deltas": self.deltas,
            "noise": self.noise,
            "heartbeats": self.heartbeats,
            "ignored": self.ignored,
            "bytes_in": self.bytes_in,
            "done": self.done,
        }
