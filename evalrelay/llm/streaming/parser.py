"""
SSE frame decoder with carry-over buffering and best-effort noise recovery.

Upstream chunk boundaries never line up with SSE records: one JSON frame may
span several chunks and one chunk may hold several frames. The decoder keeps
the unconsumed tail of the previous chunk, processes only complete lines and
hands every parsed frame to the provider adapter for text extraction.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable

from ..exceptions import DecodeNoise, UpstreamRejected
from ..providers.base import ProviderAdapter
from .models import DecoderStats, RawSSEChunk, SSEEventType, TextDelta

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
HEARTBEAT_PAYLOADS = frozenset({"", "ping", "heartbeat"})
# Longest raw line echoed into debug logs
MAX_LOGGED_LINE = 200


def parse_sse_line(line: str) -> RawSSEChunk | None:
    """Classify a single complete SSE line.

    Returns None for lines without the ``data: `` prefix (blank keep-alives,
    ``event:`` lines, comments).

    Raises:
        DecodeNoise: If the payload is not valid JSON.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX):]
    marker = payload.strip()

    if marker == DONE_SENTINEL:
        return RawSSEChunk(
            event_type=SSEEventType.COMPLETION, data=None, raw_data=payload
        )

    if marker in HEARTBEAT_PAYLOADS:
        return RawSSEChunk(
            event_type=SSEEventType.HEARTBEAT, data=None, raw_data=payload
        )

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeNoise(f"JSON decode error: {e}", raw_line=line) from e

    return RawSSEChunk(event_type=SSEEventType.CHUNK, data=data, raw_data=payload)


class FrameDecoder:
    """Turns non-aligned upstream byte chunks into ordered text deltas.

    One instance per relay session; there is no cross-session resumption.
    """

    def __init__(self, adapter: ProviderAdapter, status_code: int | None = None):
        self.adapter = adapter
        self.status_code = status_code
        self.stats = DecoderStats()
        self._carry = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._error: UpstreamRejected | None = None

    @property
    def done(self) -> bool:
        """True once ``[DONE]`` or a provider error frame was observed."""
        return self.stats.done

    @property
    def carry_over(self) -> str:
        return self._carry

    def feed(self, chunk: bytes | str) -> list[TextDelta]:
        """Consume one upstream chunk and return the deltas it completes."""
        if isinstance(chunk, bytes):
            self.stats.bytes_in += len(chunk)
            text = self._utf8.decode(chunk)
        else:
            text = chunk

        lines = (self._carry + text).split("\n")
        self._carry = lines.pop()
        return self._process_lines(lines)

    def flush(self) -> list[TextDelta]:
        """Process whatever is left once the upstream reaches EOF."""
        tail = self._carry + self._utf8.decode(b"", final=True)
        self._carry = ""
        if not tail:
            return []
        return self._process_lines([tail])

    def raise_for_error(self) -> None:
        """Re-raise a provider error frame seen during decoding."""
        if self._error is not None:
            raise self._error

    async def decode(
        self, byte_stream: AsyncIterable[bytes]
    ) -> AsyncGenerator[TextDelta]:
        """Pull loop over the upstream body yielding non-empty deltas in order.

        After ``[DONE]`` the stream is still drained until it ends naturally,
        but nothing more is yielded.
        """
        async for chunk in byte_stream:
            for delta in self.feed(chunk):
                yield delta
            self.raise_for_error()

        for delta in self.flush():
            yield delta
        self.raise_for_error()

    def get_stats(self) -> dict[str, int | bool]:
        """Get decoding statistics for monitoring."""
        return self.stats.as_dict()

    def _process_lines(self, lines: list[str]) -> list[TextDelta]:
        deltas: list[TextDelta] = []
        for raw_line in lines:
            delta = self._process_line(raw_line.removesuffix("\r"))
            if delta:
                self.stats.deltas += 1
                deltas.append(delta)
        return deltas

    def _process_line(self, line: str) -> TextDelta:
        self.stats.lines += 1
        if self.done:
            return ""

        try:
            chunk = parse_sse_line(line)
        except DecodeNoise as e:
            self.stats.noise += 1
            logger.debug(
                "Skipping undecodable SSE line (%s): %r", e, line[:MAX_LOGGED_LINE]
            )
            return ""

        if chunk is None:
            self.stats.ignored += 1
            return ""

        if chunk.event_type == SSEEventType.COMPLETION:
            self.stats.done = True
            return ""

        if chunk.event_type == SSEEventType.HEARTBEAT:
            self.stats.heartbeats += 1
            return ""

        self.stats.frames += 1
        message = self.adapter.extract_error(chunk.data)
        if message is not None:
            self.stats.done = True
            self._error = UpstreamRejected(
                f"{self.adapter.provider.value} stream error: {message}",
                provider=self.adapter.provider.value,
                status_code=self.status_code,
                body=chunk.raw_data,
            )
            return ""

        return self.adapter.extract_delta(chunk.data)
