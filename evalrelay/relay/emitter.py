"""
Downstream emitter: writes text deltas onto the client's ASGI response.

Every delta becomes its own ``http.response.body`` message so the ASGI server
flushes it immediately. Headers switch off compression and proxy buffering.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from starlette.types import Message, Receive, Send

from evalrelay.llm.exceptions import DownstreamDisconnect

logger = logging.getLogger(__name__)

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

STREAM_HEADERS: Mapping[str, str] = {
    "Content-Type": STREAM_MEDIA_TYPE,
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Content-Encoding": "identity",
    "Access-Control-Allow-Origin": "*",
}

ERROR_PREFIX = "ERROR: "


def encode_headers(headers: Mapping[str, str]) -> list[tuple[bytes, bytes]]:
    return [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in headers.items()
    ]


def format_error_line(error: Exception | str, after_output: bool = False) -> str:
    """One readable line describing why the stream ended early."""
    message = str(error).strip() or type(error).__name__
    line = f"{ERROR_PREFIX}{' '.join(message.splitlines())}\n"
    return f"\n{line}" if after_output else line


class DownstreamEmitter:
    """Pushes deltas to one client response and ends it exactly once."""

    def __init__(
        self,
        send: Send,
        receive: Receive,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self._send = send
        self._receive = receive
        self.status_code = status_code
        self.headers = dict(STREAM_HEADERS if headers is None else headers)
        self.encoding = encoding

        self.started = False
        self.closed = False
        self.disconnected = False
        self.error_written = False
        self.writes = 0
        self.bytes_written = 0

    async def start(self) -> None:
        """Send the response status and headers if not already sent."""
        if self.started:
            return
        await self._safe_send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": encode_headers(self.headers),
        })
        self.started = True

    async def write(self, delta: str) -> None:
        """Write one delta and flush it. Empty deltas are dropped."""
        if not delta:
            return
        if self.closed:
            raise DownstreamDisconnect("Response already closed")
        await self.start()
        body = delta.encode(self.encoding)
        await self._safe_send({
            "type": "http.response.body",
            "body": body,
            "more_body": True,
        })
        self.writes += 1
        self.bytes_written += len(body)

    async def write_error_line(self, error: Exception | str) -> None:
        """Append a single trailing error line. Later calls are ignored."""
        if self.error_written or self.closed or self.disconnected:
            return
        self.error_written = True
        await self.start()
        await self._safe_send({
            "type": "http.response.body",
            "body": format_error_line(error, self.writes > 0).encode(self.encoding),
            "more_body": True,
        })

    async def close(self) -> None:
        """End the response body. Idempotent."""
        if self.closed:
            return
        self.closed = True
        if self.disconnected:
            return
        try:
            await self.start()
            await self._safe_send({
                "type": "http.response.body",
                "body": b"",
                "more_body": False,
            })
        except DownstreamDisconnect:
            logger.debug("Client gone before the response could be closed")

    async def wait_for_disconnect(self) -> None:
        """Resolve once the client disconnects."""
        while not self.disconnected:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self.disconnected = True

    def get_stats(self) -> dict[str, Any]:
        return {
            "writes": self.writes,
            "bytes_written": self.bytes_written,
            "error_written": self.error_written,
            "disconnected": self.disconnected,
        }

    async def _safe_send(self, message: Message) -> None:
        if self.disconnected:
            raise DownstreamDisconnect("Client disconnected")
        try:
            await self._send(message)
        except OSError as e:
            self.disconnected = True
            raise DownstreamDisconnect(f"Client disconnected: {e}") from e
