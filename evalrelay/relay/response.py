"""ASGI response that runs a relay session against the raw send/receive pair."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from .emitter import STREAM_HEADERS, STREAM_MEDIA_TYPE, DownstreamEmitter

if TYPE_CHECKING:                                        # pragma: no cover
    from .service import PreparedRelay


class RelayStreamResponse(Response):
    """Streams one relay session as chunked ``text/plain``.

    Built like ``starlette.responses.StreamingResponse``: there is no body to
    render, so ``init_headers`` is called directly and no ``content-length``
    is added.
    """

    def __init__(self, prepared: PreparedRelay, status_code: int = 200) -> None:
        self.prepared = prepared
        self.status_code = status_code
        self.media_type = STREAM_MEDIA_TYPE
        self.background = None
        self.init_headers(dict(STREAM_HEADERS))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        emitter = DownstreamEmitter(
            send, receive, status_code=self.status_code, headers=self.headers
        )
        await self.prepared.session(emitter).run()
