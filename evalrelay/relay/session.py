"""
Relay session: one upstream stream bound to one downstream response.

State machine::

    Idle -> Connecting -> Streaming -> Closed
                 \\_________________________/

The upstream pump and a downstream disconnect watcher run as separate tasks.
Whichever finishes first decides the outcome; every path ends in the same
idempotent teardown that closes both sides.
"""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum

import httpx

from evalrelay.llm.client import UpstreamConnector
from evalrelay.llm.exceptions import (
    DownstreamDisconnect,
    RelayError,
    UpstreamRejected,
    UpstreamUnreachable,
)
from evalrelay.llm.models import StreamRequest
from evalrelay.llm.streaming.parser import FrameDecoder
from evalrelay.logging_utils import ContextualLogger, operation_context

from .emitter import DownstreamEmitter


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


class SessionOutcome(Enum):
    COMPLETED = "completed"
    UPSTREAM_REJECTED = "upstream_rejected"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    DOWNSTREAM_DISCONNECT = "downstream_disconnect"
    RELAY_FAILED = "relay_failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.CONNECTING, SessionState.CLOSED}),
    SessionState.CONNECTING: frozenset({SessionState.STREAMING, SessionState.CLOSED}),
    SessionState.STREAMING: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class RelaySession:
    """Owns one upstream connection and one downstream response."""

    def __init__(
        self,
        request: StreamRequest,
        prompt: str,
        connector: UpstreamConnector,
        emitter: DownstreamEmitter,
        session_id: str | None = None,
    ) -> None:
        self.request = request
        self.prompt = prompt
        self.connector = connector
        self.emitter = emitter
        self.decoder = FrameDecoder(connector.adapter)
        self.session_id = session_id or uuid.uuid4().hex[:12]

        self.state = SessionState.IDLE
        self.history: list[SessionState] = [SessionState.IDLE]
        self.outcome: SessionOutcome | None = None
        self.error: RelayError | None = None
        self._close_lock = asyncio.Lock()
        self.log = ContextualLogger({
            "session_id": self.session_id,
            "provider": request.provider.value,
        })

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal relay session transition {self.state.value} -> "
                f"{new_state.value}"
            )
        self.log.debug(
            "Session state change", old=self.state.value, new=new_state.value
        )
        self.state = new_state
        self.history.append(new_state)

    async def run(self) -> SessionOutcome:
        """Relay the upstream stream to the client until either side ends."""
        async with operation_context(
            "relay_session",
            context={"session_id": self.session_id, **self.request.describe()},
        ):
            self._transition(SessionState.CONNECTING)
            pump = asyncio.create_task(self._pump(), name=f"relay-pump-{self.session_id}")
            watcher = asyncio.create_task(
                self.emitter.wait_for_disconnect(),
                name=f"relay-watch-{self.session_id}",
            )
            try:
                done, _ = await asyncio.wait(
                    {pump, watcher}, return_when=asyncio.FIRST_COMPLETED
                )
                if pump in done:
                    self.outcome = await self._pump_outcome(pump)
                else:
                    self.log.info("Client disconnected, cancelling upstream read")
                    self.outcome = SessionOutcome.DOWNSTREAM_DISCONNECT
            finally:
                await self._cancel(pump, watcher)
                await self.close()
        return self.outcome

    async def _pump(self) -> SessionOutcome:
        try:
            response = await self.connector.open(
                self.prompt, self.request.extra_parameters
            )
        except UpstreamRejected as e:
            return await self._fail(e, SessionOutcome.UPSTREAM_REJECTED)
        except UpstreamUnreachable as e:
            return await self._fail(e, SessionOutcome.UPSTREAM_UNREACHABLE)

        self._transition(SessionState.STREAMING)
        self.decoder.status_code = response.status_code

        try:
            async for delta in self.decoder.decode(response.aiter_bytes()):
                await self.emitter.write(delta)
        except DownstreamDisconnect:
            self.log.info("Client went away mid-write")
            return SessionOutcome.DOWNSTREAM_DISCONNECT
        except UpstreamRejected as e:
            return await self._fail(e, SessionOutcome.UPSTREAM_REJECTED)
        except httpx.RequestError as e:
            error = UpstreamUnreachable(
                f"{self.connector.provider} stream interrupted: "
                f"{type(e).__name__}: {e}",
                provider=self.connector.provider,
            )
            return await self._fail(error, SessionOutcome.UPSTREAM_UNREACHABLE)

        return SessionOutcome.COMPLETED

    async def _pump_outcome(self, pump: asyncio.Task) -> SessionOutcome:
        """Result of a finished pump; unexpected failures end the stream with an error line."""
        try:
            return pump.result()
        except Exception as e:
            self.log.error(
                "Relay pump crashed", error_type=type(e).__name__, error_message=str(e)
            )
            error = RelayError(
                f"{self.connector.provider} relay failed: {type(e).__name__}: {e}",
                provider=self.connector.provider,
            )
            return await self._fail(error, SessionOutcome.RELAY_FAILED)

    async def _fail(self, error: RelayError, outcome: SessionOutcome) -> SessionOutcome:
        self.error = error
        self.log.warning(
            "Relay session failed",
            error_category=error.category,
            status_code=error.status_code,
            error_message=str(error),
        )
        try:
            await self.emitter.write_error_line(error)
        except DownstreamDisconnect:
            return SessionOutcome.DOWNSTREAM_DISCONNECT
        return outcome

    @staticmethod
    async def _cancel(*tasks: asyncio.Task) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Tear down both sides of the session. Safe to call repeatedly."""
        async with self._close_lock:
            if self.state is SessionState.CLOSED:
                return
            self._transition(SessionState.CLOSED)
            try:
                await self.connector.aclose()
            finally:
                await self.emitter.close()
            self.log.info(
                "Relay session closed",
                outcome=self.outcome.value if self.outcome else None,
                **self.decoder.get_stats(),
                **self.emitter.get_stats(),
            )
