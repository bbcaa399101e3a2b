#!/usr/bin/env python3
"""
Tests for the relay session state machine, the downstream emitter and
disconnect handling, driven through fake ASGI send/receive callables.
"""

import asyncio
import json

import httpx
import pytest

from evalrelay.llm.client import UpstreamConnector
from evalrelay.llm.exceptions import DownstreamDisconnect, UpstreamRejected
from evalrelay.llm.models import ProviderSettings, ProviderType, StreamRequest
from evalrelay.llm.providers import get_adapter
from evalrelay.relay.emitter import DownstreamEmitter, format_error_line
from evalrelay.relay.session import RelaySession, SessionOutcome, SessionState


def openai_frame(content: str) -> bytes:
    return ("data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n").encode()


class FakeClient:
    """Records ASGI messages and disconnects on demand."""

    def __init__(self, fail_on_body=False):
        self.messages = []
        self.fail_on_body = fail_on_body
        self.disconnect = asyncio.Event()
        self.first_body = asyncio.Event()

    async def send(self, message):
        if self.fail_on_body and message["type"] == "http.response.body":
            raise ConnectionResetError("client closed the socket")
        self.messages.append(message)
        if message["type"] == "http.response.body" and message["body"]:
            self.first_body.set()

    async def receive(self):
        await self.disconnect.wait()
        return {"type": "http.disconnect"}

    @property
    def bodies(self):
        return [
            m["body"] for m in self.messages
            if m["type"] == "http.response.body" and m["body"]
        ]

    @property
    def text(self):
        return b"".join(self.bodies).decode("utf-8")

    @property
    def final_messages(self):
        return [
            m for m in self.messages
            if m["type"] == "http.response.body" and not m.get("more_body", False)
        ]

    @property
    def headers(self):
        start = next(m for m in self.messages if m["type"] == "http.response.start")
        return dict(start["headers"])


def make_session(handler, client, provider=ProviderType.OPENAI):
    settings = ProviderSettings(
        provider=provider,
        base_url="https://upstream.test/v1",
        model="test-model",
        api_key="sk-test",
    )
    connector = UpstreamConnector(
        get_adapter(provider), settings, transport=httpx.MockTransport(handler)
    )
    request = StreamRequest(
        source_text="Some text", provider=provider, prompt_template_id="intelligence"
    )
    emitter = DownstreamEmitter(client.send, client.receive)
    return RelaySession(request, "prompt", connector, emitter, session_id="test")


def streaming_handler(chunks, status_code=200):
    async def body():
        for chunk in chunks:
            yield chunk

    async def handler(request):
        return httpx.Response(status_code, content=body())

    return handler


class TestRelaySession:
    """Test complete sessions end to end."""

    @pytest.mark.asyncio
    async def test_deltas_written_in_order(self):
        chunks = [
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n',
            b'data: {"choices":[{"del',
            b'ta":{"content":"lo"}}]}\n',
            b"data: [DONE]\n",
        ]
        client = FakeClient()
        session = make_session(streaming_handler(chunks), client)

        outcome = await session.run()

        assert outcome is SessionOutcome.COMPLETED
        assert client.bodies == [b"Hel", b"lo"]
        assert len(client.final_messages) == 1
        assert session.state is SessionState.CLOSED
        assert session.history == [
            SessionState.IDLE,
            SessionState.CONNECTING,
            SessionState.STREAMING,
            SessionState.CLOSED,
        ]
        assert session.emitter.bytes_written == 5

    @pytest.mark.asyncio
    async def test_streaming_headers(self):
        client = FakeClient()
        session = make_session(streaming_handler([openai_frame("x")]), client)
        await session.run()

        headers = client.headers
        assert headers[b"content-type"] == b"text/plain; charset=utf-8"
        assert headers[b"x-accel-buffering"] == b"no"
        assert headers[b"cache-control"] == b"no-cache, no-transform"
        assert headers[b"content-encoding"] == b"identity"

    @pytest.mark.asyncio
    async def test_anthropic_stream(self):
        chunks = [
            b'event: message_start\ndata: {"type":"message_start"}\n\n',
            b'event: content_block_delta\ndata: {"type":"content_block_delta",'
            b'"delta":{"type":"text_delta","text":"Hi"}}\n\n',
            b'event: message_stop\ndata: {"type":"message_stop"}\n\n',
        ]
        client = FakeClient()
        session = make_session(streaming_handler(chunks), client, ProviderType.ANTHROPIC)

        assert await session.run() is SessionOutcome.COMPLETED
        assert client.text == "Hi"

    @pytest.mark.asyncio
    async def test_rejected_before_streaming(self):
        async def handler(request):
            return httpx.Response(500, content=b"internal error")

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_REJECTED
        assert client.text == "ERROR: openai API error: 500 - internal error\n"
        assert session.history == [
            SessionState.IDLE, SessionState.CONNECTING, SessionState.CLOSED
        ]
        assert session.decoder.stats.lines == 0
        assert isinstance(session.error, UpstreamRejected)
        assert len(client.final_messages) == 1

    @pytest.mark.asyncio
    async def test_unreachable_upstream(self):
        def handler(request):
            raise httpx.ConnectError("name resolution failed")

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_UNREACHABLE
        assert client.text.startswith("ERROR: openai unreachable: ConnectError")
        assert SessionState.STREAMING not in session.history

    @pytest.mark.asyncio
    async def test_stream_interrupted_after_output(self):
        async def body():
            yield openai_frame("Hel")
            raise httpx.ReadError("connection reset by peer")

        async def handler(request):
            return httpx.Response(200, content=body())

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_UNREACHABLE
        assert client.text == (
            "Hel\nERROR: openai stream interrupted: ReadError: connection reset by peer\n"
        )

    @pytest.mark.asyncio
    async def test_corrupt_compressed_body_at_connect(self):
        async def handler(request):
            return httpx.Response(
                200, headers={"content-encoding": "gzip"}, content=b"data: not gzip\n"
            )

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_UNREACHABLE
        assert client.text.startswith("ERROR: openai ")
        assert "DecodingError" in client.text
        assert client.text.count("ERROR:") == 1
        assert len(client.final_messages) == 1
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_corrupt_compressed_body_mid_stream(self):
        async def body():
            yield b"definitely not gzip data"

        async def handler(request):
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=body())

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_UNREACHABLE
        assert client.text.startswith("ERROR: openai stream interrupted: DecodingError")
        assert len(client.final_messages) == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure_ends_stream_with_error_line(self):
        async def body():
            yield openai_frame("Hel")
            raise RuntimeError("adapter exploded")

        async def handler(request):
            return httpx.Response(200, content=body())

        client = FakeClient()
        session = make_session(handler, client)

        outcome = await session.run()

        assert outcome is SessionOutcome.RELAY_FAILED
        assert client.text == "Hel\nERROR: openai relay failed: RuntimeError: adapter exploded\n"
        assert len(client.final_messages) == 1
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_error_frame_mid_stream(self):
        chunks = [
            openai_frame("partial"),
            b'data: {"error": {"message": "overloaded"}}\n',
            openai_frame("never"),
        ]
        client = FakeClient()
        session = make_session(streaming_handler(chunks), client)

        outcome = await session.run()

        assert outcome is SessionOutcome.UPSTREAM_REJECTED
        assert client.text == "partial\nERROR: openai stream error: overloaded\n"

    @pytest.mark.asyncio
    async def test_client_socket_error_stops_session(self):
        client = FakeClient(fail_on_body=True)
        session = make_session(streaming_handler([openai_frame("a"), openai_frame("b")]), client)

        outcome = await session.run()

        assert outcome is SessionOutcome.DOWNSTREAM_DISCONNECT
        assert session.emitter.disconnected
        assert client.bodies == []


class TestDisconnect:
    """A client disconnect cancels the pending upstream read."""

    @pytest.mark.asyncio
    async def test_disconnect_cancels_upstream_read(self):
        upstream = {"reads": 0, "cancelled": False, "finished": False}
        never = asyncio.Event()

        async def body():
            try:
                upstream["reads"] += 1
                yield openai_frame("Hel")
                upstream["reads"] += 1
                await never.wait()
                yield openai_frame("lo")
                upstream["finished"] = True
            except asyncio.CancelledError:
                upstream["cancelled"] = True
                raise

        async def handler(request):
            return httpx.Response(200, content=body())

        client = FakeClient()
        session = make_session(handler, client)

        task = asyncio.create_task(session.run())
        await asyncio.wait_for(client.first_body.wait(), timeout=2)
        client.disconnect.set()
        outcome = await asyncio.wait_for(task, timeout=2)

        assert outcome is SessionOutcome.DOWNSTREAM_DISCONNECT
        assert upstream["cancelled"]
        assert not upstream["finished"]
        assert upstream["reads"] == 2
        assert client.text == "Hel"
        assert "ERROR" not in client.text
        assert client.final_messages == []
        assert session.state is SessionState.CLOSED
        assert session.connector.response is None


class TestSessionLifecycle:
    """Test teardown and transition rules."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = FakeClient()
        session = make_session(streaming_handler([openai_frame("x")]), client)
        await session.run()
        await session.close()
        await session.close()

        assert len(client.final_messages) == 1
        assert session.history.count(SessionState.CLOSED) == 1

    @pytest.mark.asyncio
    async def test_close_from_idle(self):
        client = FakeClient()
        session = make_session(streaming_handler([]), client)
        await session.close()

        assert session.history == [SessionState.IDLE, SessionState.CLOSED]
        assert len(client.final_messages) == 1

    def test_illegal_transition(self):
        session = make_session(streaming_handler([]), FakeClient())
        with pytest.raises(RuntimeError, match="idle -> streaming"):
            session._transition(SessionState.STREAMING)


class TestDownstreamEmitter:
    """Test the response writer on its own."""

    @pytest.mark.asyncio
    async def test_each_delta_is_its_own_body_message(self):
        client = FakeClient()
        emitter = DownstreamEmitter(client.send, client.receive)
        await emitter.write("a")
        await emitter.write("")
        await emitter.write("b")
        await emitter.close()

        assert [m["type"] for m in client.messages] == [
            "http.response.start",
            "http.response.body",
            "http.response.body",
            "http.response.body",
        ]
        assert client.bodies == [b"a", b"b"]
        assert emitter.writes == 2

    @pytest.mark.asyncio
    async def test_write_after_close(self):
        client = FakeClient()
        emitter = DownstreamEmitter(client.send, client.receive)
        await emitter.close()
        with pytest.raises(DownstreamDisconnect):
            await emitter.write("late")

    @pytest.mark.asyncio
    async def test_error_line_written_once(self):
        client = FakeClient()
        emitter = DownstreamEmitter(client.send, client.receive)
        await emitter.write_error_line("first")
        await emitter.write_error_line("second")
        await emitter.close()

        assert client.text == "ERROR: first\n"

    @pytest.mark.asyncio
    async def test_wait_for_disconnect(self):
        client = FakeClient()
        emitter = DownstreamEmitter(client.send, client.receive)
        client.disconnect.set()
        await asyncio.wait_for(emitter.wait_for_disconnect(), timeout=1)
        assert emitter.disconnected


class TestFormatErrorLine:
    def test_single_line(self):
        assert format_error_line("boom") == "ERROR: boom\n"

    def test_after_output_starts_on_new_line(self):
        assert format_error_line("boom", after_output=True) == "\nERROR: boom\n"

    def test_multiline_message_is_flattened(self):
        assert format_error_line("a\nb") == "ERROR: a b\n"

    def test_empty_message_uses_type_name(self):
        assert format_error_line(ValueError()) == "ERROR: ValueError\n"
