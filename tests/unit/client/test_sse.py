import json

import httpx
import pytest

from src.client.errors import ParseError, StreamConnectionError, StreamOpenError
from src.client.sse import (
    ErrorEvent,
    MessageEvent,
    ParseFailure,
    ServerSentEvent,
    SessionEvent,
    decode_event,
    iter_sse,
    stream_chat,
)


async def _lines(*lines):
    for line in lines:
        yield line


async def _frames(*lines):
    return [frame async for frame in iter_sse(_lines(*lines))]


def _event_stream(body: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream; charset=utf-8"},
        content=body.encode("utf-8"),
    )


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://relay.test")


@pytest.mark.asyncio
async def test_iter_sse_splits_frames_on_blank_lines():
    frames = await _frames(
        "event: session",
        'data: {"sessionId": "S1"}',
        "",
        ": keep-alive",
        'data: {"content": "Hi"}',
        "",
    )

    assert frames == [
        ServerSentEvent(event="session", data='{"sessionId": "S1"}'),
        ServerSentEvent(event="message", data='{"content": "Hi"}'),
    ]


@pytest.mark.asyncio
async def test_iter_sse_joins_multiline_data_and_drops_unterminated_frame():
    frames = await _frames(
        "event: message",
        "data: first",
        "data: second",
        "",
        "event: message",
        'data: {"content": "cut off"}',
    )

    assert frames == [ServerSentEvent(event="message", data="first\nsecond")]


def test_decode_event_builds_typed_events():
    assert decode_event(ServerSentEvent("session", '{"sessionId": "S1"}')) == SessionEvent("S1")
    assert decode_event(ServerSentEvent("message", '{"content": "Hé"}')) == MessageEvent("Hé")
    error = decode_event(ServerSentEvent("error", '{"error": "Boom", "details": "upstream 500"}'))
    assert error == ErrorEvent("Boom", "upstream 500")
    assert error.message == "Boom: upstream 500"
    assert decode_event(ServerSentEvent("ping", "{}")) is None


@pytest.mark.parametrize(
    "frame",
    [
        ServerSentEvent("message", "{not json"),
        ServerSentEvent("message", '["a list"]'),
        ServerSentEvent("message", '{"content": 3}'),
        ServerSentEvent("session", '{"sessionId": ""}'),
    ],
)
def test_decode_event_rejects_malformed_payloads(frame):
    with pytest.raises(ParseError) as exc_info:
        decode_event(frame)
    assert exc_info.value.raw == frame.data


@pytest.mark.asyncio
async def test_stream_chat_posts_body_and_yields_events():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["accept"] = request.headers["accept"]
        return _event_stream(
            'event: session\ndata: {"sessionId": "S1"}\n\n'
            'event: message\ndata: {"content": "Hel"}\n\n'
            "event: message\ndata: {broken\n\n"
            'event: message\ndata: {"content": "lo!"}\n\n'
        )

    async with _client(handler) as client:
        events = [event async for event in stream_chat(client, "/api/chat", {"newMessageContent": "hi"})]

    assert seen == {"path": "/api/chat", "body": {"newMessageContent": "hi"}, "accept": "text/event-stream"}
    assert events[0] == SessionEvent("S1")
    assert events[1] == MessageEvent("Hel")
    assert isinstance(events[2], ParseFailure)
    assert events[3] == MessageEvent("lo!")


@pytest.mark.asyncio
async def test_stream_chat_raises_open_error_with_server_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": 'Session "S9" not found.'})

    async with _client(handler) as client:
        with pytest.raises(StreamOpenError) as exc_info:
            async for _ in stream_chat(client, "/api/chat/retry", {"sessionId": "S9"}):
                pass

    assert exc_info.value.status_code == 404
    assert 'Session "S9" not found.' in str(exc_info.value)


@pytest.mark.asyncio
async def test_stream_chat_rejects_non_event_stream_success():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy page</html>", headers={"content-type": "text/html"})

    async with _client(handler) as client:
        with pytest.raises(StreamOpenError) as exc_info:
            async for _ in stream_chat(client, "/api/chat", {"newMessageContent": "hi"}):
                pass

    assert exc_info.value.status_code == 200


@pytest.mark.asyncio
async def test_stream_chat_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(StreamConnectionError):
            async for _ in stream_chat(client, "/api/chat", {"newMessageContent": "hi"}):
                pass
