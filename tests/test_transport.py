import httpx
import pytest

from localchat.exceptions import (
    LocalChatAPIError,
    LocalChatAuthenticationError,
    LocalChatConnectionError,
    LocalChatServerError,
    LocalChatStreamError,
    LocalChatTimeoutError,
)
from localchat.transport import AsyncTransport


def make_transport(handler, **kwargs) -> AsyncTransport:
    return AsyncTransport(http_transport=httpx.MockTransport(handler), **kwargs)


async def test_post_returns_json():
    transport = make_transport(lambda request: httpx.Response(200, json={"status": "ok"}))

    async with transport:
        assert await transport.post("/api/generate", json_data={"model": "m"}) == {"status": "ok"}


async def test_no_content_returns_empty_dict():
    async with make_transport(lambda request: httpx.Response(204)) as transport:
        assert await transport.post("/api/generate") == {}


async def test_api_key_is_sent_as_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={})

    async with make_transport(handler, api_key="secret") as transport:
        await transport.post("/api/generate")

    assert seen == ["Bearer secret"]


@pytest.mark.parametrize(
    "status_code,body,error_class,message",
    [
        (400, {"error": "invalid model name"}, LocalChatAPIError, "invalid model name"),
        (401, {"error": {"message": "bad key"}}, LocalChatAuthenticationError, "bad key"),
        (500, {"error": "runner crashed"}, LocalChatServerError, "runner crashed"),
    ],
)
async def test_error_status_maps_to_exception(status_code, body, error_class, message):
    transport = make_transport(lambda request: httpx.Response(status_code, json=body))

    async with transport:
        with pytest.raises(error_class) as exc_info:
            await transport.post("/api/chat")

    assert exc_info.value.message == message
    assert exc_info.value.status_code == status_code


async def test_plain_text_error_body():
    transport = make_transport(lambda request: httpx.Response(502, text="Bad Gateway"))

    async with transport:
        with pytest.raises(LocalChatServerError, match="Bad Gateway"):
            await transport.post("/api/generate")


async def test_connect_error_maps_to_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_transport(handler) as transport:
        with pytest.raises(LocalChatConnectionError, match="connection refused"):
            await transport.post("/api/generate")


async def test_read_timeout_maps_to_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async with make_transport(handler) as transport:
        with pytest.raises(LocalChatTimeoutError):
            await transport.post("/api/generate")


async def test_stream_plain_json_lines():
    body = b'{"n": 1}\n\n{"n": 2}\n'

    async with make_transport(lambda request: httpx.Response(200, content=body)) as transport:
        chunks = [chunk async for chunk in transport.stream("/api/chat")]

    assert chunks == [{"n": 1}, {"n": 2}]


async def test_stream_sse_stops_at_done_marker():
    body = b'data: {"n": 1}\n\ndata: not-json\n\ndata: [DONE]\n\ndata: {"n": 2}\n\n'

    async with make_transport(lambda request: httpx.Response(200, content=body)) as transport:
        chunks = [chunk async for chunk in transport.stream("/v1/chat/completions")]

    assert chunks == [{"n": 1}]


async def test_stream_malformed_json_line_raises():
    async with make_transport(lambda request: httpx.Response(200, content=b'{"n": \n')) as transport:
        with pytest.raises(LocalChatStreamError):
            [chunk async for chunk in transport.stream("/api/chat")]


async def test_stream_error_status_raises_with_daemon_message():
    transport = make_transport(
        lambda request: httpx.Response(404, json={"error": "model 'x' not found"})
    )

    async with transport:
        with pytest.raises(LocalChatAPIError, match="model 'x' not found"):
            [chunk async for chunk in transport.stream("/api/chat")]


def test_missing_socket_raises_connection_error(tmp_path):
    with pytest.raises(LocalChatConnectionError, match="Is the daemon running"):
        AsyncTransport(socket_path=str(tmp_path / "daemon.sock"))
