"""Tests for HttpBackend.

Uses httpx.MockTransport so no network is touched.
"""

from __future__ import annotations

import json

import httpx
import pytest

from livecache.core.backend import HttpBackend
from livecache.core.config import HttpBackendConfig
from livecache.core.errors import ChannelDisconnect, ConfigurationError, RemoteOperationError

BASE_URL = "https://backend.example.test"


def _sse(*bodies: dict) -> bytes:
    return "".join(f"data: {json.dumps(body)}\n\n" for body in bodies).encode()


async def test_call_success() -> None:
    """Test call posts the operation and returns the value."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["agent"] = request.headers["user-agent"]
        return httpx.Response(200, json={"status": "success", "value": ["a", "b"]})

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        value = await backend.call("todos:list", {"owner": "me"})

    assert value == ["a", "b"]
    assert seen["path"] == "/api/query"
    assert seen["body"] == {"path": "todos:list", "args": {"owner": "me"}}
    assert seen["agent"] == "livecache/0.1"


async def test_call_error_body() -> None:
    """Test an error result raises RemoteOperationError with its data."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": "error", "errorMessage": "bad id", "errorData": {"field": "id"}},
        )

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(RemoteOperationError) as exc_info:
            await backend.call("users:get", {"id": -1})

    assert exc_info.value.message == "bad id"
    assert exc_info.value.operation_name == "users:get"
    assert exc_info.value.data == {"field": "id"}


async def test_call_4xx_is_remote_error() -> None:
    """Test client errors are not retried as disconnects."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not found")

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(RemoteOperationError, match="HTTP 404"):
            await backend.call("todos:list", {})


async def test_call_5xx_is_disconnect() -> None:
    """Test server errors are transient."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(ChannelDisconnect):
            await backend.call("todos:list", {})


async def test_transport_error_is_disconnect() -> None:
    """Test connection failures map to ChannelDisconnect."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(ChannelDisconnect) as exc_info:
            await backend.call("todos:list", {})

    assert isinstance(exc_info.value.cause, httpx.ConnectError)


async def test_subscribe_streams_events_then_disconnects() -> None:
    """Test SSE frames become events and stream end is a disconnect."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/live"
        assert request.headers["accept"] == "text/event-stream"
        body = _sse(
            {"status": "success", "value": 1},
            {"status": "success", "value": 2},
        )
        return httpx.Response(200, content=b": keepalive\n\n" + body)

    config = HttpBackendConfig(subscribe_path="/live")
    values = []
    async with HttpBackend(BASE_URL, config, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(ChannelDisconnect, match="closed the subscription stream"):
            async for event in backend.subscribe("counter:get", {}):
                values.append(event.value)

    assert values == [1, 2]


async def test_subscribe_rejected_yields_error_event() -> None:
    """Test a rejected subscription produces one error event and ends."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403, json={"status": "error", "errorMessage": "forbidden", "errorData": None}
        )

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        events = [event async for event in backend.subscribe("todos:list", {})]

    assert len(events) == 1
    assert not events[0].ok
    assert events[0].error.message == "forbidden"


async def test_subscribe_malformed_frame_is_disconnect() -> None:
    """Test undecodable frames drop the channel."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"data: {not json}\n\n")

    async with HttpBackend(BASE_URL, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(ChannelDisconnect, match="undecodable"):
            async for _ in backend.subscribe("todos:list", {}):
                pass


def test_empty_url_rejected() -> None:
    """Test the connection string must be non-empty."""
    with pytest.raises(ConfigurationError):
        HttpBackend("   ")


async def test_subscribe_has_no_read_deadline() -> None:
    """Test a quiet stream is not cut off by the per-request read timeout."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/query":
            seen["call"] = request.extensions["timeout"]
            return httpx.Response(200, json={"status": "success", "value": 0})
        seen["subscribe"] = request.extensions["timeout"]
        return httpx.Response(200, content=_sse({"status": "success", "value": ["a"]}))

    config = HttpBackendConfig(timeout_s=0.5, connect_timeout_s=0.25)
    async with HttpBackend(BASE_URL, config, transport=httpx.MockTransport(handler)) as backend:
        await backend.call("todos:list", {})
        with pytest.raises(ChannelDisconnect):
            async for _ in backend.subscribe("todos:list", {}):
                pass

    assert seen["subscribe"]["read"] is None
    assert seen["subscribe"]["connect"] == 0.25
    assert seen["call"]["read"] == 0.5


async def test_subscribe_read_deadline_is_configurable() -> None:
    """Test stream_read_timeout_s bounds the gap between pushes when set."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["timeout"] = request.extensions["timeout"]
        return httpx.Response(200, content=b"")

    config = HttpBackendConfig(stream_read_timeout_s=60.0)
    async with HttpBackend(BASE_URL, config, transport=httpx.MockTransport(handler)) as backend:
        with pytest.raises(ChannelDisconnect):
            async for _ in backend.subscribe("todos:list", {}):
                pass

    assert seen["timeout"]["read"] == 60.0
