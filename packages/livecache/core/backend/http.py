"""HTTP backend built on HTTPX.

Wire format (JSON bodies):
- POST {query_path} with {"path": operation, "args": {...}} returns one result
- POST {subscribe_path} with the same body streams server-sent events, one
  result per `data:` line

A result is {"status": "success", "value": ...} or
{"status": "error", "errorMessage": "...", "errorData": ...}.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
import json
import logging
from typing import Any

import httpx

from livecache.core.backend.models import PushEvent
from livecache.core.config.models import HttpBackendConfig
from livecache.core.errors import ChannelDisconnect, ConfigurationError, RemoteOperationError

logger = logging.getLogger(__name__)


def _event_from_body(operation_name: str, body: Any) -> PushEvent:
    """Map a result body to a PushEvent.

    Raises:
        ChannelDisconnect: If the body is not a recognizable result
    """
    if not isinstance(body, dict):
        raise ChannelDisconnect(f"malformed result for {operation_name}: {body!r}")
    status = body.get("status")
    if status == "success":
        return PushEvent.of(body.get("value"))
    if status == "error":
        return PushEvent.failure(
            str(body.get("errorMessage") or "remote operation failed"),
            operation_name=operation_name,
            data=body.get("errorData"),
        )
    raise ChannelDisconnect(f"malformed result for {operation_name}: unknown status {status!r}")


def _decode_json(operation_name: str, text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ChannelDisconnect(f"undecodable frame for {operation_name}", cause=e) from e


def _error_from_response(operation_name: str, response: httpx.Response) -> Exception:
    """Map a non-2xx response to RemoteOperationError (4xx) or ChannelDisconnect (5xx)."""
    if response.status_code >= 500:
        return ChannelDisconnect(f"backend returned {response.status_code} for {operation_name}")
    try:
        event = _event_from_body(operation_name, response.json())
    except (ValueError, ChannelDisconnect):
        return RemoteOperationError.from_message(
            f"HTTP {response.status_code}: {response.text[:200]}",
            operation_name=operation_name,
        )
    if event.ok:
        return RemoteOperationError.from_message(
            f"HTTP {response.status_code}", operation_name=operation_name
        )
    return event.to_exception()


class HttpBackend:
    """
    Async backend client over HTTP + server-sent events.

    Args:
        url: Opaque backend connection string (base URL); only checked non-empty
        config: Transport settings
        transport: Optional custom transport (useful for testing)

    Example:
        >>> backend = HttpBackend("https://backend.example")
        >>> value = await backend.call("todos:list", {})
    """

    def __init__(
        self,
        url: str,
        config: HttpBackendConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not url.strip():
            raise ConfigurationError("HttpBackend requires a non-empty backend connection string")
        self.config = config or HttpBackendConfig()
        self._client = httpx.AsyncClient(
            base_url=url.strip(),
            headers={"User-Agent": self.config.user_agent, **self.config.headers},
            timeout=httpx.Timeout(self.config.timeout_s, connect=self.config.connect_timeout_s),
            transport=transport,
        )

    async def __aenter__(self) -> HttpBackend:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client and release resources."""
        await self._client.aclose()

    @staticmethod
    def _body(operation_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return {"path": operation_name, "args": arguments}

    def _stream_timeout(self) -> httpx.Timeout:
        """No read deadline between pushes unless stream_read_timeout_s is set."""
        return httpx.Timeout(
            self.config.timeout_s,
            connect=self.config.connect_timeout_s,
            read=self.config.stream_read_timeout_s,
        )

    async def call(self, operation_name: str, arguments: dict[str, Any]) -> Any:
        """Run the operation once.

        Raises:
            RemoteOperationError: Backend rejected the operation
            ChannelDisconnect: Transport failure or 5xx
        """
        logger.debug(f"call {operation_name}")
        try:
            response = await self._client.post(
                self.config.query_path, json=self._body(operation_name, arguments)
            )
        except httpx.TransportError as e:
            raise ChannelDisconnect(f"call {operation_name} failed: {e}", cause=e) from e

        if response.status_code >= 400:
            raise _error_from_response(operation_name, response)

        event = _event_from_body(operation_name, _decode_json(operation_name, response.text))
        if not event.ok:
            raise event.to_exception()
        return event.value

    async def subscribe(
        self, operation_name: str, arguments: dict[str, Any]
    ) -> AsyncGenerator[PushEvent, None]:
        """Stream pushes for one query (async generator).

        A rejected subscription yields a single error event and ends. Any other
        end of stream raises ChannelDisconnect.
        """
        logger.debug(f"subscribe {operation_name}")
        try:
            async with self._client.stream(
                "POST",
                self.config.subscribe_path,
                json=self._body(operation_name, arguments),
                headers={"Accept": "text/event-stream"},
                timeout=self._stream_timeout(),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    error = _error_from_response(operation_name, response)
                    if isinstance(error, RemoteOperationError):
                        yield PushEvent(error=error.payload)
                        return
                    raise error

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    body = _decode_json(operation_name, line[len("data:") :].strip())
                    yield _event_from_body(operation_name, body)
        except httpx.TransportError as e:
            raise ChannelDisconnect(f"subscription {operation_name} dropped: {e}", cause=e) from e

        raise ChannelDisconnect(f"server closed the subscription stream for {operation_name}")
