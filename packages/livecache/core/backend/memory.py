"""In-process reactive backend for development/testing.

Operations are registered with a handler that computes the initial value. Tests
then drive the live side explicitly with publish(), reject() and disconnect().
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncGenerator, Callable
import logging
from typing import Any

from livecache.core.backend.models import PushEvent
from livecache.core.errors import ChannelDisconnect, RemoteOperationError
from livecache.core.keys import Descriptor

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]

_DISCONNECT = object()


class InMemoryBackend:
    """
    In-memory backend implementing the Backend protocol.

    Each subscription gets its own queue; pushes for one channel are delivered
    in publish order.

    Example:
        >>> backend = InMemoryBackend()
        >>> backend.define("todos:list", lambda args: ["a", "b"])
        >>> backend.publish("todos:list", {}, ["a", "b", "c"])
    """

    def __init__(self) -> None:
        self._operations: dict[str, Handler | None] = {}
        self._values: dict[str, Any] = {}
        self._channels: dict[str, set[asyncio.Queue[Any]]] = {}
        self._channel_ops: dict[str, str] = {}
        self._subscribe_counts: Counter[str] = Counter()
        self._refuse_subscribes = 0
        self.call_count = 0
        self.closed = False

    @staticmethod
    def _channel_key(operation_name: str, arguments: dict[str, Any]) -> str:
        return Descriptor(operation_name, arguments).canonical

    def define(self, operation_name: str, handler: Handler | None = None) -> None:
        """
        Register an operation.

        Args:
            operation_name: Operation name
            handler: Computes the initial value from arguments. May raise
                RemoteOperationError to reject arguments. If None, subscribers
                wait until a value is published.
        """
        self._operations[operation_name] = handler

    def _current(self, operation_name: str, arguments: dict[str, Any]) -> PushEvent | None:
        if operation_name not in self._operations:
            return PushEvent.failure(
                f"Could not find operation {operation_name!r}", operation_name=operation_name
            )
        key = self._channel_key(operation_name, arguments)
        if key in self._values:
            return PushEvent.of(self._values[key])
        handler = self._operations[operation_name]
        if handler is None:
            return None
        try:
            return PushEvent.of(handler(dict(arguments)))
        except RemoteOperationError as e:
            return PushEvent(error=e.payload)

    async def subscribe(
        self, operation_name: str, arguments: dict[str, Any]
    ) -> AsyncGenerator[PushEvent, None]:
        """Open a subscription stream (async generator)."""
        if self.closed:
            raise ChannelDisconnect("backend is closed")
        if self._refuse_subscribes > 0:
            self._refuse_subscribes -= 1
            raise ChannelDisconnect("backend refused the subscription")

        key = self._channel_key(operation_name, arguments)
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._channels.setdefault(key, set()).add(queue)
        self._channel_ops[key] = operation_name
        self._subscribe_counts[key] += 1
        logger.debug(f"Channel opened: {operation_name}")

        try:
            first = self._current(operation_name, arguments)
            if first is not None:
                yield first
            while True:
                item = await queue.get()
                if item is _DISCONNECT:
                    raise ChannelDisconnect(f"channel for {operation_name} dropped")
                yield item
        finally:
            channels = self._channels.get(key)
            if channels is not None:
                channels.discard(queue)
                if not channels:
                    del self._channels[key]
            logger.debug(f"Channel closed: {operation_name}")

    async def call(self, operation_name: str, arguments: dict[str, Any]) -> Any:
        """Run the operation once."""
        self.call_count += 1
        if self.closed:
            raise ChannelDisconnect("backend is closed")
        event = self._current(operation_name, arguments)
        if event is None:
            raise RemoteOperationError.from_message(
                "Operation has no value yet", operation_name=operation_name
            )
        if not event.ok:
            raise event.to_exception()
        return event.value

    async def aclose(self) -> None:
        """Close the backend and drop every open channel."""
        self.closed = True
        self.disconnect()

    # Test drivers

    def _deliver(self, key: str, item: Any) -> int:
        channels = self._channels.get(key, set())
        for queue in channels:
            queue.put_nowait(item)
        return len(channels)

    def publish(self, operation_name: str, arguments: dict[str, Any], value: Any) -> int:
        """Set a new value and push it to every open channel for the query.

        Returns:
            Number of channels the value was delivered to
        """
        key = self._channel_key(operation_name, arguments)
        self._values[key] = value
        return self._deliver(key, PushEvent.of(value))

    def reject(
        self,
        operation_name: str,
        arguments: dict[str, Any],
        message: str,
        data: Any = None,
    ) -> int:
        """Push a backend error to every open channel for the query."""
        key = self._channel_key(operation_name, arguments)
        event = PushEvent.failure(message, operation_name=operation_name, data=data)
        return self._deliver(key, event)

    def disconnect(self, operation_name: str | None = None) -> int:
        """Drop open channels (all of them, or those for one operation)."""
        dropped = 0
        for key, op in list(self._channel_ops.items()):
            if operation_name is None or op == operation_name:
                dropped += self._deliver(key, _DISCONNECT)
        return dropped

    def refuse_subscribes(self, count: int) -> None:
        """Make the next `count` subscribe attempts fail with ChannelDisconnect."""
        self._refuse_subscribes = count

    def subscribe_calls(self, operation_name: str, arguments: dict[str, Any] | None = None) -> int:
        """Number of subscribe() streams opened for an operation (optionally one query)."""
        if arguments is not None:
            return self._subscribe_counts[self._channel_key(operation_name, arguments)]
        return sum(
            count
            for key, count in self._subscribe_counts.items()
            if self._channel_ops.get(key) == operation_name
        )

    def open_channels(self, operation_name: str | None = None) -> int:
        """Number of currently open channels."""
        return sum(
            len(queues)
            for key, queues in self._channels.items()
            if operation_name is None or self._channel_ops.get(key) == operation_name
        )
