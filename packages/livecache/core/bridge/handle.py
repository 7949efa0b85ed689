"""Subscription handle shared by every reader of one cache key."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

from livecache.core.backend.models import PushEvent
from livecache.core.keys import CacheKey, Descriptor


class SubscriptionHandle:
    """
    One live backend subscription.

    Owned by SubscriptionBridge. Readers of the same key share the handle; the
    refcount counts in-flight reads plus the reference held on behalf of the
    cache entry (see `retained`).

    Attributes:
        descriptor: Subscribed query
        key: Cache key of the query
        refcount: Number of holders
        stream: Live backend stream (None while reconnecting)
        retained: True while the cache entry holds one reference
        stale: True while the channel is down and being reopened
        failure: Terminal error; the handle is no longer in the bridge map
    """

    def __init__(self, descriptor: Descriptor, key: CacheKey) -> None:
        self.descriptor = descriptor
        self.key = key
        self.refcount = 0
        self.stream: AsyncGenerator[PushEvent, None] | None = None
        self.task: asyncio.Task[None] | None = None
        self.teardown: asyncio.TimerHandle | None = None
        self.retained = False
        self.value: Any = None
        self.has_value = False
        self.stale = False
        self.failure: BaseException | None = None
        self.deliveries = 0
        self.closed = False
        self._waiters: list[asyncio.Future[None]] = []

    @property
    def live(self) -> bool:
        return not self.closed and self.failure is None

    def set_value(self, value: Any) -> None:
        self.value = value
        self.has_value = True
        self.stale = False
        self.deliveries += 1
        self.wake()

    def set_failure(self, error: BaseException) -> None:
        self.failure = error
        self.wake()

    def wake(self) -> None:
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)

    async def wait_value(self) -> Any:
        """Wait until the handle holds a current value.

        Returns immediately when a value is already live (deduplicated read).

        Raises:
            RemoteOperationError: The backend rejected the subscription
            ChannelDisconnect: Reconnection attempts were exhausted
        """
        while True:
            if self.failure is not None:
                raise self.failure
            if self.has_value and not self.stale:
                return self.value
            fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(fut)
            await fut

    def __repr__(self) -> str:
        return (
            f"SubscriptionHandle({self.key}, refcount={self.refcount}, "
            f"retained={self.retained}, stale={self.stale})"
        )
