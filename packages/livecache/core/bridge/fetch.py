"""Pull-style accessor backed by live subscriptions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from livecache.core.keys import Descriptor

if TYPE_CHECKING:
    from livecache.core.bridge.bridge import SubscriptionBridge


class FetchAdapter:
    """
    Turns a subscription into an awaitable read.

    resolve() is installed as the cache's fetch strategy. The first call for a
    key opens the subscription; later calls reuse it and resolve from the
    current value.
    """

    def __init__(self, bridge: SubscriptionBridge) -> None:
        self._bridge = bridge

    async def resolve(self, descriptor: Descriptor) -> Any:
        """Resolve with the current value of a live subscription.

        Holds one reference on the handle while waiting. On success the
        reference is handed to the cache entry (or released if the entry
        already holds one). A cancelled or failed read releases it.

        Raises:
            RemoteOperationError: Backend rejected the operation
            ChannelDisconnect: Channel could not be reopened
        """
        handle = self._bridge.acquire(descriptor)
        try:
            value = await handle.wait_value()
        except (Exception, asyncio.CancelledError):
            self._bridge.release(handle)
            raise
        self._bridge.settle(handle)
        return value

    async def pull(self, descriptor: Descriptor) -> Any:
        """One-shot read through backend.call (no subscription)."""
        return await self._bridge.call(descriptor)

    async def __call__(self, descriptor: Descriptor) -> Any:
        return await self.resolve(descriptor)
