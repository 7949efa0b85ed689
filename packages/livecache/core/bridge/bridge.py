"""Subscription bridge: live backend subscriptions feeding a pull-based cache.

Handles:
- Deduplication (one subscription per cache key, refcounted)
- Push delivery into the bound cache, in backend order (one pump task per key)
- Teardown after a grace period, cancelled if a reader comes back
- Reconnection with exponential backoff on channel loss
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging
from typing import Any

from livecache.core.backend.models import PushEvent
from livecache.core.backend.protocols import Backend
from livecache.core.bridge.fetch import FetchAdapter
from livecache.core.bridge.handle import SubscriptionHandle
from livecache.core.bridge.registry import ConnectionRegistry
from livecache.core.caching.protocols import Cache
from livecache.core.config.models import ReconnectPolicy
from livecache.core.errors import ChannelDisconnect, ScopeError
from livecache.core.keys import CacheKey, Descriptor, KeyCodec

logger = logging.getLogger(__name__)


class SubscriptionBridge:
    """
    Owns live subscriptions and pushes their updates into one cache.

    Args:
        backend: Reactive backend (subscribe + call)
        codec: Key codec (its hash becomes the cache's key-hash strategy)
        grace_period_s: Delay before closing a subscription with no holders
        reconnect: Backoff policy for dropped channels
        name: Label used in logs and error messages

    Example:
        >>> bridge = SubscriptionBridge(backend, grace_period_s=2.0)
        >>> bridge.connect(cache)
        >>> await cache.read_or_fetch(Descriptor("todos:list"))
    """

    def __init__(
        self,
        backend: Backend,
        *,
        codec: KeyCodec | None = None,
        grace_period_s: float = 2.0,
        reconnect: ReconnectPolicy | None = None,
        name: str | None = None,
    ) -> None:
        self.backend = backend
        self.codec = codec or KeyCodec()
        self.grace_period_s = grace_period_s
        self.reconnect_policy = reconnect or ReconnectPolicy()
        self.name = name or f"bridge-{id(self):x}"
        self.adapter = FetchAdapter(self)
        self.closed = False
        self._handles: dict[CacheKey, SubscriptionHandle] = {}
        self._cache: Cache | None = None

    def __repr__(self) -> str:
        return f"SubscriptionBridge({self.name})"

    # Binding

    @property
    def cache(self) -> Cache | None:
        return self._cache

    def connect(self, cache: Cache) -> None:
        """Bind this bridge to cache (see ConnectionRegistry.bind)."""
        ConnectionRegistry().bind(self, cache)

    def _attach(self, cache: Cache) -> None:
        # Key hashing first: it is the only hook that can refuse
        cache.set_key_hash_strategy(self.codec.hash)
        cache.set_fetch_strategy(self.adapter.resolve)
        cache.set_eviction_sink(self._on_evict)
        self._cache = cache

    # Handles

    @property
    def handles(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    def handle_for(self, descriptor: Descriptor) -> SubscriptionHandle | None:
        return self._handles.get(self.codec.canonicalize(descriptor))

    def acquire(self, descriptor: Descriptor) -> SubscriptionHandle:
        """Take a reference on the subscription for descriptor, opening it if needed.

        Raises:
            ScopeError: Bridge is closed
        """
        if self.closed:
            raise ScopeError(f"{self!r} is closed; its scope has ended")

        key = self.codec.canonicalize(descriptor)
        handle = self._handles.get(key)
        if handle is None:
            handle = SubscriptionHandle(descriptor, key)
            self._handles[key] = handle
            handle.task = asyncio.create_task(self._pump(handle), name=f"livecache-pump:{key}")
            logger.debug(f"Subscribing {key}")
        elif handle.teardown is not None:
            handle.teardown.cancel()
            handle.teardown = None
            logger.debug(f"Reusing {key} within grace period")

        handle.refcount += 1
        return handle

    def release(self, handle: SubscriptionHandle) -> None:
        """Drop a reference. The last one schedules teardown after the grace period."""
        if handle.refcount <= 0:
            logger.warning(f"Release of {handle.key} with no outstanding references")
            return
        handle.refcount -= 1
        if handle.refcount == 0 and self._handles.get(handle.key) is handle:
            loop = asyncio.get_running_loop()
            handle.teardown = loop.call_later(self.grace_period_s, self._teardown, handle)

    def settle(self, handle: SubscriptionHandle) -> None:
        """Hand a resolved reader's reference to the cache entry, or release it."""
        if (
            not handle.retained
            and self._handles.get(handle.key) is handle
            and self._cache is not None
            and self._cache.get_entry(handle.descriptor) is not None
        ):
            handle.retained = True
        else:
            self.release(handle)

    def _on_evict(self, descriptor: Descriptor) -> None:
        handle = self.handle_for(descriptor)
        if handle is not None and handle.retained:
            handle.retained = False
            self.release(handle)

    def _teardown(self, handle: SubscriptionHandle) -> None:
        handle.teardown = None
        if handle.refcount == 0 and self._handles.get(handle.key) is handle:
            logger.debug(f"Closing subscription {handle.key}")
            del self._handles[handle.key]
            handle.closed = True
            if handle.task is not None:
                handle.task.cancel()

    # Push path

    async def _pump(self, handle: SubscriptionHandle) -> None:
        """Consume one subscription, reconnecting with backoff on channel loss."""
        descriptor = handle.descriptor
        policy = self.reconnect_policy
        attempt = 0
        while True:
            try:
                stream = self.backend.subscribe(descriptor.operation_name, descriptor.arguments)
                handle.stream = stream
                async with aclosing(stream):
                    async for event in stream:
                        attempt = 0
                        if not self._deliver(handle, event):
                            return
                raise ChannelDisconnect(f"subscription stream for {handle.key} ended")
            except ChannelDisconnect as e:
                handle.stream = None
                attempt += 1
                if attempt > policy.max_attempts:
                    logger.warning(
                        f"Giving up on {handle.key} after {policy.max_attempts} reconnect attempts: {e}"
                    )
                    self._fail(handle, e)
                    return
                self._mark_stale(handle, e)
                delay = policy.compute_delay(attempt)
                logger.info(
                    f"Channel for {handle.key} dropped ({e}); "
                    f"reconnect {attempt}/{policy.max_attempts} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                logger.exception(f"Subscription {handle.key} failed")
                self._fail(handle, e)
                return

    def _deliver(self, handle: SubscriptionHandle, event: PushEvent) -> bool:
        """Apply one pushed event. Returns False when the subscription is finished."""
        if event.ok:
            handle.set_value(event.value)
            if self._cache is not None:
                self._cache.update_entry(handle.key.digest, event.value)
            return True

        error = event.to_exception()
        logger.warning(f"Backend rejected {handle.key}: {error}")
        self._fail(handle, error)
        return False

    def _mark_stale(self, handle: SubscriptionHandle, error: ChannelDisconnect) -> None:
        handle.stale = True
        if self._cache is not None:
            self._cache.update_entry(handle.key.digest, error=error, stale=True)

    def _fail(self, handle: SubscriptionHandle, error: BaseException) -> None:
        """Retire a handle; the next read opens a fresh subscription."""
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]
        handle.retained = False
        handle.closed = True
        handle.set_failure(error)
        if self._cache is not None:
            self._cache.update_entry(handle.key.digest, error=error)

    # One-shot path

    async def call(self, descriptor: Descriptor) -> Any:
        """Run the operation once through the backend, without subscribing."""
        return await self.backend.call(descriptor.operation_name, descriptor.arguments)

    async def aclose(self) -> None:
        """Close every subscription immediately. Pending reads fail with ScopeError."""
        if self.closed:
            return
        self.closed = True
        handles = list(self._handles.values())
        self._handles.clear()

        tasks: list[asyncio.Task[None]] = []
        for handle in handles:
            if handle.teardown is not None:
                handle.teardown.cancel()
                handle.teardown = None
            handle.closed = True
            handle.set_failure(ScopeError(f"{self!r} closed"))
            if handle.task is not None and not handle.task.done():
                handle.task.cancel()
                tasks.append(handle.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"{self!r} closed {len(handles)} subscriptions")
