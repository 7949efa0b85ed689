"""Tests for SubscriptionBridge (dedup, push delivery, teardown, reconnection)."""

import asyncio

import pytest

from livecache.core.backend import InMemoryBackend
from livecache.core.bridge import ConnectionRegistry, SubscriptionBridge
from livecache.core.caching import EntryStatus, QueryCache
from livecache.core.config import ReconnectPolicy
from livecache.core.errors import ChannelDisconnect, RemoteOperationError, ScopeError
from livecache.core.keys import Descriptor

TODOS = Descriptor("todos:list")
FEED = Descriptor("feed:latest")


class TestReadThenPush:
    """Tests for the basic read and live update flow."""

    async def test_read_then_push_updates_entry(
        self, backend: InMemoryBackend, bound_cache: QueryCache, wait_until
    ):
        """Test a read opens a subscription and later pushes land in the cache."""
        assert await bound_cache.read_or_fetch(TODOS) == ["a", "b"]

        backend.publish("todos:list", {}, ["a", "b", "c"])
        await wait_until(lambda: bound_cache.get_entry(TODOS).value == ["a", "b", "c"])

        assert await bound_cache.read_or_fetch(TODOS) == ["a", "b", "c"]
        assert backend.subscribe_calls("todos:list") == 1
        assert bound_cache.get_entry(TODOS).live

    async def test_entry_keeps_subscription_reference(
        self, bridge: SubscriptionBridge, bound_cache: QueryCache
    ):
        """Test the settled read hands its reference to the cache entry."""
        await bound_cache.read_or_fetch(TODOS)

        handle = bridge.handle_for(TODOS)
        assert handle.refcount == 1
        assert handle.retained
        assert handle.teardown is None

    async def test_pushes_delivered_in_order(
        self, backend: InMemoryBackend, bound_cache: QueryCache, wait_until
    ):
        """Test watchers observe pushed values in backend order."""
        seen = []

        async def consume():
            async for value in bound_cache.watch(TODOS):
                seen.append(value)
                if len(seen) == 3:
                    break

        task = asyncio.create_task(consume())
        await wait_until(lambda: len(seen) == 1)

        backend.publish("todos:list", {}, "v1")
        backend.publish("todos:list", {}, "v2")
        await asyncio.wait_for(task, timeout=1.0)

        assert seen == [["a", "b"], "v1", "v2"]
        assert bound_cache.get_entry(TODOS).value == "v2"

    async def test_pull_uses_one_shot_call(
        self, backend: InMemoryBackend, bridge: SubscriptionBridge, bound_cache: QueryCache
    ):
        """Test the pull accessor does not open a subscription."""
        value = await bound_cache.read_or_fetch(TODOS, fetch=bridge.adapter.pull)

        assert value == ["a", "b"]
        assert backend.call_count == 1
        assert backend.subscribe_calls("todos:list") == 0
        assert bridge.handles == []


class TestDeduplication:
    """Tests for shared subscriptions."""

    async def test_concurrent_reads_share_one_subscription(
        self,
        backend: InMemoryBackend,
        bridge: SubscriptionBridge,
        bound_cache: QueryCache,
        wait_until,
    ):
        """Test two readers of one key hold one handle with refcount 2."""
        backend.define("feed:latest")

        t1 = asyncio.create_task(bound_cache.read_or_fetch(FEED))
        t2 = asyncio.create_task(bound_cache.read_or_fetch(FEED))
        await wait_until(lambda: bridge.handle_for(FEED) is not None)
        await wait_until(lambda: bridge.handle_for(FEED).refcount == 2)
        await wait_until(lambda: backend.open_channels("feed:latest") == 1)

        assert backend.subscribe_calls("feed:latest") == 1

        backend.publish("feed:latest", {}, 42)
        assert await asyncio.gather(t1, t2) == [42, 42]

        handle = bridge.handle_for(FEED)
        assert handle.refcount == 1
        assert handle.retained

    async def test_equal_descriptors_share_subscription(
        self, backend: InMemoryBackend, bound_cache: QueryCache
    ):
        """Test argument order does not create a second subscription."""
        a = Descriptor("users:get", {"id": 1, "fields": {"name": True, "email": False}})
        b = Descriptor("users:get", {"fields": {"email": False, "name": True}, "id": 1})

        assert await bound_cache.read_or_fetch(a) == await bound_cache.read_or_fetch(b)
        assert backend.subscribe_calls("users:get") == 1
        assert len(bound_cache) == 1


class TestTeardown:
    """Tests for grace-period teardown."""

    async def test_reacquire_within_grace_reuses_subscription(
        self, backend: InMemoryBackend, bridge: SubscriptionBridge, bound_cache: QueryCache
    ):
        """Test a new reader inside the grace period cancels teardown."""
        await bound_cache.read_or_fetch(TODOS)
        handle = bridge.handle_for(TODOS)

        bound_cache.remove(TODOS)
        assert handle.refcount == 0
        assert handle.teardown is not None

        assert await bound_cache.read_or_fetch(TODOS) == ["a", "b"]
        assert bridge.handle_for(TODOS) is handle
        assert handle.teardown is None
        assert handle.refcount == 1
        assert backend.subscribe_calls("todos:list") == 1

    async def test_subscription_closed_after_grace(
        self,
        backend: InMemoryBackend,
        bridge: SubscriptionBridge,
        bound_cache: QueryCache,
        wait_until,
    ):
        """Test the channel closes once the grace period elapses."""
        await bound_cache.read_or_fetch(TODOS)
        handle = bridge.handle_for(TODOS)

        bound_cache.remove(TODOS)
        await wait_until(lambda: bridge.handle_for(TODOS) is None)
        await wait_until(lambda: backend.open_channels("todos:list") == 0)
        assert handle.closed

        await bound_cache.read_or_fetch(TODOS)
        assert backend.subscribe_calls("todos:list") == 2

    async def test_cancelled_read_releases_reference(
        self,
        backend: InMemoryBackend,
        bridge: SubscriptionBridge,
        bound_cache: QueryCache,
        wait_until,
    ):
        """Test cancelling the only reader releases its reference and drops the entry."""
        backend.define("feed:latest")

        task = asyncio.create_task(bound_cache.read_or_fetch(FEED))
        await wait_until(lambda: bridge.handle_for(FEED) is not None)
        handle = bridge.handle_for(FEED)
        assert handle.refcount == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert handle.refcount == 0
        assert FEED not in bound_cache
        await wait_until(lambda: bridge.handle_for(FEED) is None)
        await wait_until(lambda: backend.open_channels("feed:latest") == 0)


class TestRemoteErrors:
    """Tests for backend-reported errors."""

    async def test_rejected_subscription_errors_entry(
        self, backend: InMemoryBackend, bridge: SubscriptionBridge, bound_cache: QueryCache
    ):
        """Test a rejected subscription surfaces RemoteOperationError and can be retried."""

        def find_user(args):
            raise RemoteOperationError.from_message(
                "no such user", operation_name="users:find", data={"id": args["id"]}
            )

        backend.define("users:find", find_user)
        descriptor = Descriptor("users:find", {"id": 0})

        with pytest.raises(RemoteOperationError) as exc_info:
            await bound_cache.read_or_fetch(descriptor)

        assert exc_info.value.data == {"id": 0}
        assert bound_cache.get_entry(descriptor).status is EntryStatus.ERROR
        assert bridge.handle_for(descriptor) is None

        backend.define("users:find", lambda args: {"id": args["id"]})
        assert await bound_cache.read_or_fetch(descriptor) == {"id": 0}
        assert backend.subscribe_calls("users:find") == 2

    async def test_unknown_operation(self, bound_cache: QueryCache):
        """Test a missing backend operation is a remote error."""
        with pytest.raises(RemoteOperationError, match="Could not find operation"):
            await bound_cache.read_or_fetch(Descriptor("nope:missing"))

    async def test_pushed_error_after_success(
        self, backend: InMemoryBackend, bound_cache: QueryCache, wait_until
    ):
        """Test an error pushed on a live subscription moves the entry to ERROR."""
        await bound_cache.read_or_fetch(TODOS)

        backend.reject("todos:list", {}, "access revoked")
        entry = bound_cache.get_entry(TODOS)
        await wait_until(lambda: entry.status is EntryStatus.ERROR)

        assert isinstance(entry.error, RemoteOperationError)
        assert entry.error.message == "access revoked"

        assert await bound_cache.read_or_fetch(TODOS) == ["a", "b"]
        assert backend.subscribe_calls("todos:list") == 2


class TestReconnection:
    """Tests for channel loss handling."""

    async def test_disconnect_marks_stale_then_reconnects(
        self, backend: InMemoryBackend, wait_until
    ):
        """Test entries go stale while the channel is down and recover after reconnect."""
        policy = ReconnectPolicy(max_attempts=3, base_delay_s=0.05, max_delay_s=0.05, jitter=0.0)
        bridge = SubscriptionBridge(backend, grace_period_s=0.05, reconnect=policy)
        cache = QueryCache()
        ConnectionRegistry().bind(bridge, cache)

        await cache.read_or_fetch(TODOS)
        entry = cache.get_entry(TODOS)

        backend.disconnect("todos:list")
        await wait_until(lambda: entry.status is EntryStatus.STALE)
        assert entry.value == ["a", "b"]
        assert isinstance(entry.error, ChannelDisconnect)

        # A read during the outage waits for the reopened channel
        assert await cache.read_or_fetch(TODOS) == ["a", "b"]
        assert entry.status is EntryStatus.SUCCESS
        assert backend.subscribe_calls("todos:list") == 2
        assert bridge.handle_for(TODOS).refcount == 1

        await cache.close()
        await bridge.aclose()

    async def test_exhausted_reconnects_error_entry(
        self,
        backend: InMemoryBackend,
        bridge: SubscriptionBridge,
        bound_cache: QueryCache,
        wait_until,
    ):
        """Test entries error with ChannelDisconnect after max_attempts."""
        await bound_cache.read_or_fetch(TODOS)
        entry = bound_cache.get_entry(TODOS)

        backend.refuse_subscribes(10)
        backend.disconnect("todos:list")
        await wait_until(lambda: entry.status is EntryStatus.ERROR)

        assert isinstance(entry.error, ChannelDisconnect)
        assert bridge.handle_for(TODOS) is None

        backend.refuse_subscribes(0)
        assert await bound_cache.read_or_fetch(TODOS) == ["a", "b"]


class TestClose:
    """Tests for bridge shutdown."""

    async def test_close_fails_pending_reads(
        self,
        backend: InMemoryBackend,
        bridge: SubscriptionBridge,
        bound_cache: QueryCache,
        wait_until,
    ):
        """Test aclose fails waiting readers and refuses new subscriptions."""
        backend.define("feed:latest")
        task = asyncio.create_task(bound_cache.read_or_fetch(FEED))
        await wait_until(lambda: bridge.handle_for(FEED) is not None)

        await bridge.aclose()

        with pytest.raises(ScopeError):
            await task
        with pytest.raises(ScopeError):
            bridge.acquire(TODOS)
        assert backend.open_channels() == 0
