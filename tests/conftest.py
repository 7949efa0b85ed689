"""Shared pytest fixtures for livecache tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest

from livecache.core.backend import InMemoryBackend
from livecache.core.bridge import ConnectionRegistry, SubscriptionBridge
from livecache.core.caching import QueryCache
from livecache.core.config import ReconnectPolicy

# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate on the event loop until it holds (fails after timeout)."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


# ============================================================================
# Backend Fixtures
# ============================================================================


@pytest.fixture
def backend() -> InMemoryBackend:
    """In-memory backend with a todo list and a user lookup."""
    backend = InMemoryBackend()
    backend.define("todos:list", lambda args: ["a", "b"])
    backend.define("users:get", lambda args: {"id": args.get("id"), "name": f"user-{args.get('id')}"})
    return backend


@pytest.fixture
def fast_reconnect() -> ReconnectPolicy:
    """Reconnect policy without delays."""
    return ReconnectPolicy(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter=0.0)


# ============================================================================
# Bridge/Cache Fixtures
# ============================================================================


@pytest.fixture
async def bridge(backend: InMemoryBackend, fast_reconnect: ReconnectPolicy):
    """Bridge with a short grace period, closed after the test."""
    bridge = SubscriptionBridge(
        backend, grace_period_s=0.05, reconnect=fast_reconnect, name="test-bridge"
    )
    yield bridge
    await bridge.aclose()


@pytest.fixture
async def cache():
    """Unbound cache without garbage collection, closed after the test."""
    cache = QueryCache()
    yield cache
    await cache.close()


@pytest.fixture
def bound_cache(bridge: SubscriptionBridge, cache: QueryCache) -> QueryCache:
    """Cache bound to the test bridge."""
    ConnectionRegistry().bind(bridge, cache)
    return cache
