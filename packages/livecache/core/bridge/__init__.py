"""Bridge between push subscriptions and the pull-based cache.

Core concepts:
- SubscriptionBridge: owns live subscriptions, pushes updates into the cache
- FetchAdapter: pull-style accessor installed as the cache's fetch strategy
- SubscriptionHandle: one shared, refcounted subscription per cache key
- ConnectionRegistry: one-time bridge/cache binding

Example:
    >>> bridge = SubscriptionBridge(InMemoryBackend())
    >>> cache = QueryCache()
    >>> ConnectionRegistry().bind(bridge, cache)
"""

from livecache.core.bridge.bridge import SubscriptionBridge
from livecache.core.bridge.fetch import FetchAdapter
from livecache.core.bridge.handle import SubscriptionHandle
from livecache.core.bridge.registry import ConnectionRegistry

__all__ = [
    "ConnectionRegistry",
    "FetchAdapter",
    "SubscriptionBridge",
    "SubscriptionHandle",
]
