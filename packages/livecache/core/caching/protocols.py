"""Protocols for the pull-based query cache.

Defines the Cache protocol and the strategy callables installed on it.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

from livecache.core.caching.models import CacheEntry, DehydratedState
from livecache.core.keys import Descriptor

KeyHashStrategy = Callable[[Descriptor], str]
FetchStrategy = Callable[[Descriptor], Awaitable[Any]]
EvictionSink = Callable[[Descriptor], None]


class Cache(Protocol):
    """
    Protocol for pull-based query caches.

    Configuration hooks (installed by ConnectionRegistry):
    - set_key_hash_strategy: descriptor -> key hash
    - set_fetch_strategy: descriptor -> awaitable value
    - set_eviction_sink: called when an entry leaves the cache

    Reads go through read_or_fetch; live updates go through update_entry.
    """

    bound_bridge: Any

    def set_key_hash_strategy(self, fn: KeyHashStrategy) -> None:
        """Install the function used to derive entry keys."""
        ...

    def set_fetch_strategy(self, fn: FetchStrategy) -> None:
        """Install the default fetch function used on a miss."""
        ...

    def set_eviction_sink(self, fn: EvictionSink | None) -> None:
        """Install the callback notified when entries are removed."""
        ...

    async def read_or_fetch(self, descriptor: Descriptor, fetch: FetchStrategy | None = None) -> Any:
        """
        Return the cached value, fetching on a miss.

        Args:
            descriptor: Query descriptor
            fetch: Optional fetch function overriding the installed strategy

        Returns:
            Current value

        Raises:
            UnboundCacheError: No fetch function available
            RemoteOperationError: Backend rejected the operation
        """
        ...

    def update_entry(
        self,
        key: str,
        value: Any = ...,
        *,
        error: BaseException | None = None,
        stale: bool = False,
    ) -> bool:
        """
        Push a value or error into an existing entry.

        Returns:
            True if an entry existed for key
        """
        ...

    def invalidate(self, descriptor: Descriptor) -> bool:
        """Mark an entry stale so the next read refetches."""
        ...

    def remove(self, descriptor: Descriptor) -> bool:
        """Drop an entry."""
        ...

    def watch(self, descriptor: Descriptor) -> AsyncIterator[Any]:
        """Yield the current value, then every update."""
        ...

    def get_entry(self, descriptor: Descriptor) -> CacheEntry | None:
        """Look up an entry without fetching."""
        ...

    def dehydrate(self) -> DehydratedState:
        """Serialize successful entries."""
        ...

    def hydrate(self, state: DehydratedState) -> int:
        """Seed entries from a snapshot."""
        ...
