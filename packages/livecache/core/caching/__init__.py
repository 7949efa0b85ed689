"""Pull-based query cache for livecache.

Key features:
- Descriptor-keyed entries (key hash strategy is pluggable)
- Pluggable fetch strategy; unbound caches fail reads fast
- Push path (update_entry) serialized with pulls through entry versions
- Watchers notified on every change
- Dehydrate/hydrate snapshots for server-to-client handoff
"""

from livecache.core.caching.models import (
    CacheEntry,
    DehydratedEntry,
    DehydratedState,
    EntryStatus,
    EntryUpdate,
)
from livecache.core.caching.protocols import (
    Cache,
    EvictionSink,
    FetchStrategy,
    KeyHashStrategy,
)
from livecache.core.caching.query_cache import QueryCache
from livecache.core.keys import CacheKey

__all__ = [
    # Core
    "Cache",
    "CacheKey",
    "QueryCache",
    # Entries
    "CacheEntry",
    "EntryStatus",
    "EntryUpdate",
    # Snapshots
    "DehydratedEntry",
    "DehydratedState",
    # Strategies
    "EvictionSink",
    "FetchStrategy",
    "KeyHashStrategy",
]
