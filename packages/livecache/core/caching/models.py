"""Models for the query cache.

Provides entry state, update notifications, and the dehydrated snapshot format.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from livecache.core.keys import Descriptor


class EntryStatus(str, Enum):
    """Lifecycle state of a cache entry."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    STALE = "stale"
    REMOVED = "removed"


@dataclass(frozen=True)
class EntryUpdate:
    """Notification delivered to watchers after an entry changes."""

    status: EntryStatus
    value: Any = None
    error: BaseException | None = None
    version: int = 0


@dataclass(eq=False)
class CacheEntry:
    """
    Cached state for one descriptor.

    Owned by QueryCache; mutated only through the cache API and update_entry.

    Attributes:
        key: Hash produced by the cache's key-hash strategy
        descriptor: Descriptor the entry was created for
        status: Current lifecycle state
        value: Last successful value (kept while STALE)
        error: Error for ERROR/STALE entries
        last_updated: Unix timestamp of the last value write
        version: Incremented on every write (pull or push)
        live: True once the fetch strategy resolved it (a subscription feeds it)
        fetching: Number of in-flight reads
        subscribers: Watcher queues
    """

    key: str
    descriptor: Descriptor
    status: EntryStatus = EntryStatus.PENDING
    value: Any = None
    error: BaseException | None = None
    last_updated: float | None = None
    version: int = 0
    live: bool = False
    fetching: int = 0
    subscribers: set[asyncio.Queue[EntryUpdate]] = field(default_factory=set)

    @property
    def has_value(self) -> bool:
        return self.last_updated is not None

    @property
    def is_fresh(self) -> bool:
        return self.status is EntryStatus.SUCCESS

    def snapshot(self) -> EntryUpdate:
        return EntryUpdate(
            status=self.status, value=self.value, error=self.error, version=self.version
        )


class DehydratedEntry(BaseModel):
    """
    Serialized successful entry.

    Carries the descriptor (not just the hash) so the receiving side can
    recompute the key with its own strategy.
    """

    operation_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    key: str = Field(description="Key hash on the dehydrating side")
    value: Any = None
    updated_at: float = Field(description="Unix timestamp of the value")

    def descriptor(self) -> Descriptor:
        return Descriptor(self.operation_name, self.arguments)


class DehydratedState(BaseModel):
    """Snapshot of cache entries populated during a server-rendered scope."""

    version: int = 1
    scope_id: str | None = None
    entries: list[DehydratedEntry] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)
