"""Pull-based query cache with an externally driven update path.

Two write paths meet here:
- Pull: read_or_fetch() calls the fetch strategy on a miss
- Push: update_entry() replaces an entry's value or error directly

Both bump the entry version. A pull whose entry was written by a push while it
was waiting returns the pushed state instead of overwriting it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
import logging
import time
from typing import Any

from livecache.core.caching.models import (
    CacheEntry,
    DehydratedEntry,
    DehydratedState,
    EntryStatus,
    EntryUpdate,
)
from livecache.core.caching.protocols import EvictionSink, FetchStrategy, KeyHashStrategy
from livecache.core.errors import ConfigurationError, ScopeError, UnboundCacheError
from livecache.core.keys import Descriptor, KeyCodec

logger = logging.getLogger(__name__)

_MISSING: Any = object()


class QueryCache:
    """
    In-memory query cache keyed by descriptor hash.

    The cache never talks to a backend itself. Reads use the installed fetch
    strategy (or an explicit fetch function); a cache with neither fails the
    read with UnboundCacheError instead of waiting.

    Args:
        gc_time_s: Idle time after which an entry with no watchers and no
            in-flight reads is removed. None keeps entries until removed.
        clock: Timestamp source for last_updated

    Example:
        >>> cache = QueryCache(gc_time_s=300)
        >>> bridge.connect(cache)
        >>> todos = await cache.read_or_fetch(Descriptor("todos:list"))
    """

    def __init__(
        self,
        *,
        gc_time_s: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._key_hash: KeyHashStrategy = KeyCodec().hash
        self._fetch: FetchStrategy | None = None
        self._evict: EvictionSink | None = None
        self._gc_time_s = gc_time_s
        self._gc_timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._clock = clock
        self.bound_bridge: Any = None
        self.closed = False
        # Set by the first read; snapshots may only seed a cache before it
        self.reads_started = False

    # Configuration hooks

    def set_key_hash_strategy(self, fn: KeyHashStrategy) -> None:
        if self._entries:
            raise ConfigurationError("Key hash strategy cannot change once entries exist")
        self._key_hash = fn

    def set_fetch_strategy(self, fn: FetchStrategy) -> None:
        self._fetch = fn

    def set_eviction_sink(self, fn: EvictionSink | None) -> None:
        self._evict = fn

    @property
    def has_fetch_strategy(self) -> bool:
        return self._fetch is not None

    # Lookup

    def key_for(self, descriptor: Descriptor) -> str:
        return self._key_hash(descriptor)

    def get_entry(self, descriptor: Descriptor) -> CacheEntry | None:
        return self._entries.get(self.key_for(descriptor))

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, descriptor: object) -> bool:
        return isinstance(descriptor, Descriptor) and self.key_for(descriptor) in self._entries

    # Reads

    async def read_or_fetch(self, descriptor: Descriptor, fetch: FetchStrategy | None = None) -> Any:
        """Return the cached value, fetching on a miss or for stale/errored entries.

        Args:
            descriptor: Query descriptor
            fetch: Optional one-off fetch function (the entry is then not marked live)

        Raises:
            UnboundCacheError: No fetch strategy installed and none given
            ScopeError: Cache is closed
            RemoteOperationError: Fetch failed; the error is also stored on the entry
        """
        self._check_open()
        self.reads_started = True
        strategy = fetch or self._fetch
        if strategy is None:
            raise UnboundCacheError(
                f"Cannot read {descriptor.operation_name!r}: this cache has no fetch strategy "
                "because it was never bound to a SubscriptionBridge. Call "
                "ConnectionRegistry.bind(bridge, cache) (or bridge.connect(cache)) before "
                "issuing reads, or obtain the cache from a ContextPropagator scope."
            )

        key = self.key_for(descriptor)
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh:
            return entry.value

        if entry is None:
            entry = CacheEntry(key=key, descriptor=descriptor)
            self._entries[key] = entry
        elif entry.status is EntryStatus.ERROR:
            # Caller-initiated retry
            entry.status = EntryStatus.PENDING
            entry.error = None

        return await self._fetch_into(entry, strategy, live=fetch is None)

    async def _fetch_into(self, entry: CacheEntry, strategy: FetchStrategy, *, live: bool) -> Any:
        self._cancel_gc(entry.key)
        start_version = entry.version
        entry.fetching += 1
        try:
            value = await strategy(entry.descriptor)
        except asyncio.CancelledError:
            entry.fetching -= 1
            self._discard_if_abandoned(entry)
            raise
        except Exception as e:
            entry.fetching -= 1
            if self._owns(entry) and entry.version == start_version:
                self._write_error(entry, e)
            self._schedule_gc(entry)
            raise

        entry.fetching -= 1
        if not self._owns(entry):
            return value
        if live:
            entry.live = True

        if entry.version != start_version:
            # A push landed while this read was waiting; it is at least as new.
            if entry.status is EntryStatus.ERROR and entry.error is not None:
                self._schedule_gc(entry)
                raise entry.error
            if entry.has_value:
                self._schedule_gc(entry)
                return entry.value

        self._write_value(entry, value)
        self._schedule_gc(entry)
        return value

    async def watch(self, descriptor: Descriptor) -> AsyncIterator[Any]:
        """Yield the current value, then every pushed value.

        Keeps the entry alive while iterating. A hydrated entry is made live in
        the background so pushes start flowing.

        Raises:
            RemoteOperationError: When the entry moves to the error state
        """
        value = await self.read_or_fetch(descriptor)
        entry = self._entries.get(self.key_for(descriptor))
        if entry is None:
            yield value
            return

        queue: asyncio.Queue[EntryUpdate] = asyncio.Queue()
        entry.subscribers.add(queue)
        self._cancel_gc(entry.key)
        try:
            if not entry.live and self._fetch is not None:
                self._spawn(self._fetch_into(entry, self._fetch, live=True))
            yield value
            while True:
                update = await queue.get()
                if update.status is EntryStatus.SUCCESS:
                    yield update.value
                elif update.status is EntryStatus.ERROR and update.error is not None:
                    raise update.error
                elif update.status is EntryStatus.REMOVED:
                    return
                # STALE: keep the last value and wait for the next push
        finally:
            entry.subscribers.discard(queue)
            self._schedule_gc(entry)

    # Writes

    def update_entry(
        self,
        key: str,
        value: Any = _MISSING,
        *,
        error: BaseException | None = None,
        stale: bool = False,
    ) -> bool:
        """Push a value or an error into an existing entry.

        Args:
            key: Entry key hash
            value: New value (ignored when error is given)
            error: Error to record
            stale: Record the error as transient (entry keeps its value, next read refetches)

        Returns:
            True if an entry existed for key
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        if error is not None:
            self._write_error(entry, error, stale=stale)
        elif value is _MISSING:
            raise ValueError("update_entry requires a value or an error")
        else:
            self._write_value(entry, value)
        return True

    def invalidate(self, descriptor: Descriptor) -> bool:
        """Mark an entry stale so the next read refetches."""
        entry = self.get_entry(descriptor)
        if entry is None:
            return False
        if entry.status is EntryStatus.SUCCESS:
            entry.status = EntryStatus.STALE
            entry.version += 1
            self._notify(entry)
        return True

    def remove(self, descriptor: Descriptor) -> bool:
        """Drop an entry and release whatever keeps it live."""
        entry = self.get_entry(descriptor)
        if entry is None:
            return False
        self._remove(entry)
        return True

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            self._remove(entry)

    async def close(self) -> None:
        """Remove every entry and cancel background work. Reads fail afterwards."""
        self.closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.clear()

    # Snapshots

    def dehydrate(self) -> DehydratedState:
        """Serialize every entry holding a successful value."""
        return DehydratedState(
            entries=[
                DehydratedEntry(
                    operation_name=entry.descriptor.operation_name,
                    arguments=entry.descriptor.arguments,
                    key=entry.key,
                    value=entry.value,
                    updated_at=entry.last_updated,
                )
                for entry in self._entries.values()
                if entry.status is EntryStatus.SUCCESS and entry.last_updated is not None
            ]
        )

    def hydrate(self, state: DehydratedState) -> int:
        """Seed entries from a snapshot.

        Entries already holding a newer value are left alone. Seeded entries
        are fresh but not live: no subscription is opened until a watcher
        attaches.

        Returns:
            Number of entries written
        """
        written = 0
        for item in state.entries:
            descriptor = item.descriptor()
            key = self.key_for(descriptor)
            if key != item.key:
                logger.debug(f"Rehashed hydrated entry {descriptor.operation_name}")
            entry = self._entries.get(key)
            if entry is not None and entry.last_updated is not None:
                if entry.last_updated >= item.updated_at:
                    continue
            if entry is None:
                entry = CacheEntry(key=key, descriptor=descriptor)
                self._entries[key] = entry
            entry.value = item.value
            entry.error = None
            entry.status = EntryStatus.SUCCESS
            entry.last_updated = item.updated_at
            entry.version += 1
            self._notify(entry)
            written += 1
        logger.debug(f"Hydrated {written}/{len(state.entries)} entries")
        return written

    # Internals

    def _check_open(self) -> None:
        if self.closed:
            raise ScopeError("Cache is closed; its scope has ended")

    def _owns(self, entry: CacheEntry) -> bool:
        return self._entries.get(entry.key) is entry

    def _write_value(self, entry: CacheEntry, value: Any) -> None:
        entry.value = value
        entry.error = None
        entry.status = EntryStatus.SUCCESS
        entry.last_updated = self._clock()
        entry.version += 1
        self._notify(entry)

    def _write_error(self, entry: CacheEntry, error: BaseException, *, stale: bool = False) -> None:
        entry.error = error
        entry.status = EntryStatus.STALE if stale else EntryStatus.ERROR
        entry.version += 1
        self._notify(entry)

    def _notify(self, entry: CacheEntry) -> None:
        update = entry.snapshot()
        for queue in entry.subscribers:
            queue.put_nowait(update)

    def _remove(self, entry: CacheEntry) -> None:
        if not self._owns(entry):
            return
        del self._entries[entry.key]
        self._cancel_gc(entry.key)
        for queue in entry.subscribers:
            queue.put_nowait(EntryUpdate(status=EntryStatus.REMOVED, version=entry.version))
        if self._evict is not None:
            self._evict(entry.descriptor)

    def _discard_if_abandoned(self, entry: CacheEntry) -> None:
        """Drop a pending entry whose only readers were cancelled before any value arrived."""
        if (
            self._owns(entry)
            and entry.fetching == 0
            and not entry.has_value
            and not entry.subscribers
            and entry.status is EntryStatus.PENDING
        ):
            self._remove(entry)

    def _schedule_gc(self, entry: CacheEntry) -> None:
        if self._gc_time_s is None or entry.subscribers or entry.fetching or not self._owns(entry):
            return
        self._cancel_gc(entry.key)
        loop = asyncio.get_running_loop()
        self._gc_timers[entry.key] = loop.call_later(self._gc_time_s, self._collect, entry)

    def _cancel_gc(self, key: str) -> None:
        timer = self._gc_timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _collect(self, entry: CacheEntry) -> None:
        self._gc_timers.pop(entry.key, None)
        if self._owns(entry) and not entry.subscribers and not entry.fetching:
            logger.debug(f"Collecting idle entry {entry.descriptor.operation_name}")
            self._remove(entry)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Background refresh failed: {task.exception()}")
