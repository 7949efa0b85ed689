"""Scopes: one bound cache/bridge pair per application instance or request."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator, Mapping
from contextlib import aclosing, contextmanager
from contextvars import ContextVar
from typing import Any

from livecache.core.bridge.bridge import SubscriptionBridge
from livecache.core.caching.models import DehydratedState
from livecache.core.caching.query_cache import QueryCache
from livecache.core.context.models import BoundPair, LoaderContext, ScopeKind
from livecache.core.errors import ScopeError
from livecache.core.keys import Descriptor
from livecache.core.utils.logging import get_logger

Loader = Callable[[LoaderContext], Awaitable[Any]]

_active_scope: ContextVar[Scope | None] = ContextVar("livecache_active_scope", default=None)


def current_scope() -> Scope:
    """Return the scope active in the current context.

    Raises:
        ScopeError: If called outside any scope
    """
    scope = _active_scope.get()
    if scope is None:
        raise ScopeError(
            "No active livecache scope. Readers must run inside a scope obtained from "
            "ContextPropagator.client_scope() or ContextPropagator.request_scope()."
        )
    return scope


def current_pair() -> BoundPair:
    """Return the cache/bridge pair of the active scope."""
    return current_scope().pair


class Scope:
    """
    One BoundPair plus the lifetime that owns it.

    Created by ContextPropagator only. While a scope is activated it is the
    value of current_scope() in that context and in every task spawned from it.

    Attributes:
        kind: CLIENT or SERVER
        pair: Bound cache and bridge
        scope_id: Identifier used in logs and snapshots
    """

    def __init__(self, kind: ScopeKind, pair: BoundPair, *, scope_id: str) -> None:
        self.kind = kind
        self.pair = pair
        self.scope_id = scope_id
        self.closed = False
        self._logger = get_logger(__name__, scope_id=scope_id, scope_kind=kind.value)

    def __repr__(self) -> str:
        return f"Scope({self.kind.value}, {self.scope_id})"

    @property
    def cache(self) -> QueryCache:
        return self.pair.cache

    @property
    def bridge(self) -> SubscriptionBridge:
        return self.pair.bridge

    # Context propagation

    @contextmanager
    def activate(self) -> Iterator[Scope]:
        """Make this scope current for the enclosed code."""
        self._check_open()
        token = _active_scope.set(self)
        try:
            yield self
        finally:
            _active_scope.reset(token)

    # Reads

    async def read(self, descriptor: Descriptor) -> Any:
        self._check_open()
        return await self.pair.cache.read_or_fetch(descriptor)

    async def query(self, operation_name: str, arguments: Mapping[str, Any] | None = None) -> Any:
        return await self.read(Descriptor(operation_name, arguments))

    async def pull(self, descriptor: Descriptor) -> Any:
        """Read through a one-shot backend call instead of a subscription."""
        self._check_open()
        return await self.pair.cache.read_or_fetch(descriptor, fetch=self.pair.bridge.adapter.pull)

    async def watch(self, descriptor: Descriptor) -> AsyncIterator[Any]:
        """Yield the current value and every pushed update."""
        self._check_open()
        async with aclosing(self.pair.cache.watch(descriptor)) as updates:
            async for value in updates:
                yield value

    def invalidate(self, descriptor: Descriptor) -> bool:
        return self.pair.cache.invalidate(descriptor)

    async def run_loaders(
        self,
        loaders: Mapping[str, Loader],
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run loaders concurrently inside this scope.

        When a loader fails the remaining loaders are cancelled before this
        returns, so none of them outlives the scope.

        Args:
            loaders: Loader callables by name
            params: Request/route parameters passed to every loader

        Returns:
            Loader results by name

        Raises:
            Exception: The first loader failure
        """
        self._check_open()

        async def run(name: str) -> Any:
            return await loaders[name](
                LoaderContext(scope=self, name=name, params=dict(params or {}))
            )

        tasks: dict[str, asyncio.Task[Any]] = {}
        with self.activate():
            try:
                async with asyncio.TaskGroup() as group:
                    for name in loaders:
                        tasks[name] = group.create_task(run(name))
            except ExceptionGroup as eg:
                self._logger.debug("Loader failed; remaining loaders cancelled")
                raise eg.exceptions[0] from eg
        self._logger.debug(f"Ran {len(tasks)} loaders")
        return {name: task.result() for name, task in tasks.items()}

    # Snapshots

    def dehydrate(self) -> DehydratedState:
        """Serialize the successful entries populated in this scope."""
        state = self.pair.cache.dehydrate()
        state.scope_id = self.scope_id
        self._logger.debug(f"Dehydrated {len(state)} entries")
        return state

    def hydrate(self, state: DehydratedState | str | bytes) -> int:
        """Seed this scope's cache from a server snapshot.

        Args:
            state: DehydratedState or its JSON

        Returns:
            Number of entries seeded

        Raises:
            ScopeError: If reads already ran in this scope
        """
        self._check_open()
        if self.pair.cache.reads_started:
            raise ScopeError(
                f"{self!r}: hydrate() must run before any read in the scope; "
                "seed the client cache before rendering readers."
            )
        if not isinstance(state, DehydratedState):
            state = DehydratedState.model_validate_json(state)
        written = self.pair.cache.hydrate(state)
        self._logger.debug(f"Hydrated {written} entries from scope {state.scope_id}")
        return written

    # Lifecycle

    def _check_open(self) -> None:
        if self.closed:
            raise ScopeError(f"{self!r} is closed")

    async def close(self) -> None:
        """Close the cache and every subscription of this scope."""
        if self.closed:
            return
        self.closed = True
        await self.pair.cache.close()
        await self.pair.bridge.aclose()
        self._logger.debug("Scope closed")

    async def __aenter__(self) -> Scope:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
