"""Context propagator: builds and hands out bound scopes.

One client scope per application instance, one server scope per request. The
propagator is the only place that constructs caches and bridges.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
import logging
from typing import Any
from uuid import uuid4

from livecache.core.backend.http import HttpBackend
from livecache.core.backend.protocols import Backend
from livecache.core.bridge.bridge import SubscriptionBridge
from livecache.core.bridge.registry import ConnectionRegistry
from livecache.core.caching.query_cache import QueryCache
from livecache.core.config.loader import require_backend_url
from livecache.core.config.models import LiveCacheConfig
from livecache.core.context.models import BoundPair, RenderResult, ScopeKind
from livecache.core.context.scope import Loader, Scope

logger = logging.getLogger(__name__)


class ContextPropagator:
    """
    Creates bound cache/bridge pairs and the scopes that carry them.

    The backend client may be shared across scopes (it is only a transport);
    caches and bridges never are.

    Args:
        config: Application configuration
        backend: Backend shared by every scope. If None, an HttpBackend is created
            lazily from config.backend_url and closed by aclose().

    Example:
        >>> propagator = ContextPropagator(config)
        >>> async with propagator.request_scope() as scope:
        ...     todos = await scope.query("todos:list")
        ...     state = scope.dehydrate()
    """

    def __init__(self, config: LiveCacheConfig | None = None, *, backend: Backend | None = None) -> None:
        self.config = config or LiveCacheConfig()
        self._backend = backend
        self._owns_backend = backend is None
        self._client_scope: Scope | None = None
        self._registry = ConnectionRegistry()

    @property
    def backend(self) -> Backend:
        """Backend client (created on first access when not injected)."""
        if self._backend is None:
            self._backend = HttpBackend(require_backend_url(self.config), self.config.http)
        return self._backend

    def _build(self, kind: ScopeKind, scope_id: str | None) -> Scope:
        scope_id = scope_id or str(uuid4())
        cache = QueryCache(gc_time_s=self.config.gc_time_s if kind is ScopeKind.CLIENT else None)
        bridge = SubscriptionBridge(
            self.backend,
            grace_period_s=self.config.grace_period_s,
            reconnect=self.config.reconnect,
            name=f"{kind.value}-{scope_id[:8]}",
        )
        self._registry.bind(bridge, cache)
        logger.debug(f"Built {kind.value} scope {scope_id}")
        return Scope(kind, BoundPair(cache=cache, bridge=bridge), scope_id=scope_id)

    def client_scope(self) -> Scope:
        """Return the application-lifetime client scope, creating it on first call."""
        if self._client_scope is None or self._client_scope.closed:
            self._client_scope = self._build(ScopeKind.CLIENT, None)
        return self._client_scope

    @asynccontextmanager
    async def request_scope(self, request_id: str | None = None) -> AsyncIterator[Scope]:
        """Open a fresh scope for one request; it is active inside the block and closed after."""
        scope = self._build(ScopeKind.SERVER, request_id)
        try:
            with scope.activate():
                yield scope
        finally:
            await scope.close()

    async def render(
        self,
        loaders: Mapping[str, Loader],
        params: Mapping[str, Any] | None = None,
        *,
        request_id: str | None = None,
    ) -> RenderResult:
        """Run loaders in a request scope and dehydrate what they read.

        Returns:
            RenderResult with loader outputs and the client hydration snapshot
        """
        async with self.request_scope(request_id) as scope:
            data = await scope.run_loaders(loaders, params)
            state = scope.dehydrate()
        return RenderResult(data=data, state=state)

    async def aclose(self) -> None:
        """Close the client scope and the backend if this propagator created it."""
        if self._client_scope is not None:
            await self._client_scope.close()
        if self._owns_backend and self._backend is not None:
            await self._backend.aclose()
            self._backend = None

    async def __aenter__(self) -> ContextPropagator:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
