"""Value types carried through a scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from livecache.core.bridge.bridge import SubscriptionBridge
from livecache.core.caching.models import DehydratedState
from livecache.core.caching.query_cache import QueryCache

if TYPE_CHECKING:
    from livecache.core.context.scope import Scope


class ScopeKind(str, Enum):
    """Lifetime of a scope."""

    CLIENT = "client"  # one per application instance
    SERVER = "server"  # one per inbound request


@dataclass(frozen=True)
class BoundPair:
    """The cache and bridge of one scope, bound to each other."""

    cache: QueryCache
    bridge: SubscriptionBridge


@dataclass
class LoaderContext:
    """Context handed to every loader in a scope.

    Loaders read through this context and never construct their own cache or
    bridge.

    Attributes:
        scope: Owning scope
        name: Loader name (key in the loaders mapping)
        params: Route/request parameters

    Example:
        >>> async def todos(ctx: LoaderContext):
        ...     return await ctx.query("todos:list", {"owner": ctx.params["user"]})
    """

    scope: Scope
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def pair(self) -> BoundPair:
        return self.scope.pair

    @property
    def cache(self) -> QueryCache:
        return self.scope.pair.cache

    @property
    def bridge(self) -> SubscriptionBridge:
        return self.scope.pair.bridge

    async def query(self, operation_name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self.scope.query(operation_name, arguments)


@dataclass(frozen=True)
class RenderResult:
    """Loader outputs plus the snapshot for client hydration."""

    data: dict[str, Any]
    state: DehydratedState
