"""One-time binding of a subscription bridge to a cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from livecache.core.errors import AlreadyBoundError

if TYPE_CHECKING:
    from livecache.core.bridge.bridge import SubscriptionBridge
    from livecache.core.caching.protocols import Cache

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Validates and performs bridge/cache bindings.

    Binding state lives on the two objects (bridge.cache, cache.bound_bridge),
    so there is no process-wide registry to leak between scopes.

    Example:
        >>> ConnectionRegistry().bind(bridge, cache)
        >>> ConnectionRegistry().bind(bridge, cache)  # no-op
        >>> ConnectionRegistry().bind(bridge, other_cache)  # AlreadyBoundError
    """

    def bind(self, bridge: SubscriptionBridge, cache: Cache) -> None:
        """Bind bridge to cache and install the bridge's strategies on the cache.

        Raises:
            AlreadyBoundError: If either side is bound to a different counterpart
            ConfigurationError: If the cache refuses the strategies (nothing is bound)
        """
        bound_cache = bridge.cache
        bound_bridge = self.binding_of(cache)

        if bound_cache is cache and bound_bridge is bridge:
            return

        if bound_cache is not None:
            raise AlreadyBoundError(
                f"{bridge!r} is already bound to another cache. Each scope needs its own "
                "bridge; create a new SubscriptionBridge for this cache."
            )
        if bound_bridge is not None:
            raise AlreadyBoundError(
                f"Cache is already bound to {bound_bridge!r}. A cache accepts exactly one bridge."
            )

        bridge._attach(cache)
        cache.bound_bridge = bridge
        logger.debug(f"Bound {bridge!r} to cache")

    @staticmethod
    def binding_of(cache: Any) -> SubscriptionBridge | None:
        """Return the bridge a cache is bound to, if any."""
        return getattr(cache, "bound_bridge", None)

    def is_bound(self, cache: Any) -> bool:
        return self.binding_of(cache) is not None
