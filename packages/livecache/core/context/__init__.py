"""Scope construction and propagation for livecache.

Core concepts:
- ContextPropagator: builds one bound pair per client app / server request
- Scope: owns the pair; activates it for readers; dehydrates/hydrates
- LoaderContext: what loaders receive (like a pipeline context)
- current_scope()/current_pair(): access for nested readers

Example:
    >>> propagator = ContextPropagator(config, backend=backend)
    >>> result = await propagator.render({"todos": load_todos})
    >>> client = propagator.client_scope()
    >>> client.hydrate(result.state)
"""

from livecache.core.context.models import BoundPair, LoaderContext, RenderResult, ScopeKind
from livecache.core.context.propagator import ContextPropagator
from livecache.core.context.scope import Loader, Scope, current_pair, current_scope

__all__ = [
    "BoundPair",
    "ContextPropagator",
    "Loader",
    "LoaderContext",
    "RenderResult",
    "Scope",
    "ScopeKind",
    "current_pair",
    "current_scope",
]
