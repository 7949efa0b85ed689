"""Reactive backend collaborators.

The core needs only `subscribe` (push stream) and `call` (one-shot pull):
- InMemoryBackend: in-process backend for development/testing
- HttpBackend: HTTPX client over JSON + server-sent events
"""

from livecache.core.backend.http import HttpBackend
from livecache.core.backend.memory import InMemoryBackend
from livecache.core.backend.models import PushEvent
from livecache.core.backend.protocols import Backend

__all__ = [
    "Backend",
    "HttpBackend",
    "InMemoryBackend",
    "PushEvent",
]
