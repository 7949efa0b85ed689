"""Protocol for reactive backends.

The core depends only on two primitives: a push stream per query and a
one-shot call.
"""

from collections.abc import AsyncGenerator
from typing import Any, Protocol

from livecache.core.backend.models import PushEvent


class Backend(Protocol):
    """
    Protocol for reactive data sources.

    Implementations must:
    - Deliver pushes for one subscription in backend order
    - Report rejected operations as error events (subscribe) or
      RemoteOperationError (call)
    - Raise ChannelDisconnect from the stream when the channel drops
    """

    def subscribe(self, operation_name: str, arguments: dict[str, Any]) -> AsyncGenerator[PushEvent, None]:
        """
        Open a subscription stream.

        Args:
            operation_name: Remote read operation
            arguments: Operation arguments

        Returns:
            Async generator of PushEvents; aclose() on it tears the channel down

        Raises:
            ChannelDisconnect: While iterating, if the channel drops
        """
        ...

    async def call(self, operation_name: str, arguments: dict[str, Any]) -> Any:
        """
        Run the operation once without subscribing.

        Raises:
            RemoteOperationError: If the backend rejects the operation
            ChannelDisconnect: If the backend is unreachable
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...
