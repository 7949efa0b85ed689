"""Models exchanged with the reactive backend."""

from typing import Any

from pydantic import BaseModel

from livecache.core.errors import RemoteErrorPayload, RemoteOperationError


class PushEvent(BaseModel):
    """
    One item delivered on a subscription stream.

    Either a new value for the subscribed query or a backend error. Channel
    loss is not an event; the stream raises ChannelDisconnect instead.
    """

    model_config = {"frozen": True}

    value: Any = None
    error: RemoteErrorPayload | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def of(cls, value: Any) -> "PushEvent":
        return cls(value=value)

    @classmethod
    def failure(cls, message: str, *, operation_name: str | None = None, data: Any = None) -> "PushEvent":
        return cls(error=RemoteErrorPayload(message=message, operation_name=operation_name, data=data))

    def to_exception(self) -> RemoteOperationError:
        """Wrap the error payload as an exception (only valid when not ok)."""
        if self.error is None:
            raise ValueError("PushEvent carries a value, not an error")
        return RemoteOperationError(self.error)
