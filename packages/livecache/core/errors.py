"""Exception hierarchy for livecache.

Errors fall into three groups:
- Local input errors (InvalidDescriptor): surfaced immediately, never retried
- Remote errors (RemoteOperationError): stored on the cache entry, retried by re-reading
- Wiring errors (ConfigurationError and subclasses): fatal, raised at setup or first read

ChannelDisconnect is transient and handled inside the bridge with backoff.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RemoteErrorPayload(BaseModel):
    """Structured error data reported by the backend.

    Args:
        message: Human-readable error description from the backend
        operation_name: Operation the backend rejected
        data: Optional application-defined error payload
    """

    model_config = {"frozen": True}

    message: str
    operation_name: str | None = None
    data: Any = Field(default=None)


class LiveCacheError(Exception):
    """Base exception for all livecache errors."""


class InvalidDescriptor(LiveCacheError, ValueError):
    """Descriptor has an empty operation name or non-serializable arguments."""


class RemoteOperationError(LiveCacheError):
    """Backend rejected the operation or its arguments.

    Wraps the backend payload so readers can inspect it.

    Attributes:
        payload: Structured error data (RemoteErrorPayload)
        message: Backend error message
        operation_name: Rejected operation, if known
        data: Application-defined error data, if any
    """

    def __init__(self, payload: RemoteErrorPayload) -> None:
        self.payload = payload
        self.message = payload.message
        self.operation_name = payload.operation_name
        self.data = payload.data
        super().__init__(str(self))

    @classmethod
    def from_message(
        cls, message: str, *, operation_name: str | None = None, data: Any = None
    ) -> RemoteOperationError:
        """Build error from loose fields."""
        return cls(RemoteErrorPayload(message=message, operation_name=operation_name, data=data))

    def __str__(self) -> str:
        if self.operation_name:
            return f"{self.operation_name}: {self.message}"
        return self.message


class ConfigurationError(LiveCacheError):
    """Components were wired together incorrectly."""


class AlreadyBoundError(ConfigurationError):
    """Bridge or cache is already bound to a different counterpart."""


class UnboundCacheError(ConfigurationError):
    """A read was issued against a cache that was never bound to a bridge."""


class ScopeError(ConfigurationError):
    """Scope used outside its lifetime or no scope is active."""


class ChannelDisconnect(LiveCacheError):
    """Backend channel dropped. Transient; the bridge reconnects with backoff."""

    def __init__(self, message: str = "backend channel disconnected", *, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)
