"""Query descriptors and the key codec.

A Descriptor names a remote read (operation name + arguments). The KeyCodec turns
descriptors into CacheKeys using a canonical JSON form:
- Mapping keys sorted lexically (insertion order is not meaningful)
- Compact separators, no NaN/Infinity
- Integral floats written as ints (1.0 and 1 are the same argument)
- SHA-256 digest of the canonical form as the stable hash

The output depends only on the descriptor, so hashes survive process restarts and
can be persisted (e.g. in a dehydrated server snapshot).
"""

from __future__ import annotations

from collections.abc import Mapping
import hashlib
import json
import math
from typing import Any

from pydantic import BaseModel, Field

from livecache.core.errors import InvalidDescriptor


def _check_mapping_keys(value: Any, path: str = "arguments") -> None:
    """Reject non-string mapping keys anywhere in the value.

    json.dumps would silently coerce int keys to strings, making {1: x} and
    {"1": x} collide.
    """
    if isinstance(value, Mapping):
        for k, v in value.items():
            if not isinstance(k, str):
                raise InvalidDescriptor(f"{path} has non-string key {k!r}")
            _check_mapping_keys(v, f"{path}.{k}")
    elif isinstance(value, list | tuple):
        for i, item in enumerate(value):
            _check_mapping_keys(item, f"{path}[{i}]")


def _normalize_numbers(value: Any) -> Any:
    """Write integral floats as ints so 1 and 1.0 (or 0 and -0.0) serialize alike."""
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return value
    if isinstance(value, Mapping):
        return {k: _normalize_numbers(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_normalize_numbers(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """Serialize value to canonical JSON.

    Args:
        value: JSON-compatible value (dicts, lists, tuples, str, int, float, bool, None)

    Returns:
        Deterministic JSON string

    Raises:
        InvalidDescriptor: If value is not JSON-serializable
    """
    _check_mapping_keys(value)
    try:
        return json.dumps(
            _normalize_numbers(value),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise InvalidDescriptor(f"arguments are not serializable: {e}") from e


def compute_fingerprint(canonical: str) -> str:
    """SHA-256 hex digest of a canonical string."""
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class Descriptor:
    """Immutable identifier of a remote read operation.

    Equality and hashing use the canonical form, so two descriptors built with
    the same arguments in a different order are equal.

    Example:
        >>> Descriptor("todos:list", {"b": 1, "a": 2}) == Descriptor("todos:list", {"a": 2, "b": 1})
        True
    """

    __slots__ = ("_operation_name", "_canonical_args", "_canonical")

    def __init__(self, operation_name: str, arguments: Mapping[str, Any] | None = None) -> None:
        if not isinstance(operation_name, str) or not operation_name.strip():
            raise InvalidDescriptor("operation_name must be a non-empty string")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            raise InvalidDescriptor(
                f"arguments must be a mapping, got {type(arguments).__name__}"
            )
        self._operation_name = operation_name
        self._canonical_args = canonical_json(dict(arguments))
        self._canonical = canonical_json([operation_name, json.loads(self._canonical_args)])

    @property
    def operation_name(self) -> str:
        return self._operation_name

    @property
    def arguments(self) -> dict[str, Any]:
        """Fresh copy of the arguments (mutating it does not affect the descriptor)."""
        return json.loads(self._canonical_args)

    @property
    def canonical(self) -> str:
        """Canonical JSON of [operation_name, arguments]."""
        return self._canonical

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_canonical"):
            raise AttributeError("Descriptor is immutable")
        object.__setattr__(self, name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Descriptor):
            return NotImplemented
        return self._canonical == other._canonical

    def __hash__(self) -> int:
        return hash(self._canonical)

    def __repr__(self) -> str:
        return f"Descriptor({self._operation_name!r}, {self._canonical_args})"

    def to_dict(self) -> dict[str, Any]:
        return {"operation_name": self._operation_name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Descriptor:
        return cls(data["operation_name"], data.get("arguments") or {})


class CacheKey(BaseModel):
    """
    Stable identifier for a cache entry.

    Uniquely identifies a remote read based on:
    - Operation name
    - Input fingerprint (SHA-256 of the canonical descriptor)
    """

    model_config = {"frozen": True}

    operation_name: str = Field(description="Remote operation (e.g., 'todos:list')")
    input_fingerprint: str = Field(description="SHA-256 hex digest of the canonical descriptor")

    @property
    def digest(self) -> str:
        return self.input_fingerprint

    def __str__(self) -> str:
        return f"{self.operation_name}:{self.input_fingerprint[:12]}"


class KeyCodec:
    """Canonicalizes descriptors into cache keys and stable hashes.

    Stateless; safe to share. Both methods are pure.
    """

    def canonicalize(self, descriptor: Descriptor) -> CacheKey:
        """Derive the cache key for a descriptor.

        Raises:
            InvalidDescriptor: If descriptor is not a Descriptor
        """
        if not isinstance(descriptor, Descriptor):
            raise InvalidDescriptor(f"expected Descriptor, got {type(descriptor).__name__}")
        return CacheKey(
            operation_name=descriptor.operation_name,
            input_fingerprint=compute_fingerprint(descriptor.canonical),
        )

    def hash(self, descriptor: Descriptor) -> str:
        """Stable string hash for a descriptor (the full fingerprint)."""
        return self.canonicalize(descriptor).input_fingerprint

    @staticmethod
    def descriptor(operation_name: str, arguments: Mapping[str, Any] | None = None) -> Descriptor:
        """Build a descriptor (raises InvalidDescriptor on bad input)."""
        return Descriptor(operation_name, arguments)
