"""
Operation represents one logical call issued by application code.

Design principles:
- Immutable once issued (frozen dataclass, copies via with_overrides)
- Sensible defaults derived from the HTTP method
- Serialization-friendly so the offline journal can persist it
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from uuid_extensions import uuid7


class HttpMethod(Enum):
    """HTTP verbs the layer issues."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def is_mutating(self) -> bool:
        """Whether the verb changes server state by default."""
        return self != HttpMethod.GET

    @property
    def is_idempotent(self) -> bool:
        """Whether repeating the verb is safe by HTTP semantics."""
        return self in (HttpMethod.GET, HttpMethod.PUT, HttpMethod.DELETE)

    def __str__(self) -> str:
        return self.value


_UNSET: Any = object()


@dataclass(frozen=True)
class Operation:
    """
    A description of one logical call against the backend.

    An Operation is created by application code, consumed by the pipeline
    and terminates in a result or a typed error. It carries:
    - Identity (id, time-ordered uuid7)
    - Request (method, target, body, params, headers)
    - Semantics (mutating, idempotent)
    - Per-call overrides (timeout, max_retries, retry opt-out)
    - Invalidation hints (entity_type, entity_id)
    - Tenant scoping (organization_id)

    Example:
        ```python
        op = Operation.post(
            "/api/residents",
            body={"firstName": "Sam"},
            entity_type="resident",
        )
        op = op.with_overrides(timeout=5.0, max_retries=1)
        ```
    """

    method: HttpMethod
    target: str
    body: Any = None
    params: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)

    mutating: bool = _UNSET
    """Whether the call changes server state. Defaults from the method."""

    idempotent: bool = _UNSET
    """Whether resubmission is harmless. Defaults from the method.

    Informational: carried on the operation and through the journal for
    callers to inspect. Retries and offline replay follow the failure
    classification and the retry budget, not this flag.
    """

    timeout: float | None = None
    """Deadline for one attempt in seconds. None uses the client default."""

    max_retries: int | None = None
    """Retry budget override. None uses the client's RetryPolicy."""

    retry: bool = True
    """Set False to opt out of retries entirely."""

    entity_type: str | None = None
    """Business entity mutated by this call (drives cache invalidation)."""

    entity_id: int | str | None = None
    """Instance mutated by this call, when known."""

    organization_id: int | None = None
    """Tenant sent as the X-Organization-Id header."""

    id: str = field(default_factory=lambda: str(uuid7()))

    def __post_init__(self) -> None:
        if isinstance(self.method, str):
            object.__setattr__(self, "method", HttpMethod(self.method.upper()))
        if self.mutating is _UNSET:
            object.__setattr__(self, "mutating", self.method.is_mutating)
        if self.idempotent is _UNSET:
            object.__setattr__(self, "idempotent", self.method.is_idempotent)
        if not self.target:
            raise ValueError("Operation target must not be empty")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def get(cls, target: str, **kwargs: Any) -> Operation:
        return cls(HttpMethod.GET, target, **kwargs)

    @classmethod
    def post(cls, target: str, body: Any = None, **kwargs: Any) -> Operation:
        return cls(HttpMethod.POST, target, body=body, **kwargs)

    @classmethod
    def put(cls, target: str, body: Any = None, **kwargs: Any) -> Operation:
        return cls(HttpMethod.PUT, target, body=body, **kwargs)

    @classmethod
    def patch(cls, target: str, body: Any = None, **kwargs: Any) -> Operation:
        return cls(HttpMethod.PATCH, target, body=body, **kwargs)

    @classmethod
    def delete(cls, target: str, **kwargs: Any) -> Operation:
        return cls(HttpMethod.DELETE, target, **kwargs)

    # =========================================================================
    # Copies and serialization
    # =========================================================================

    def with_overrides(self, **changes: Any) -> Operation:
        """Return a copy with the given fields replaced (id preserved)."""
        return replace(self, **changes)

    def retry_budget(self, default: int) -> int:
        """Effective retry budget for this call."""
        if not self.retry:
            return 0
        if self.max_retries is not None:
            return self.max_retries
        return default

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible primitives."""
        return {
            "id": self.id,
            "method": self.method.value,
            "target": self.target,
            "body": self.body,
            "params": self.params,
            "headers": dict(self.headers),
            "mutating": self.mutating,
            "idempotent": self.idempotent,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "retry": self.retry,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "organization_id": self.organization_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        """Rebuild an Operation serialized with to_dict()."""
        return cls(
            method=HttpMethod(data["method"]),
            target=data["target"],
            body=data.get("body"),
            params=data.get("params"),
            headers=dict(data.get("headers") or {}),
            mutating=data.get("mutating", _UNSET),
            idempotent=data.get("idempotent", _UNSET),
            timeout=data.get("timeout"),
            max_retries=data.get("max_retries"),
            retry=data.get("retry", True),
            entity_type=data.get("entity_type"),
            entity_id=data.get("entity_id"),
            organization_id=data.get("organization_id"),
            id=data["id"],
        )

    def __str__(self) -> str:
        return f"{self.method} {self.target}"
