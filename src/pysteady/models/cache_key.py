"""
Cache keys identify one cached read-result in the read-cache collaborator.

The layer never stores values under these keys; it only names them so the
cache can mark them stale.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheKey:
    """
    Hashable identifier for a cached read.

    Three shapes are used by the application:
    - collection:  CacheKey("/api/residents")
    - instance:    CacheKey("/api/residents", instance=42)
    - filtered:    CacheKey.filtered("/api/support-plans", residentId=42)

    Matching uses prefix semantics: a pattern matches a key when the
    resource is equal and every component the pattern specifies is equal.
    So the collection key matches every instance and filtered key of the
    same resource, while an instance key matches only itself.
    """

    resource: str
    instance: int | str | None = None
    filters: tuple[tuple[str, Any], ...] = ()

    def __post_init__(self) -> None:
        if not self.resource:
            raise ValueError("CacheKey resource must not be empty")
        # Normalize filter order so equal filters hash equally
        object.__setattr__(self, "filters", tuple(sorted(self.filters)))

    @classmethod
    def filtered(cls, resource: str, **filters: Any) -> CacheKey:
        return cls(resource, filters=tuple(filters.items()))

    @property
    def is_collection(self) -> bool:
        return self.instance is None and not self.filters

    def matches(self, key: CacheKey) -> bool:
        """Check whether this pattern covers the given key."""
        if self.resource != key.resource:
            return False
        if self.instance is not None and self.instance != key.instance:
            return False
        key_filters = dict(key.filters)
        return all(key_filters.get(name, _MISSING) == value for name, value in self.filters)

    def as_tuple(self) -> tuple[Any, ...]:
        """Array form used by the frontend query cache."""
        parts: list[Any] = [self.resource]
        if self.instance is not None:
            parts.append(self.instance)
        if self.filters:
            parts.append(dict(self.filters))
        return tuple(parts)

    def serialize(self) -> str:
        """Stable JSON form, used as the field name in shared caches."""
        return json.dumps(
            [self.resource, self.instance, [list(item) for item in self.filters]],
            separators=(",", ":"),
            sort_keys=True,
        )

    @classmethod
    def parse(cls, text: str | bytes) -> CacheKey:
        """Inverse of serialize()."""
        resource, instance, filters = json.loads(text)
        return cls(resource, instance=instance, filters=tuple(tuple(item) for item in filters))

    def __str__(self) -> str:
        text = self.resource
        if self.instance is not None:
            text += f"/{self.instance}"
        if self.filters:
            text += "?" + "&".join(f"{name}={value}" for name, value in self.filters)
        return text


_MISSING = object()
