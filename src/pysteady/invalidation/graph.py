"""Invalidation graph: which cached reads go stale when an entity changes.

The graph is a static registry of InvalidationRule values, one per entity
type. It performs no I/O; `invalidate()` only computes the key set, and
discarding or refetching cached values is the read cache's job.

Rules are many-to-many. Mutating a resident stales the residents list
and also occupancy metrics and the activity feed; the activity feed in
turn depends on nearly every entity type. `dependents_of()` exposes the
reverse direction so the table can be enumerated and tested.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from pysteady.models import CacheKey

logger = logging.getLogger(__name__)

__all__ = ["InstanceKey", "InvalidationGraph", "InvalidationRule"]


@dataclass(frozen=True)
class InstanceKey:
    """
    Template for a key scoped to one entity instance.

    Without `by`, the id becomes the key's instance component:
        InstanceKey("/api/residents").render(42) -> /api/residents/42
    With `by`, the id becomes a filter on a related collection:
        InstanceKey("/api/support-plans", by="residentId").render(42)
            -> /api/support-plans?residentId=42
    """

    resource: str
    by: str | None = None

    def render(self, entity_id: int | str) -> CacheKey:
        if self.by is None:
            return CacheKey(self.resource, instance=entity_id)
        return CacheKey(self.resource, filters=((self.by, entity_id),))


@dataclass(frozen=True)
class InvalidationRule:
    """
    Cache keys that depend on one entity type.

    Attributes:
        entity_type: Tag used by operations (e.g. "resident")
        collections: Resources staled by any mutation of the type
        instances: Keys staled only when the mutated id is known
    """

    entity_type: str
    collections: tuple[str, ...]
    instances: tuple[InstanceKey, ...] = ()

    def __post_init__(self) -> None:
        if not self.entity_type:
            raise ValueError("InvalidationRule entity_type must not be empty")
        if not self.collections:
            raise ValueError(f"InvalidationRule for {self.entity_type!r} names no collections")

    def keys_for(self, entity_id: int | str | None = None) -> frozenset[CacheKey]:
        keys = {CacheKey(resource) for resource in self.collections}
        if entity_id is not None:
            keys.update(template.render(entity_id) for template in self.instances)
        return frozenset(keys)

    @property
    def resources(self) -> frozenset[str]:
        """Every resource this rule can touch."""
        return frozenset(self.collections) | {template.resource for template in self.instances}


class InvalidationGraph:
    """
    Static map from mutated entity types to stale cache keys.

    Usage:
        ```python
        graph = InvalidationGraph.default()
        keys = graph.invalidate("resident", 42)
        await cache.mark_stale(keys)
        ```
    """

    def __init__(self, rules: Iterable[InvalidationRule]):
        """
        Args:
            rules: One rule per entity type

        Raises:
            ValueError: If two rules name the same entity type
        """
        self._rules: dict[str, InvalidationRule] = {}
        for rule in rules:
            if rule.entity_type in self._rules:
                raise ValueError(f"Duplicate invalidation rule for {rule.entity_type!r}")
            self._rules[rule.entity_type] = rule

        self._dependents: dict[str, set[str]] = {}
        for rule in self._rules.values():
            for resource in rule.resources:
                self._dependents.setdefault(resource, set()).add(rule.entity_type)

    @classmethod
    def default(cls) -> InvalidationGraph:
        """Graph built from the application's rule table."""
        from pysteady.invalidation.rules import DEFAULT_RULES

        return cls(DEFAULT_RULES)

    def invalidate(self, entity_type: str, entity_id: int | str | None = None) -> frozenset[CacheKey]:
        """
        Compute the cache keys made stale by mutating an entity.

        Args:
            entity_type: Tag of the mutated entity
            entity_id: Id of the mutated instance, if known

        Returns:
            Collection keys, plus instance-scoped keys when entity_id is
            given. Empty for unknown entity types.
        """
        rule = self._rules.get(entity_type)
        if rule is None:
            logger.warning(f"No invalidation rule for entity type {entity_type!r}")
            return frozenset()
        return rule.keys_for(entity_id)

    def rule_for(self, entity_type: str) -> InvalidationRule | None:
        return self._rules.get(entity_type)

    def entity_types(self) -> list[str]:
        return sorted(self._rules)

    def resources(self) -> list[str]:
        return sorted(self._dependents)

    def dependents_of(self, resource: str) -> frozenset[str]:
        """Entity types whose mutation stales the given resource."""
        return frozenset(self._dependents.get(resource, ()))

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"InvalidationGraph(entity_types={self.entity_types()})"
