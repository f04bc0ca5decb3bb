"""
Storage interfaces for the data-access layer.

Design Pattern: Adapter Pattern
Two target interfaces that concrete backends adapt to:

- ReadCache: the reactive read-cache collaborator. The layer only ever
  tells it which keys are stale; it never reads cached values itself.
- QueueJournal: durable record of writes waiting in the offline queue.

Design Principle: Dependency Inversion (SOLID)
The client and offline queue depend on these abstractions, not on Redis,
SQLite or in-memory implementations. Tests use the in-memory adapters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pysteady.models import CacheKey, Operation

logger = logging.getLogger(__name__)

__all__ = ["Fetcher", "QueueJournal", "ReadCache", "StorageError"]

Fetcher = Callable[[CacheKey], Awaitable[Any]]
"""Loads the current value for a cache key (usually via client.get)."""


class StorageError(Exception):
    """
    Storage operation failed.

    Custom exception with context, not generic Exception.
    """

    pass


class ReadCache(ABC):
    """
    Abstract read-cache collaborator.

    Keys are CacheKey values; patterns use CacheKey.matches() prefix
    semantics, so marking the collection key stale also stales every
    instance and filtered key of that resource.

    Fetchers are registered per pattern and are what `refetch()` uses to
    reload stale entries. The most specific registered pattern wins.
    """

    def __init__(self) -> None:
        self._fetchers: list[tuple[CacheKey, Fetcher]] = []

    # ========================================================================
    # Values
    # ========================================================================

    @abstractmethod
    async def get(self, key: CacheKey) -> Any | None:
        """Return the cached value (stale or not), or None on a miss."""
        pass

    @abstractmethod
    async def set(self, key: CacheKey, value: Any) -> None:
        """Store a fresh value, clearing any stale mark on the key."""
        pass

    @abstractmethod
    async def keys(self) -> list[CacheKey]:
        """Every key currently holding a value."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry and stale mark."""
        pass

    # ========================================================================
    # Staleness
    # ========================================================================

    @abstractmethod
    async def mark_stale(self, patterns: Iterable[CacheKey]) -> set[CacheKey]:
        """
        Mark every cached key matching any pattern as stale.

        Args:
            patterns: Keys or key prefixes to invalidate

        Returns:
            The cached keys that were marked
        """
        pass

    @abstractmethod
    async def is_stale(self, key: CacheKey) -> bool:
        """Whether the key is marked stale (False for a miss)."""
        pass

    async def refetch(self, patterns: Iterable[CacheKey]) -> set[CacheKey]:
        """
        Reload stale keys matching the patterns through their fetchers.

        Keys with no registered fetcher stay stale. A failing fetcher
        leaves its key stale and is logged; the other keys still refetch.

        Returns:
            Keys that were successfully reloaded
        """
        patterns = list(patterns)
        reloaded: set[CacheKey] = set()
        for key in await self.keys():
            if not any(pattern.matches(key) for pattern in patterns):
                continue
            if not await self.is_stale(key):
                continue
            fetcher = self.fetcher_for(key)
            if fetcher is None:
                continue
            try:
                value = await fetcher(key)
            except Exception as e:
                logger.warning(f"Refetch of {key} failed: {e}")
                continue
            await self.set(key, value)
            reloaded.add(key)
        return reloaded

    # ========================================================================
    # Fetcher registry
    # ========================================================================

    def register_fetcher(self, pattern: CacheKey, fetcher: Fetcher) -> None:
        """Use fetcher to reload keys matching pattern."""
        self._fetchers.append((pattern, fetcher))

    def fetcher_for(self, key: CacheKey) -> Fetcher | None:
        """Most specific registered fetcher for key, if any."""
        best: tuple[int, Fetcher] | None = None
        for pattern, fetcher in self._fetchers:
            if not pattern.matches(key):
                continue
            specificity = (pattern.instance is not None) + len(pattern.filters)
            if best is None or specificity > best[0]:
                best = (specificity, fetcher)
        return best[1] if best else None


class QueueJournal(ABC):
    """
    Durable record of writes waiting in the offline queue.

    Entries are returned by load() in the order they were appended.
    """

    @abstractmethod
    async def append(self, operation: Operation) -> None:
        """Persist a newly queued write."""
        pass

    @abstractmethod
    async def remove(self, operation_id: str) -> None:
        """Forget a write that reached a terminal outcome. Missing ids are ignored."""
        pass

    @abstractmethod
    async def load(self) -> list[Operation]:
        """Every persisted write, oldest first."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Forget every write."""
        pass
