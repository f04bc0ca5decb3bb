"""In-memory storage implementations for pysteady.

Design Pattern: Adapter Pattern
InMemoryReadCache adapts a dictionary to the ReadCache interface and adds
the reactive behavior of a frontend query cache: subscribers hear about
staleness, and stale keys that somebody is watching refetch in the
background. InMemoryQueueJournal is the non-durable journal for tests.

Instances are immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pysteady.models import CacheKey, Operation
from pysteady.storage.base import QueueJournal, ReadCache

logger = logging.getLogger(__name__)

__all__ = ["CacheEvent", "InMemoryQueueJournal", "InMemoryReadCache"]

CacheListener = Callable[["CacheEvent"], None]


@dataclass(frozen=True)
class CacheEvent:
    """Notification sent to cache subscribers.

    Attributes:
        key: The affected key
        action: "updated" or "stale"
    """

    key: CacheKey
    action: str


@dataclass
class _Entry:
    value: Any
    stale: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryReadCache(ReadCache):
    """Reactive in-process read cache.

    Usage:
        cache = InMemoryReadCache()
        cache.register_fetcher(CacheKey("/api/residents"), lambda key: client.get_data(key))
        unsubscribe = cache.subscribe(CacheKey("/api/residents"), on_event)
        await cache.set(CacheKey("/api/residents"), residents)
    """

    def __init__(self, refetch_active: bool = True):
        """
        Args:
            refetch_active: When keys go stale, refetch the ones that have
                a subscriber and a fetcher in background tasks
        """
        super().__init__()
        self._entries: dict[CacheKey, _Entry] = {}
        self._listeners: list[tuple[CacheKey, CacheListener]] = []
        self._refetch_active = refetch_active
        self._background: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"InMemoryReadCache(entries={len(self._entries)})"

    async def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    async def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = _Entry(value=value)
        self._emit(CacheEvent(key, "updated"))

    async def keys(self) -> list[CacheKey]:
        return list(self._entries)

    async def clear(self) -> None:
        self._entries.clear()

    async def mark_stale(self, patterns: Iterable[CacheKey]) -> set[CacheKey]:
        patterns = list(patterns)
        marked: set[CacheKey] = set()
        for key, entry in self._entries.items():
            if any(pattern.matches(key) for pattern in patterns):
                entry.stale = True
                marked.add(key)

        for key in marked:
            self._emit(CacheEvent(key, "stale"))

        if self._refetch_active:
            active = [key for key in marked if self._is_watched(key) and self.fetcher_for(key)]
            if active:
                task = asyncio.get_running_loop().create_task(self.refetch(active))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
        return marked

    async def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.stale

    async def settle(self) -> None:
        """Wait for background refetches started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(self, pattern: CacheKey, listener: CacheListener) -> Callable[[], None]:
        """Hear about updates and staleness of keys matching pattern.

        Returns:
            A function that removes the subscription
        """
        subscription = (pattern, listener)
        self._listeners.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._listeners:
                self._listeners.remove(subscription)

        return unsubscribe

    def _is_watched(self, key: CacheKey) -> bool:
        return any(pattern.matches(key) for pattern, _ in self._listeners)

    def _emit(self, event: CacheEvent) -> None:
        for pattern, listener in list(self._listeners):
            if pattern.matches(event.key):
                listener(event)


class InMemoryQueueJournal(QueueJournal):
    """Non-durable journal; keeps insertion order in a dict."""

    def __init__(self) -> None:
        self._operations: dict[str, dict[str, Any]] = {}

    def __repr__(self) -> str:
        return f"InMemoryQueueJournal(entries={len(self._operations)})"

    async def append(self, operation: Operation) -> None:
        self._operations[operation.id] = operation.to_dict()

    async def remove(self, operation_id: str) -> None:
        self._operations.pop(operation_id, None)

    async def load(self) -> list[Operation]:
        return [Operation.from_dict(data) for data in self._operations.values()]

    async def clear(self) -> None:
        self._operations.clear()
