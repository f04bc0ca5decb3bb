"""Storage backends for cached reads and the offline queue journal.

Provides multiple implementations behind common interfaces:
    - ReadCache: Abstract read-cache collaborator
    - InMemoryReadCache: Reactive in-process cache
    - RedisReadCache: Redis-backed cache shared across processes
    - QueueJournal: Abstract durable record of queued writes
    - InMemoryQueueJournal: Non-durable journal for testing
    - SqliteQueueJournal: SQLite-backed journal

Design: Adapter Pattern + Dependency Inversion (SOLID)
    Clients depend on the abstractions, enabling easy swapping between
    backends.
"""

from pysteady.storage.base import Fetcher, QueueJournal, ReadCache, StorageError
from pysteady.storage.memory import CacheEvent, InMemoryQueueJournal, InMemoryReadCache

# Lazy imports so optional backends load their drivers only when used


def __getattr__(name: str):
    """Lazy import backends that need third-party drivers."""
    if name == "RedisReadCache":
        from pysteady.storage.redis import RedisReadCache

        return RedisReadCache
    elif name == "SqliteQueueJournal":
        from pysteady.storage.sqlite import SqliteQueueJournal

        return SqliteQueueJournal
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "CacheEvent",
    "Fetcher",
    "InMemoryQueueJournal",
    "InMemoryReadCache",
    "QueueJournal",
    "ReadCache",
    "RedisReadCache",
    "SqliteQueueJournal",
    "StorageError",
]
