"""SQLite-backed offline queue journal for pysteady.

Design Pattern: Adapter Pattern
SqliteQueueJournal adapts a SQLite database to the QueueJournal interface
so writes queued while offline survive an application restart.

Implementation details:
- aiosqlite for async operations
- WAL mode so the UI process can read while the queue writes
- AUTOINCREMENT sequence column preserves FIFO order across restarts
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from pysteady.models import Operation
from pysteady.storage.base import QueueJournal, StorageError


class SqliteQueueJournal(QueueJournal):
    """SQLite-backed durable journal.

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        journal = SqliteQueueJournal("offline-queue.db")
        await journal.connect()
        try:
            queue = OfflineQueue(connectivity, journal=journal)
            await queue.recover()
        finally:
            await journal.close()
    """

    def __init__(self, db_path: str):
        """Initialize the journal (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteQueueJournal:
        """
        Create an in-memory journal for testing.

        Returns:
            Connected in-memory journal
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        """Return string representation of journal instance."""
        if self.db_path == ":memory:":
            return "SqliteQueueJournal(in-memory)"
        return f"SqliteQueueJournal({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA busy_timeout=5000")
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS queued_writes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                payload TEXT NOT NULL,
                enqueued_at TEXT NOT NULL
            )
        """)
        await self._connection.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StorageError("SqliteQueueJournal is not connected. Call connect() first.")
        return self._connection

    async def append(self, operation: Operation) -> None:
        connection = self._require_connection()
        try:
            payload = json.dumps(operation.to_dict())
        except TypeError as e:
            raise StorageError(f"Operation {operation} is not JSON-serializable: {e}") from e

        async with self._lock:
            await connection.execute(
                "INSERT OR IGNORE INTO queued_writes (id, payload, enqueued_at) VALUES (?, ?, ?)",
                (operation.id, payload, datetime.now(UTC).isoformat()),
            )
            await connection.commit()

    async def remove(self, operation_id: str) -> None:
        connection = self._require_connection()
        async with self._lock:
            await connection.execute("DELETE FROM queued_writes WHERE id = ?", (operation_id,))
            await connection.commit()

    async def load(self) -> list[Operation]:
        connection = self._require_connection()
        async with self._lock:
            cursor = await connection.execute("SELECT payload FROM queued_writes ORDER BY seq")
            rows = await cursor.fetchall()
            await cursor.close()
        return [Operation.from_dict(json.loads(row[0])) for row in rows]

    async def clear(self) -> None:
        connection = self._require_connection()
        async with self._lock:
            await connection.execute("DELETE FROM queued_writes")
            await connection.commit()
