"""Offline queue for writes issued while disconnected.

A mutating operation issued while the connectivity flag is false never
reaches the transport. It is parked here with a pending future; the
caller simply awaits longer than usual. When connectivity returns the
queue drains strictly in submission order, one write at a time, each
through the full retry pipeline.

Ordering rules:
- No queued write is attempted before every earlier write has reached a
  terminal outcome.
- If connectivity drops mid-drain, the write in flight finishes and the
  rest stay queued for the next reconnection.
- A write that gets diverted again during its own replay goes back to
  the head of the queue, not the tail.

Optional durability: with a QueueJournal the queue survives a restart.
Recovered writes have no original caller; `recover()` returns fresh
futures for them and their outcomes are logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pysteady.core.errors import (
    Cancelled,
    DataAccessError,
    OperationTimeout,
    QueueReplayFailure,
    TransientServerError,
)
from pysteady.executor.connectivity import Connectivity
from pysteady.executor.outcome import OperationResult
from pysteady.models import Operation
from pysteady.storage.base import QueueJournal

logger = logging.getLogger(__name__)

__all__ = ["OfflineQueue", "QueuedWrite", "Replay"]

Replay = Callable[[Operation], Awaitable[OperationResult]]
"""Runs one queued operation through the pipeline."""


class _Requeue(BaseException):  # noqa: N818
    """
    Signal that a replayed write must go back to the head of the queue.

    Raised by the pipeline when connectivity drops while it is replaying a
    queued write. Like StopIteration this is control flow, not an error,
    so it inherits from BaseException and is never caught by
    `except Exception:`. Only OfflineQueue.drain() catches it.
    """


@dataclass
class QueuedWrite:
    """
    A write captured while offline.

    Attributes:
        operation: The write to replay
        future: Continuation resolved with the result or rejected
        enqueued_at: When the write was diverted
        recovered: True when loaded from the journal after a restart
    """

    operation: Operation
    future: asyncio.Future[OperationResult]
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    recovered: bool = False


class OfflineQueue:
    """
    FIFO buffer of writes, drained sequentially on reconnection.

    Usage:
        ```python
        queue = OfflineQueue(connectivity)
        queue.bind(pipeline.replay)

        future = await queue.enqueue(Operation.post("/api/residents", body=data))
        connectivity.set_online(True)   # drain starts automatically
        result = await future
        ```
    """

    def __init__(
        self,
        connectivity: Connectivity,
        replay: Replay | None = None,
        journal: QueueJournal | None = None,
    ):
        self._connectivity = connectivity
        self._replay = replay
        self._journal = journal
        self._queue: deque[QueuedWrite] = deque()
        self._drain_lock = asyncio.Lock()
        self._drain_task: asyncio.Task[int] | None = None
        self._unsubscribe = connectivity.subscribe(self._on_connectivity)

    def bind(self, replay: Replay) -> None:
        """Attach the pipeline entry point used for replays."""
        self._replay = replay

    # =========================================================================
    # Inspection
    # =========================================================================

    def __len__(self) -> int:
        return len(self._queue)

    def pending(self) -> list[Operation]:
        """Snapshot of queued operations in replay order."""
        return [item.operation for item in self._queue]

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    # =========================================================================
    # Enqueue / drain
    # =========================================================================

    async def enqueue(self, operation: Operation) -> asyncio.Future[OperationResult]:
        """
        Park a write until connectivity returns.

        Args:
            operation: A mutating operation

        Returns:
            Future resolved with the replay result or rejected with its error

        Raises:
            ValueError: If the operation is not mutating
        """
        if not operation.mutating:
            raise ValueError(f"Only writes are queued offline, got {operation}")

        future: asyncio.Future[OperationResult] = asyncio.get_running_loop().create_future()
        self._queue.append(QueuedWrite(operation=operation, future=future))
        logger.info(f"Queued offline write {operation} ({len(self._queue)} pending)")

        if self._journal is not None:
            await self._journal.append(operation)

        # Connectivity may have come back while the journal was writing
        if self._connectivity.online:
            self.schedule_drain()
        return future

    def schedule_drain(self) -> asyncio.Task[int] | None:
        """Start a background drain unless one is already running."""
        if not self._queue:
            return None
        if self._drain_task is not None and not self._drain_task.done():
            return self._drain_task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; call drain() to replay queued writes")
            return None
        self._drain_task = loop.create_task(self.drain())
        return self._drain_task

    async def drain(self) -> int:
        """
        Replay queued writes in FIFO order until empty or offline.

        Returns:
            Number of writes that reached a terminal outcome
        """
        if self._replay is None:
            raise RuntimeError("OfflineQueue has no replay function bound")

        processed = 0
        async with self._drain_lock:
            if self._queue:
                logger.info(f"Draining {len(self._queue)} queued writes")

            while self._queue and self._connectivity.online:
                item = self._queue.popleft()

                if item.future.done():
                    # Caller cancelled or was rejected while the write waited
                    logger.info(f"Dropping abandoned queued write {item.operation}")
                    await self._forget(item)
                    continue

                try:
                    result = await self._replay(item.operation)
                except _Requeue:
                    logger.info(f"Connectivity lost while replaying {item.operation}; requeued")
                    self._queue.appendleft(item)
                    break
                except asyncio.CancelledError:
                    # Drain stopped mid-replay; the write stays queued and journaled
                    logger.info(f"Drain cancelled while replaying {item.operation}; requeued")
                    self._queue.appendleft(item)
                    raise
                except DataAccessError as e:
                    error = _replay_error(e)
                    logger.error(f"Queued write {item.operation} failed: {error}")
                    _settle(item, error=error)
                except Exception as e:
                    logger.error(f"Queued write {item.operation} raised {e!r}")
                    _settle(item, error=e)
                else:
                    logger.debug(f"Queued write {item.operation} delivered")
                    _settle(item, result=result)

                await self._forget(item)
                processed += 1

            if self._queue and self._connectivity.offline:
                logger.info(f"Drain paused offline; {len(self._queue)} writes still queued")
        return processed

    async def recover(self) -> list[asyncio.Future[OperationResult]]:
        """
        Re-enqueue writes persisted by the journal before a restart.

        Recovered writes go ahead of anything queued since startup.

        Returns:
            One future per recovered write, in replay order
        """
        if self._journal is None:
            return []

        operations = await self._journal.load()
        loop = asyncio.get_running_loop()
        queued_ids = {item.operation.id for item in self._queue}
        recovered: list[QueuedWrite] = []
        for operation in operations:
            if operation.id in queued_ids:
                continue
            future: asyncio.Future[OperationResult] = loop.create_future()
            future.add_done_callback(_log_recovered_outcome(operation))
            recovered.append(QueuedWrite(operation=operation, future=future, recovered=True))

        self._queue.extendleft(reversed(recovered))
        if recovered:
            logger.info(f"Recovered {len(recovered)} journaled writes")
            if self._connectivity.online:
                self.schedule_drain()
        return [item.future for item in recovered]

    async def clear(self, reason: str = "offline queue cleared") -> int:
        """Reject every queued write with Cancelled.

        Returns:
            Number of writes rejected
        """
        count = 0
        while self._queue:
            item = self._queue.popleft()
            _settle(item, error=Cancelled(reason, operation=item.operation))
            await self._forget(item)
            count += 1
        return count

    async def close(self, reason: str = "offline queue closed") -> int:
        """Stop the drain and reject every waiting caller with Cancelled.

        Journal entries are kept, so `recover()` on the next run picks the
        writes up again.

        Returns:
            Number of callers rejected
        """
        self._unsubscribe()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass

        count = 0
        while self._queue:
            item = self._queue.popleft()
            if not item.future.done():
                _settle(item, error=Cancelled(reason, operation=item.operation))
                count += 1
        if count:
            logger.info(f"Closed offline queue; rejected {count} waiting writes")
        return count

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.schedule_drain()

    async def _forget(self, item: QueuedWrite) -> None:
        if self._journal is not None:
            await self._journal.remove(item.operation.id)

    def __repr__(self) -> str:
        return f"OfflineQueue(pending={len(self._queue)}, draining={self.is_draining})"


def _replay_error(error: DataAccessError) -> DataAccessError:
    """Budget exhaustion during drain becomes QueueReplayFailure.

    Client errors, session expiry and cancellation surface unmodified.
    """
    if isinstance(error, (TransientServerError, OperationTimeout)):
        return QueueReplayFailure(f"Queued write could not be delivered: {error.message}", cause=error)
    return error


def _settle(
    item: QueuedWrite,
    result: OperationResult | None = None,
    error: BaseException | None = None,
) -> None:
    if item.future.done():
        return
    if error is not None:
        item.future.set_exception(error)
    else:
        item.future.set_result(result)


def _log_recovered_outcome(operation: Operation):
    def callback(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Recovered write {operation} failed: {error}")
        else:
            logger.info(f"Recovered write {operation} delivered")

    return callback
