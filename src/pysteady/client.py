"""
ResilientClient: the application-facing facade of the data-access layer.

Design Pattern: Façade Pattern
    Application code issues Operations (or calls get/post/...) and gets
    back an OperationResult or a typed DataAccessError. Transport,
    retries, offline queueing, session refresh and cache invalidation are
    assembled here once and hidden behind that one call.

A client is constructed once per process. It owns the shared state
(connectivity flag, session, offline queue) and must be closed with
`aclose()` or used as an async context manager.

Example:
    ```python
    config = ClientConfig.from_env()
    async with ResilientClient(config, session=Session("token", "refresh")) as client:
        residents = await client.get("/api/residents")

        created = await client.post(
            "/api/residents",
            body={"firstName": "Sam"},
            entity_type="resident",
        )
        print(created.invalidated)  # cache keys now stale
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

import httpx

from pysteady.core.cancellation import CancellationToken
from pysteady.core.config import ClientConfig
from pysteady.core.errors import SessionExpired
from pysteady.executor.backoff import BackoffEngine
from pysteady.executor.connectivity import Connectivity
from pysteady.executor.offline import OfflineQueue
from pysteady.executor.outcome import OperationResult
from pysteady.executor.pipeline import Pipeline, TransitionHook
from pysteady.executor.session import (
    CredentialRefresher,
    HttpCredentialRefresher,
    SessionManager,
)
from pysteady.executor.transport import Transport
from pysteady.invalidation import DASHBOARD_RESOURCES, InvalidationGraph
from pysteady.models import CacheKey, HttpMethod, Operation, Session
from pysteady.storage.base import QueueJournal, ReadCache

logger = logging.getLogger(__name__)

__all__ = ["ChangeEvent", "ChangeListener", "ResilientClient"]

_ACTIONS = {
    HttpMethod.POST: "created",
    HttpMethod.PUT: "updated",
    HttpMethod.PATCH: "updated",
    HttpMethod.DELETE: "deleted",
}


@dataclass(frozen=True)
class ChangeEvent:
    """
    Notification that an entity changed and which cached reads went stale.

    Attributes:
        entity_type: Tag of the changed entity
        action: "created", "updated", "deleted" or a caller-supplied verb
        entity_id: Changed instance, when known
        keys: Cache keys computed by the invalidation graph
        remote: True when the change was pushed by another client
        timestamp: When the change was applied locally
    """

    entity_type: str
    action: str
    entity_id: int | str | None = None
    keys: frozenset[CacheKey] = frozenset()
    remote: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


ChangeListener = Callable[[ChangeEvent], Awaitable[None] | None]


class ResilientClient:
    """
    Turns unreliable network calls into dependable operations.

    Every collaborator can be injected for testing; anything omitted is
    built from the ClientConfig.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        session: Session | None = None,
        refresher: CredentialRefresher | None = None,
        on_session_expired: Callable[[SessionExpired], Any] | None = None,
        cache: ReadCache | None = None,
        graph: InvalidationGraph | None = None,
        journal: QueueJournal | None = None,
        connectivity: Connectivity | None = None,
        http_client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_transition: TransitionHook | None = None,
    ):
        """
        Args:
            config: Global defaults (ClientConfig() if omitted)
            session: Credential to start with, if already logged in
            refresher: Credential refresh strategy; defaults to the
                backend's refresh endpoint unless config.refresh_path is None
            on_session_expired: Called once per failed refresh
            cache: Read cache told about staleness after writes
            graph: Invalidation rules (the application's table if omitted)
            journal: Durable record of queued writes
            connectivity: Shared online flag
            http_client: Pre-built httpx client (not closed by the client)
            rng: Random source for backoff jitter
            sleep: Backoff wait coroutine
            on_transition: Observer of operation state changes
        """
        self.config = config or ClientConfig()
        self.connectivity = connectivity or Connectivity()
        self.cache = cache
        self.graph = graph or InvalidationGraph.default()
        self.transport = Transport(self.config.base_url, self.config.timeout, http_client)

        self._owned_refresher: HttpCredentialRefresher | None = None
        if refresher is None and self.config.refresh_path is not None:
            self._owned_refresher = HttpCredentialRefresher(
                f"{self.transport.base_url}{self.config.refresh_path}",
                http_client=http_client,
            )
            refresher = self._owned_refresher

        self.sessions = SessionManager(refresher, session=session, on_expired=on_session_expired)
        self.queue = OfflineQueue(self.connectivity, journal=journal)
        self.pipeline = Pipeline(
            self.transport,
            BackoffEngine(self.config.retry_policy, rng=rng, sleep=sleep),
            self.sessions,
            self.connectivity,
            self.queue,
            self.config,
            on_transition=on_transition,
        )
        self.queue.bind(self._replay)
        self._listeners: list[ChangeListener] = []

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the offline queue and release HTTP resources.

        Callers still waiting on queued writes are rejected with Cancelled.
        The writes stay in the journal (if any) for the next run.
        """
        await self.queue.close()
        await self.transport.aclose()
        if self._owned_refresher is not None:
            await self._owned_refresher.aclose()

    # =========================================================================
    # Operations
    # =========================================================================

    async def execute(
        self,
        operation: Operation,
        token: CancellationToken | None = None,
    ) -> OperationResult:
        """
        Run an operation to exactly one outcome.

        Successful writes tagged with an entity_type invalidate their
        dependent cache keys before this returns.

        Raises:
            DataAccessError: The typed failure the operation ended with
        """
        result = await self.pipeline.run(operation, token)
        if result.replayed_from_queue:
            # Invalidation already ran when the queue replayed the write
            return result
        return await self._after_write(result)

    async def get(self, target: str, *, token: CancellationToken | None = None, **kwargs: Any) -> OperationResult:
        return await self.execute(Operation.get(target, **kwargs), token)

    async def post(
        self, target: str, body: Any = None, *, token: CancellationToken | None = None, **kwargs: Any
    ) -> OperationResult:
        return await self.execute(Operation.post(target, body, **kwargs), token)

    async def put(
        self, target: str, body: Any = None, *, token: CancellationToken | None = None, **kwargs: Any
    ) -> OperationResult:
        return await self.execute(Operation.put(target, body, **kwargs), token)

    async def patch(
        self, target: str, body: Any = None, *, token: CancellationToken | None = None, **kwargs: Any
    ) -> OperationResult:
        return await self.execute(Operation.patch(target, body, **kwargs), token)

    async def delete(self, target: str, *, token: CancellationToken | None = None, **kwargs: Any) -> OperationResult:
        return await self.execute(Operation.delete(target, **kwargs), token)

    async def _replay(self, operation: Operation) -> OperationResult:
        result = await self.pipeline.replay(operation)
        return await self._after_write(result)

    async def _after_write(self, result: OperationResult) -> OperationResult:
        operation = result.operation
        if not operation.mutating or operation.entity_type is None:
            return result
        keys = await self.invalidate_related(
            operation.entity_type,
            operation.entity_id,
            action=_ACTIONS.get(operation.method, "updated"),
        )
        return replace(result, invalidated=keys)

    # =========================================================================
    # Invalidation and change notifications
    # =========================================================================

    async def invalidate_related(
        self,
        entity_type: str,
        entity_id: int | str | None = None,
        *,
        action: str = "updated",
        remote: bool = False,
    ) -> frozenset[CacheKey]:
        """
        Mark every cached read depending on an entity as stale.

        Returns:
            The keys computed by the invalidation graph
        """
        keys = self.graph.invalidate(entity_type, entity_id)
        if not keys:
            return keys

        if self.cache is not None:
            # The write already committed; a cache failure must not turn it into an error
            try:
                marked = await self.cache.mark_stale(keys)
            except Exception as e:
                logger.error(f"Failed to mark cache stale for {entity_type} {entity_id}: {e!r}")
            else:
                logger.info(f"Invalidated {entity_type} {entity_id}: {len(marked)} cached entries stale")
        else:
            logger.debug(f"Invalidated {entity_type} {entity_id}: no read cache attached")

        await self._notify(
            ChangeEvent(
                entity_type=entity_type,
                action=action,
                entity_id=entity_id,
                keys=keys,
                remote=remote,
            )
        )
        return keys

    async def apply_remote_change(
        self,
        entity_type: str,
        entity_id: int | str | None = None,
        action: str = "updated",
    ) -> frozenset[CacheKey]:
        """Invalidate for a change another client made (realtime push)."""
        return await self.invalidate_related(entity_type, entity_id, action=action, remote=True)

    async def refresh_dashboard(self) -> frozenset[CacheKey]:
        """Mark the dashboard metrics and activity feed stale."""
        keys = frozenset(CacheKey(resource) for resource in DASHBOARD_RESOURCES)
        if self.cache is not None:
            await self.cache.mark_stale(keys)
        return keys

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Subscribe to ChangeEvents. Listener may be async.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change listener failed for {event.entity_type}: {e}")

    # =========================================================================
    # Session and connectivity
    # =========================================================================

    def set_session(self, session: Session) -> Session:
        """Install a credential obtained by logging in."""
        return self.sessions.set_session(session)

    def clear_session(self) -> None:
        self.sessions.clear()

    def set_online(self, online: bool) -> None:
        """Forward a platform connectivity signal."""
        self.connectivity.set_online(online)

    @property
    def is_offline(self) -> bool:
        return self.connectivity.offline

    @property
    def queue_length(self) -> int:
        """Writes waiting for connectivity."""
        return len(self.queue)

    async def recover_queue(self) -> list[asyncio.Future[OperationResult]]:
        """Re-enqueue writes journaled by a previous run."""
        return await self.queue.recover()

    def __repr__(self) -> str:
        return (
            f"ResilientClient(base_url={self.transport.base_url!r}, "
            f"online={self.connectivity.online}, queued={len(self.queue)})"
        )
