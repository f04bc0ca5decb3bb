"""
pysteady: resilient client-side data access for Python.

Turns unreliable HTTP calls into dependable application-level
operations: transient failures are retried with jittered backoff, writes
issued offline are queued and replayed in order, expired sessions are
refreshed once for any number of concurrent callers, and successful
writes tell the read cache which results went stale.

Design Pattern: Façade Pattern
This module re-exports the types application code needs, hiding the
executor and storage layering.

Example:
    ```python
    import asyncio
    from pysteady import ClientConfig, InMemoryReadCache, ResilientClient, Session

    async def main():
        cache = InMemoryReadCache()
        async with ResilientClient(ClientConfig.from_env(), cache=cache) as client:
            client.set_session(Session("access-token", refresh_token="refresh-token"))

            result = await client.get("/api/residents")
            print(result.data, result.attempt_count)

            await client.post("/api/incidents", body={...}, entity_type="incident")

    asyncio.run(main())
    ```
"""

from pysteady.client import ChangeEvent, ResilientClient
from pysteady.core import (
    CURRENT_CLIENT,
    CancellationToken,
    Cancelled,
    ClientConfig,
    ClientError,
    DataAccessError,
    OperationTimeout,
    QueueReplayFailure,
    SessionExpired,
    TransientServerError,
    bind_client,
    get_current_client,
    use_client,
)
from pysteady.executor import (
    BackoffEngine,
    Connectivity,
    CredentialRefresher,
    HttpCredentialRefresher,
    OfflineQueue,
    OperationResult,
    Pipeline,
    SessionManager,
    Transport,
)
from pysteady.invalidation import DEFAULT_RULES, InstanceKey, InvalidationGraph, InvalidationRule
from pysteady.models import (
    Attempt,
    CacheKey,
    HttpMethod,
    Operation,
    OperationState,
    OutcomeKind,
    RetryPolicy,
    Session,
)
from pysteady.storage import (
    InMemoryQueueJournal,
    InMemoryReadCache,
    QueueJournal,
    ReadCache,
)

__version__ = "0.1.0"

__all__ = [
    # Facade
    "ResilientClient",
    "ChangeEvent",
    "ClientConfig",
    # Models
    "Operation",
    "HttpMethod",
    "Attempt",
    "OperationState",
    "OutcomeKind",
    "OperationResult",
    "RetryPolicy",
    "Session",
    "CacheKey",
    # Errors
    "DataAccessError",
    "OperationTimeout",
    "TransientServerError",
    "ClientError",
    "SessionExpired",
    "Cancelled",
    "QueueReplayFailure",
    # Execution
    "Transport",
    "BackoffEngine",
    "Connectivity",
    "OfflineQueue",
    "SessionManager",
    "CredentialRefresher",
    "HttpCredentialRefresher",
    "Pipeline",
    "CancellationToken",
    # Invalidation
    "InvalidationGraph",
    "InvalidationRule",
    "InstanceKey",
    "DEFAULT_RULES",
    # Storage
    "ReadCache",
    "QueueJournal",
    "InMemoryReadCache",
    "InMemoryQueueJournal",
    # Context
    "CURRENT_CLIENT",
    "bind_client",
    "get_current_client",
    "use_client",
]
