"""Per-operation state machine tying the executor components together.

States (OperationState):

    CREATED -> SENDING -> SUCCEEDED
                  |  ^
                  v  |
               BACKOFF            (retryable failure, budget left)
                  |
                  v
               FAILED             (terminal failure or budget exhausted)

Two interrupts are available from SENDING and from a retryable failure:

- QUEUED: a write issued (or failing transiently) while disconnected is
  parked in the OfflineQueue and continues from SENDING on reconnection.
- REFRESHING_SESSION: a 401 obtains a fresh credential through the
  SessionManager and replays the operation. At most once per operation;
  the replay does not consume retry budget.

Design Pattern: Template Method
    The loop is fixed; transport, backoff, session and queue decisions are
    delegated to the injected collaborators.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from pysteady.core.cancellation import CancellationToken
from pysteady.core.config import ClientConfig
from pysteady.core.errors import (
    Cancelled,
    ClientError,
    DataAccessError,
    OperationTimeout,
    SessionExpired,
    TransientServerError,
)
from pysteady.executor.backoff import BackoffEngine
from pysteady.executor.connectivity import Connectivity
from pysteady.executor.offline import OfflineQueue, _Requeue
from pysteady.executor.outcome import (
    OperationResult,
    Outcome,
    RetryableFailure,
    Success,
    TerminalFailure,
)
from pysteady.executor.session import SessionManager
from pysteady.executor.transport import Transport
from pysteady.models import Attempt, AttemptHistory, Operation, OperationState

logger = logging.getLogger(__name__)

__all__ = ["Pipeline", "unwrap_envelope"]

TransitionHook = Callable[[Operation, OperationState], None]


class Pipeline:
    """
    Runs Operations to exactly one terminal outcome.

    Usage:
        ```python
        pipeline = Pipeline(transport, backoff, sessions, connectivity, queue, config)
        result = await pipeline.run(Operation.get("/api/residents"))
        ```
    """

    def __init__(
        self,
        transport: Transport,
        backoff: BackoffEngine,
        sessions: SessionManager,
        connectivity: Connectivity,
        queue: OfflineQueue | None = None,
        config: ClientConfig | None = None,
        on_transition: TransitionHook | None = None,
    ):
        """
        Args:
            transport: Performs single attempts
            backoff: Retry decisions and waits
            sessions: Credential owner and refresh single-flight
            connectivity: Online flag consulted before sending writes
            queue: Where writes go while offline (None disables diverting)
            config: Envelope and offline-queue switches
            on_transition: Observer called on every state change
        """
        self.transport = transport
        self.backoff = backoff
        self.sessions = sessions
        self.connectivity = connectivity
        self.queue = queue
        self.config = config or ClientConfig()
        self._on_transition = on_transition

    async def run(
        self,
        operation: Operation,
        token: CancellationToken | None = None,
    ) -> OperationResult:
        """
        Resolve an operation issued by application code.

        Writes issued while offline wait in the queue; the returned
        coroutine simply completes later.

        Raises:
            DataAccessError: The typed failure the operation ended with
        """
        self._enter(operation, OperationState.CREATED)
        if self._should_divert(operation):
            return await self._divert(operation, token)
        return await self._execute(operation, token, from_queue=False)

    async def replay(self, operation: Operation) -> OperationResult:
        """Resolve a write taken from the offline queue.

        Raises _Requeue instead of diverting again if connectivity drops.
        """
        return await self._execute(operation, None, from_queue=True)

    # =========================================================================
    # State machine
    # =========================================================================

    async def _execute(
        self,
        operation: Operation,
        token: CancellationToken | None,
        from_queue: bool,
    ) -> OperationResult:
        history = AttemptHistory()
        budget = operation.retry_budget(self.backoff.max_retries)
        retries = 0
        auth_replay = False

        while True:
            session = self.sessions.current
            generation = self.sessions.generation

            self._enter(operation, OperationState.SENDING)
            started = time.monotonic()
            outcome = await self.transport.execute(operation, session=session, token=token)
            history.record(_attempt(history.next_index, started, outcome, auth_replay))

            match outcome:
                case Success():
                    try:
                        data = unwrap_envelope(outcome, self.config.unwrap_envelope)
                    except ClientError as e:
                        self._enter(operation, OperationState.FAILED)
                        raise e.with_context(operation, history.snapshot())
                    self._enter(operation, OperationState.SUCCEEDED)
                    return OperationResult(
                        operation=operation,
                        data=data,
                        status_code=outcome.status_code,
                        headers=outcome.headers,
                        attempts=history.snapshot(),
                        replayed_from_queue=from_queue,
                    )

                case TerminalFailure(auth_expired=True) if not auth_replay:
                    self._enter(operation, OperationState.REFRESHING_SESSION)
                    await self._refresh(operation, generation, history)
                    auth_replay = True
                    continue

                case TerminalFailure():
                    self._enter(operation, OperationState.FAILED)
                    raise self._terminal_error(operation, outcome, history)

                case RetryableFailure():
                    if operation.mutating and self.connectivity.offline:
                        if from_queue:
                            raise _Requeue()
                        if self._should_divert(operation):
                            logger.info(f"{operation} failed while offline: {outcome.reason}")
                            return await self._divert(operation, token)

                    if not self.backoff.should_retry(retries, budget, outcome):
                        self._enter(operation, OperationState.FAILED)
                        raise self._exhausted_error(operation, outcome, history)

                    logger.warning(
                        f"{operation} attempt {history.next_index} failed ({outcome.reason}); "
                        f"retry {retries + 1}/{budget}"
                    )
                    self._enter(operation, OperationState.BACKOFF)
                    await self._wait(operation, retries, token, history)
                    retries += 1

    async def _refresh(
        self,
        operation: Operation,
        generation: int,
        history: AttemptHistory,
    ) -> None:
        try:
            await self.sessions.refresh(stale_generation=generation)
        except SessionExpired as e:
            self._enter(operation, OperationState.FAILED)
            # One SessionExpired is shared by every waiter of the refresh
            raise SessionExpired(
                e.message,
                operation=operation,
                attempts=history.snapshot(),
                status_code=401,
            ) from e

    async def _wait(
        self,
        operation: Operation,
        retry: int,
        token: CancellationToken | None,
        history: AttemptHistory,
    ) -> None:
        if token is None:
            await self.backoff.wait(retry)
            return

        if token.cancelled:
            raise Cancelled(token.reason or "cancelled", operation=operation, attempts=history.snapshot())

        sleeper = asyncio.ensure_future(self.backoff.wait(retry))
        unregister = token.register(sleeper.cancel)
        try:
            await sleeper
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if token.cancelled and (current is None or not current.cancelling()):
                self._enter(operation, OperationState.FAILED)
                raise Cancelled(
                    token.reason or "cancelled",
                    operation=operation,
                    attempts=history.snapshot(),
                ) from None
            raise
        finally:
            unregister()
            if not sleeper.done():
                sleeper.cancel()

    # =========================================================================
    # Offline diversion
    # =========================================================================

    def _should_divert(self, operation: Operation) -> bool:
        return (
            operation.mutating
            and self.queue is not None
            and self.config.queue_writes_offline
            and self.connectivity.offline
        )

    async def _divert(
        self,
        operation: Operation,
        token: CancellationToken | None,
    ) -> OperationResult:
        self._enter(operation, OperationState.QUEUED)
        future = await self.queue.enqueue(operation)
        if token is None:
            return await future

        def reject() -> None:
            if not future.done():
                future.set_exception(Cancelled(token.reason or "cancelled", operation=operation))

        unregister = token.register(reject)
        try:
            return await future
        finally:
            unregister()

    # =========================================================================
    # Error mapping
    # =========================================================================

    @staticmethod
    def _terminal_error(
        operation: Operation,
        outcome: TerminalFailure,
        history: AttemptHistory,
    ) -> DataAccessError:
        attempts = history.snapshot()
        if outcome.cancelled:
            return Cancelled(outcome.reason, operation=operation, attempts=attempts)
        if outcome.auth_expired:
            return SessionExpired(
                "Session expired again after refresh",
                operation=operation,
                attempts=attempts,
                status_code=outcome.status_code,
            )
        return ClientError(
            outcome.reason,
            operation=operation,
            attempts=attempts,
            status_code=outcome.status_code,
            detail=outcome.detail,
        )

    def _exhausted_error(
        self,
        operation: Operation,
        outcome: RetryableFailure,
        history: AttemptHistory,
    ) -> DataAccessError:
        attempts = history.snapshot()
        logger.warning(f"{operation} gave up after {len(attempts)} attempts: {outcome.reason}")
        if outcome.timed_out:
            return OperationTimeout(
                outcome.reason,
                timeout=operation.timeout or self.transport.timeout,
                operation=operation,
                attempts=attempts,
            )
        return TransientServerError(
            outcome.reason,
            operation=operation,
            attempts=attempts,
            status_code=outcome.status_code,
        )

    def _enter(self, operation: Operation, state: OperationState) -> None:
        logger.debug(f"{operation} [{operation.id}] -> {state.name}")
        if self._on_transition is not None:
            self._on_transition(operation, state)

    def __repr__(self) -> str:
        return f"Pipeline(transport={self.transport!r}, backoff={self.backoff!r})"


def unwrap_envelope(outcome: Success, enabled: bool = True) -> Any:
    """
    Extract the payload from a `{"success", "data", "error"}` envelope.

    Bodies without a boolean `success` field are returned unchanged.

    Raises:
        ClientError: If the envelope reports `success: false`
    """
    data = outcome.data
    if not enabled or not isinstance(data, dict) or not isinstance(data.get("success"), bool):
        return data
    if not data["success"]:
        message = data.get("error") or data.get("message") or "Request failed"
        raise ClientError(str(message), status_code=outcome.status_code, detail=data)
    return data.get("data")


def _attempt(index: int, started: float, outcome: Outcome, auth_replay: bool) -> Attempt:
    error = None
    if isinstance(outcome, (RetryableFailure, TerminalFailure)) and outcome.status_code is None:
        error = outcome.reason
    return Attempt(
        index=index,
        started_at=started,
        duration=time.monotonic() - started,
        kind=outcome.kind,
        status_code=outcome.status_code,
        error=error,
        auth_replay=auth_replay,
    )
