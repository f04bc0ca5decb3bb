"""
Attempt outcomes and operation results.

This module defines the Outcome union returned by the transport for a
single attempt, and the OperationResult handed back to application code
once the whole pipeline succeeds.

**Design Pattern**: State Machine using Union types

Every completed attempt is classified into exactly one of:
- Success:           2xx
- RetryableFailure:  408, 429, 500-599, timeout, transport error
- TerminalFailure:   any other status, or caller cancellation

Example:
    ```python
    outcome = await transport.execute(operation)

    match outcome:
        case Success(status_code=code, data=data):
            print(f"ok {code}: {data}")
        case RetryableFailure(reason=reason):
            print(f"will retry: {reason}")
        case TerminalFailure(status_code=code):
            print(f"gave up: {code}")
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pysteady.models import Attempt, CacheKey, Operation, OutcomeKind

__all__ = [
    "Success",
    "RetryableFailure",
    "TerminalFailure",
    "Outcome",
    "OperationResult",
    "classify_status",
    "RETRYABLE_STATUSES",
]

RETRYABLE_STATUSES = frozenset({408, 429})
"""Non-5xx statuses that are worth retrying (request timeout, rate limit)."""


def classify_status(status_code: int) -> OutcomeKind:
    """
    Classify an HTTP status into an outcome kind.

    Args:
        status_code: HTTP status of a completed response

    Returns:
        SUCCESS for 2xx, RETRYABLE for 408/429/5xx, TERMINAL otherwise

    Example:
        ```python
        classify_status(204)  # OutcomeKind.SUCCESS
        classify_status(503)  # OutcomeKind.RETRYABLE
        classify_status(404)  # OutcomeKind.TERMINAL
        ```
    """
    if 200 <= status_code < 300:
        return OutcomeKind.SUCCESS
    if status_code in RETRYABLE_STATUSES or 500 <= status_code < 600:
        return OutcomeKind.RETRYABLE
    return OutcomeKind.TERMINAL


@dataclass(frozen=True)
class Success:
    """
    Attempt completed with a 2xx response.

    Attributes:
        status_code: HTTP status
        data: Decoded body (JSON value, text, or None when empty)
        headers: Response headers
    """

    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    kind = OutcomeKind.SUCCESS


@dataclass(frozen=True)
class RetryableFailure:
    """
    Attempt failed transiently.

    Attributes:
        reason: Human-readable cause
        status_code: HTTP status, None for timeouts and transport errors
        timed_out: True when the attempt's deadline expired
        detail: Decoded error body, if any
    """

    reason: str
    status_code: int | None = None
    timed_out: bool = False
    detail: Any = None

    kind = OutcomeKind.RETRYABLE


@dataclass(frozen=True)
class TerminalFailure:
    """
    Attempt failed in a way that must not be retried.

    Attributes:
        reason: Human-readable cause
        status_code: HTTP status, None for cancellation
        detail: Decoded error body, if any
        auth_expired: True for 401, so the session interceptor can step in
        cancelled: True when the caller's token fired
    """

    reason: str
    status_code: int | None = None
    detail: Any = None
    auth_expired: bool = False
    cancelled: bool = False

    kind = OutcomeKind.TERMINAL


Outcome = Success | RetryableFailure | TerminalFailure
"""Result of one attempt."""


@dataclass(frozen=True)
class OperationResult:
    """
    Successful resolution of an Operation.

    Attributes:
        operation: The operation that succeeded
        data: Decoded (and, if configured, envelope-unwrapped) body
        status_code: Final HTTP status
        headers: Final response headers
        attempts: Every attempt made, in order
        invalidated: Cache keys marked stale because of this write
        replayed_from_queue: True when the write waited in the offline queue
    """

    operation: Operation
    data: Any
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    attempts: tuple[Attempt, ...] = ()
    invalidated: frozenset[CacheKey] = frozenset()
    replayed_from_queue: bool = False

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)
