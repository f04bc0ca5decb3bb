"""Typed failures surfaced to application code.

Every operation that does not succeed resolves with exactly one of these
errors. Each carries the operation, its attempt history and a `kind`
string that UI code can switch on to render a message.

Taxonomy:
    DataAccessError
    ├── OperationTimeout       deadline exceeded on the final attempt
    ├── TransientServerError   408/429/5xx/transport error, budget exhausted
    ├── ClientError            any other 4xx, never retried
    ├── SessionExpired         refresh failed, or replay re-expired
    ├── Cancelled              caller cancelled the operation
    └── QueueReplayFailure     a queued write failed during drain
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pysteady.models import Attempt, Operation

__all__ = [
    "DataAccessError",
    "OperationTimeout",
    "TransientServerError",
    "ClientError",
    "SessionExpired",
    "Cancelled",
    "QueueReplayFailure",
]


class DataAccessError(Exception):
    """Base class for every failure the data-access layer reports.

    Mirrors the RetryableError shape: `is_retryable()` tells whether the
    condition was transient, even though by the time an error reaches the
    caller the pipeline has already stopped retrying it.

    Attributes:
        operation: The operation that failed (None for session-level errors)
        attempts: Attempts made before giving up
        status_code: Last HTTP status seen, if any
    """

    kind = "data_access"

    def __init__(
        self,
        message: str,
        *,
        operation: Operation | None = None,
        attempts: tuple[Attempt, ...] = (),
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.attempts = attempts
        self.status_code = status_code

    def is_retryable(self) -> bool:
        return False

    def with_context(
        self, operation: Operation, attempts: tuple[Attempt, ...]
    ) -> DataAccessError:
        """Attach the operation and attempt history, returning self."""
        self.operation = operation
        self.attempts = attempts
        return self

    def __str__(self) -> str:
        if self.operation is not None:
            return f"{self.message} ({self.operation})"
        return self.message

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"status_code={self.status_code}, attempts={len(self.attempts)})"
        )


class OperationTimeout(DataAccessError):
    """The deadline expired on the last permitted attempt."""

    kind = "timeout"

    def __init__(self, message: str = "Request timeout", *, timeout: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout

    def is_retryable(self) -> bool:
        return True


class TransientServerError(DataAccessError):
    """Retryable failure that outlived the retry budget."""

    kind = "transient_server_error"

    def is_retryable(self) -> bool:
        return True


class ClientError(DataAccessError):
    """Terminal 4xx response. Surfaces immediately, unmodified.

    Attributes:
        detail: Decoded error body (the backend's `error`/`message` field
            or the raw payload)
    """

    kind = "client_error"

    def __init__(self, message: str, *, detail: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.detail = detail


class SessionExpired(DataAccessError):
    """The credential could not be refreshed, or expired again after refresh.

    The application is expected to force re-authentication.
    """

    kind = "session_expired"


class Cancelled(DataAccessError):
    """The caller's cancellation token fired during the operation."""

    kind = "cancelled"


class QueueReplayFailure(DataAccessError):
    """A write queued while offline could not be delivered during drain.

    Attributes:
        cause: The pipeline error that ended the replay
    """

    kind = "queue_replay_failure"

    def __init__(self, message: str, *, cause: DataAccessError, **kwargs):
        kwargs.setdefault("operation", cause.operation)
        kwargs.setdefault("attempts", cause.attempts)
        kwargs.setdefault("status_code", cause.status_code)
        super().__init__(message, **kwargs)
        self.cause = cause
        self.__cause__ = cause

    def is_retryable(self) -> bool:
        return self.cause.is_retryable()
