"""Status enumerations for operation execution tracking.

Defines the lifecycle states of a logical operation and the
classification of a single attempt's outcome.
"""

from enum import Enum


class OutcomeKind(Enum):
    """Classification of one attempt's result.

    Every completed attempt falls into exactly one kind:
        SUCCESS:   2xx response
        RETRYABLE: 408, 429, 5xx, timeout or transport error
        TERMINAL:  any other status, or caller cancellation
    """

    SUCCESS = "SUCCESS"
    """Backend accepted the request."""

    RETRYABLE = "RETRYABLE"
    """Transient failure, eligible for backoff and resubmission."""

    TERMINAL = "TERMINAL"
    """Failure that must not be retried."""

    @property
    def is_failure(self) -> bool:
        """Check if this kind represents a failed attempt."""
        return self != OutcomeKind.SUCCESS

    def __str__(self) -> str:
        return self.value


class OperationState(Enum):
    """State of a logical operation in the pipeline.

    Lifecycle:
        CREATED → SENDING → SUCCEEDED
                          → BACKOFF → SENDING
                          → FAILED

    Interrupts (from SENDING or after a retryable failure):
        → QUEUED → SENDING              (writes only, on disconnect)
        → REFRESHING_SESSION → SENDING  (at most once, on auth expiry)
    """

    CREATED = "CREATED"
    """Operation built by application code, not yet attempted."""

    SENDING = "SENDING"
    """An attempt is on the wire."""

    BACKOFF = "BACKOFF"
    """Waiting out the retry delay after a retryable failure."""

    QUEUED = "QUEUED"
    """Write parked in the offline queue until connectivity returns."""

    REFRESHING_SESSION = "REFRESHING_SESSION"
    """Waiting on the shared credential refresh before replaying."""

    SUCCEEDED = "SUCCEEDED"
    """Operation resolved with a result."""

    FAILED = "FAILED"
    """Operation resolved with a typed error."""

    @property
    def is_terminal(self) -> bool:
        """Check if this state is terminal (no more work needed)."""
        return self in (OperationState.SUCCEEDED, OperationState.FAILED)

    def __str__(self) -> str:
        return self.value
