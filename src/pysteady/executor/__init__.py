"""
Executor module - Runtime components that carry an Operation to its outcome.

This module contains:
- transport: One HTTP attempt with a deadline (Transport)
- outcome: Success/RetryableFailure/TerminalFailure classification
- backoff: Retry decisions and jittered exponential waits
- connectivity: Online flag fed by the platform
- offline: FIFO queue of writes issued while disconnected
- session: Single-flight credential refresh
- pipeline: The per-operation state machine wiring them together

Package name "executor" describes what it provides (running operations),
not what it contains.
"""

from pysteady.executor.backoff import BackoffEngine
from pysteady.executor.connectivity import Connectivity
from pysteady.executor.offline import OfflineQueue, QueuedWrite, Replay
from pysteady.executor.outcome import (
    RETRYABLE_STATUSES,
    OperationResult,
    Outcome,
    RetryableFailure,
    Success,
    TerminalFailure,
    classify_status,
)
from pysteady.executor.pipeline import Pipeline, unwrap_envelope
from pysteady.executor.session import CredentialRefresher, HttpCredentialRefresher, SessionManager
from pysteady.executor.transport import Transport

__all__ = [
    # Transport
    "Transport",
    # Outcome state machine
    "Success",
    "RetryableFailure",
    "TerminalFailure",
    "Outcome",
    "OperationResult",
    "classify_status",
    "RETRYABLE_STATUSES",
    # Retry
    "BackoffEngine",
    # Offline
    "Connectivity",
    "OfflineQueue",
    "QueuedWrite",
    "Replay",
    # Session
    "CredentialRefresher",
    "HttpCredentialRefresher",
    "SessionManager",
    # Pipeline
    "Pipeline",
    "unwrap_envelope",
]
