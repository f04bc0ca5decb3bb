"""
Core types shared by every component of the data-access layer.

This module contains:
- Error taxonomy (DataAccessError and subclasses)
- ClientConfig: global defaults
- CancellationToken: structured per-attempt cancellation
- Task-local client binding (bind_client, get_current_client, use_client)
- Re-exports of the dependency-free models
"""

from pysteady.core.cancellation import CancellationToken
from pysteady.core.config import ClientConfig
from pysteady.core.context import CURRENT_CLIENT, bind_client, get_current_client, use_client
from pysteady.core.errors import (
    Cancelled,
    ClientError,
    DataAccessError,
    OperationTimeout,
    QueueReplayFailure,
    SessionExpired,
    TransientServerError,
)
from pysteady.models import (
    Attempt,
    AttemptHistory,
    CacheKey,
    HttpMethod,
    Operation,
    OperationState,
    OutcomeKind,
    RetryPolicy,
    Session,
)

__all__ = [
    "Attempt",
    "AttemptHistory",
    "CacheKey",
    "CancellationToken",
    "Cancelled",
    "ClientConfig",
    "ClientError",
    "CURRENT_CLIENT",
    "DataAccessError",
    "HttpMethod",
    "Operation",
    "OperationState",
    "OperationTimeout",
    "OutcomeKind",
    "QueueReplayFailure",
    "RetryPolicy",
    "Session",
    "SessionExpired",
    "TransientServerError",
    "bind_client",
    "get_current_client",
    "use_client",
]
