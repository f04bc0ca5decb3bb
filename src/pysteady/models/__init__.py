"""Core data models for resilient operation execution.

Defines types for operations, attempts, sessions, cache keys,
lifecycle states and retry behavior.

Design: Dependency-Free Models
These types have no dependencies on core, executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pysteady.models.attempt import Attempt, AttemptHistory
from pysteady.models.cache_key import CacheKey
from pysteady.models.operation import HttpMethod, Operation
from pysteady.models.retry import RetryPolicy
from pysteady.models.session import Session
from pysteady.models.status import OperationState, OutcomeKind

__all__ = [
    "Attempt",
    "AttemptHistory",
    "CacheKey",
    "HttpMethod",
    "Operation",
    "OperationState",
    "OutcomeKind",
    "RetryPolicy",
    "Session",
]
