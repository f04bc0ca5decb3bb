"""Cache invalidation after writes.

Maps a mutated business entity to the cached reads that must be treated
as stale. Pure computation; the read cache does the actual discarding.
"""

from pysteady.invalidation.graph import InstanceKey, InvalidationGraph, InvalidationRule
from pysteady.invalidation.rules import DASHBOARD_RESOURCES, DEFAULT_RULES

__all__ = [
    "DASHBOARD_RESOURCES",
    "DEFAULT_RULES",
    "InstanceKey",
    "InvalidationGraph",
    "InvalidationRule",
]
