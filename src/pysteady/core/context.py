"""Task-local access to the process's ResilientClient.

The client owns all shared state (connectivity flag, session, offline
queue). It is constructed once per process and either passed explicitly
or bound here so deeply nested application code can reach it without a
module-level global.

Design: Task-Local State (contextvars)
    Tasks created after `bind_client()` inherit the binding; tests can
    bind a different client per task without interference.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pysteady.client import ResilientClient

__all__ = ["CURRENT_CLIENT", "bind_client", "get_current_client", "use_client"]

CURRENT_CLIENT: ContextVar[Optional["ResilientClient"]] = ContextVar(
    "current_client", default=None
)
"""Task-local ResilientClient.

Usage:
    ```python
    token = CURRENT_CLIENT.set(client)
    try:
        residents = await get_current_client().get("/api/residents")
    finally:
        CURRENT_CLIENT.reset(token)
    ```
"""


def bind_client(client: ResilientClient) -> None:
    """Bind client for the current task and every task it creates later."""
    CURRENT_CLIENT.set(client)


def get_current_client() -> ResilientClient:
    """Return the bound client.

    Raises:
        RuntimeError: If no client has been bound in this context
    """
    client = CURRENT_CLIENT.get()
    if client is None:
        raise RuntimeError("No ResilientClient bound. Call bind_client() or use_client() first.")
    return client


@contextmanager
def use_client(client: ResilientClient) -> Iterator[ResilientClient]:
    """Bind client for the duration of a with-block."""
    token = CURRENT_CLIENT.set(client)
    try:
        yield client
    finally:
        CURRENT_CLIENT.reset(token)
