"""Connectivity flag fed by platform online/offline signals.

The layer never probes the network itself. A platform integration (OS
network monitor, browser bridge, health checker) calls `set_online()`;
components that care about transitions subscribe.

Design Pattern: Observer Pattern
    Connectivity is the subject; the offline queue is the main observer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

__all__ = ["Connectivity"]


class Connectivity:
    """
    Read-mostly online flag with transition callbacks.

    Callbacks run synchronously on the transition and receive the new
    state. They must not block; schedule async work with create_task.

    Usage:
        ```python
        connectivity = Connectivity(online=True)
        connectivity.subscribe(lambda online: print("online" if online else "offline"))
        connectivity.set_online(False)
        ```
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []
        self._online_event = asyncio.Event()
        if online:
            self._online_event.set()

    @property
    def online(self) -> bool:
        return self._online

    @property
    def offline(self) -> bool:
        return not self._online

    def set_online(self, online: bool) -> None:
        """Record a platform connectivity signal.

        Repeated signals with the same value are ignored, so listeners see
        transitions only.
        """
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        if online:
            self._online_event.set()
        else:
            self._online_event.clear()
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register a transition callback.

        Returns:
            A function that removes the callback
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_online(self) -> None:
        """Suspend until the flag is true."""
        await self._online_event.wait()

    def __repr__(self) -> str:
        return f"Connectivity(online={self._online})"
