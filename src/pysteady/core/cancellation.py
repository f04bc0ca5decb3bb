"""Structured cancellation for in-flight attempts.

A CancellationToken is created by the caller and passed down with the
operation. The transport links it to exactly one attempt's network call
at a time, so cancelling the token aborts that call and nothing else.

Usage:
    ```python
    token = CancellationToken()
    task = asyncio.create_task(client.get("/api/residents", token=token))
    ...
    token.cancel()  # the in-flight attempt is aborted, task raises Cancelled
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

__all__ = ["CancellationToken"]


class CancellationToken:
    """One-shot cancellation signal shared between a caller and the pipeline."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Fire the token. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        if self._event is not None:
            self._event.set()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback when the token fires.

        Fires immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback
        """
        if self._cancelled:
            callback()
            return _noop

        self._callbacks.append(callback)

        def unregister() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unregister

    async def wait(self) -> None:
        """Suspend until the token fires."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


def _noop() -> None:
    return None
