"""Retry/backoff decisions for classified failures.

Two questions are answered here, and nothing else:
- should this attempt be retried?
- how long to wait before the next one?

Design: Strategy Pattern
    The numbers come from a RetryPolicy; randomness and sleeping are
    injected so tests can pin the jitter and skip real waits.

Delay formula:
    base  = min(base_delay * multiplier^attempt, max_delay)
    delay = base + uniform(0, jitter * base)

The jitter term keeps many clients that failed together from retrying in
lockstep against a recovering backend.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from pysteady.executor.outcome import Outcome
from pysteady.models import OutcomeKind, RetryPolicy

logger = logging.getLogger(__name__)

__all__ = ["BackoffEngine"]


class BackoffEngine:
    """
    Decides retries and computes backoff delays.

    Usage:
        ```python
        engine = BackoffEngine(RetryPolicy.STANDARD)
        if engine.should_retry(attempt, max_retries, outcome):
            await engine.wait(attempt)
        ```
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            policy: Backoff shape and default budget (STANDARD if omitted)
            rng: Random source for jitter (module random if omitted)
            sleep: Coroutine used to wait; replaced in tests
        """
        self.policy = policy or RetryPolicy.STANDARD
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    def should_retry(self, attempt: int, max_retries: int, outcome: Outcome) -> bool:
        """
        Decide whether to resubmit after an attempt.

        Args:
            attempt: Index of the attempt that just completed (0-indexed)
            max_retries: Retry budget for this operation
            outcome: Classified result of that attempt

        Returns:
            True only for retryable outcomes while attempt < max_retries
        """
        if outcome.kind is not OutcomeKind.RETRYABLE:
            return False
        return attempt < max_retries

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait after the given failed attempt.

        Args:
            attempt: Index of the attempt that just failed (0-indexed)

        Returns:
            Base delay plus up to `jitter` times that in random extra
        """
        base = self.policy.base_delay_for(attempt)
        return base + self._rng.uniform(0.0, self.policy.jitter * base)

    async def wait(self, attempt: int) -> float:
        """Sleep for delay(attempt) and return the time slept."""
        seconds = self.delay(attempt)
        logger.debug(f"Backing off {seconds:.3f}s after attempt {attempt}")
        await self._sleep(seconds)
        return seconds

    def __repr__(self) -> str:
        return f"BackoffEngine(policy={self.policy!r})"
