"""
Retry policy configuration for operation execution.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates retry behavior, allowing different retry strategies
without modifying the pipeline code.

Design Rationale:
- Safe default: 3 retries (up to 4 attempts) with 1s base delay
- Simple retry: RetryPolicy.with_max_retries(n) keeps the standard delays
- Advanced control: Custom RetryPolicy for full control
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, cast


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for operation retry behavior.

    Controls how many times an operation is resubmitted after a retryable
    failure and the backoff between attempts.

    Examples:
        # Simple: just specify the retry budget (uses standard delays)
        policy = RetryPolicy.with_max_retries(5)

        # Named policy: predefined sensible defaults
        policy = RetryPolicy.STANDARD

        # Custom policy: full control
        policy = RetryPolicy(
            max_retries=5,
            base_delay=0.5,
            max_delay=10.0,
            jitter=0.3,
        )
    """

    max_retries: int = 3
    """Maximum number of retries after the first attempt.

    For example, max_retries = 3 means:
    - Attempt 0: immediate (first try)
    - Attempt 1: after delay(0)
    - Attempt 2: after delay(1)
    - Attempt 3: after delay(2)

    Default: 3 (up to 4 attempts in total)
    """

    base_delay: float = 1.0
    """Delay before the first retry in seconds, before jitter.

    Default: 1.0
    """

    max_delay: float = 30.0
    """Cap on the exponential part of the delay in seconds.

    Default: 30.0
    """

    jitter: float = 0.3
    """Upper bound of the random extra delay, as a fraction of the base delay.

    Default: 0.3 (a retry waits between 100% and 130% of its base delay)
    """

    multiplier: float = 2.0
    """Multiplier for exponential backoff.

    Each retry's base delay is calculated as:
    min(base_delay * multiplier^attempt, max_delay)

    Default: 2.0 (doubles each time)
    """

    # =========================================================================
    # Predefined Policies
    # =========================================================================

    if TYPE_CHECKING:
        # Type checker sees these as RetryPolicy
        NONE: RetryPolicy
        STANDARD: RetryPolicy
        AGGRESSIVE: RetryPolicy
    else:
        # Runtime sees these as None (set after class definition)
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)
        AGGRESSIVE = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.jitter < 0:
            raise ValueError(f"jitter must be >= 0, got {self.jitter}")

    @classmethod
    def with_max_retries(cls, max_retries: int) -> RetryPolicy:
        """
        Create a policy with a custom retry budget (uses standard delays).

        Args:
            max_retries: Maximum number of retries after the first attempt

        Returns:
            RetryPolicy with standard delays

        Example:
            policy = RetryPolicy.with_max_retries(5)
        """
        return cls(max_retries=max_retries)

    @property
    def max_attempts(self) -> int:
        """Total attempts allowed, first try included."""
        return self.max_retries + 1

    def base_delay_for(self, attempt: int) -> float:
        """
        Calculate the un-jittered delay after a failed attempt.

        Uses exponential backoff: base_delay * multiplier^attempt
        capped at max_delay.

        Args:
            attempt: Index of the attempt that just failed (0-indexed)

        Returns:
            Delay in seconds before jitter is added

        Example:
            policy = RetryPolicy.STANDARD
            policy.base_delay_for(0)  # 1.0
            policy.base_delay_for(1)  # 2.0
            policy.base_delay_for(9)  # 30.0 (capped)
        """
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        # float pow raises OverflowError for very large attempt numbers
        try:
            raw = self.base_delay * self.multiplier**attempt
        except OverflowError:
            return self.max_delay
        return min(raw, self.max_delay)

    def delay_bounds(self, attempt: int) -> tuple[float, float]:
        """Return the (low, high) range a jittered delay falls in."""
        base = self.base_delay_for(attempt)
        return base, base * (1.0 + self.jitter)

    def with_overrides(self, **changes) -> RetryPolicy:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"RetryPolicy(max_retries={self.max_retries}, "
            f"base_delay={self.base_delay}, "
            f"max_delay={self.max_delay}, "
            f"jitter={self.jitter}, "
            f"multiplier={self.multiplier})"
        )


# Initialize predefined policies after class definition
RetryPolicy.NONE = RetryPolicy(max_retries=0, base_delay=0.0, max_delay=0.0, jitter=0.0)

RetryPolicy.STANDARD = RetryPolicy(
    max_retries=3,
    base_delay=1.0,  # 1 second
    max_delay=30.0,  # 30 seconds
    jitter=0.3,
)

RetryPolicy.AGGRESSIVE = RetryPolicy(
    max_retries=10,
    base_delay=0.1,  # 100 milliseconds
    max_delay=10.0,  # 10 seconds
    jitter=0.3,
    multiplier=1.5,
)
