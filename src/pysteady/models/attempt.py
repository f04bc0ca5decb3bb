"""Attempt records for one physical transmission of an Operation."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from pysteady.models.status import OutcomeKind


@dataclass(frozen=True)
class Attempt:
    """
    One physical transmission of an Operation.

    Attributes:
        index: Ordinal of the attempt (0 is the first try)
        started_at: Monotonic clock reading when the attempt began
        duration: Seconds until the outcome was known
        kind: Classification of the outcome
        status_code: HTTP status, or None for timeouts and transport errors
        error: Short description for non-HTTP failures
        auth_replay: True when this attempt replays after a session refresh
    """

    index: int
    started_at: float
    duration: float
    kind: OutcomeKind
    status_code: int | None = None
    error: str | None = None
    auth_replay: bool = False

    def __str__(self) -> str:
        detail = self.status_code if self.status_code is not None else self.error
        return f"Attempt#{self.index}({self.kind}, {detail})"


class AttemptHistory:
    """Ordered attempts of a single Operation.

    Owned by the pipeline while the operation runs; handed to the result
    or error when it resolves.
    """

    def __init__(self) -> None:
        self._attempts: list[Attempt] = []

    def record(self, attempt: Attempt) -> None:
        self._attempts.append(attempt)

    @property
    def next_index(self) -> int:
        return len(self._attempts)

    @property
    def last(self) -> Attempt | None:
        return self._attempts[-1] if self._attempts else None

    def snapshot(self) -> tuple[Attempt, ...]:
        return tuple(self._attempts)

    def __len__(self) -> int:
        return len(self._attempts)

    def __iter__(self) -> Iterator[Attempt]:
        return iter(self._attempts)

    def __repr__(self) -> str:
        return f"AttemptHistory({', '.join(str(a) for a in self._attempts)})"
