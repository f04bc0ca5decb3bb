"""Session credential held by the refresh interceptor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


@dataclass(frozen=True)
class Session:
    """
    Current access credential plus an expiry signal.

    Attributes:
        access_token: Bearer credential sent with every request
        refresh_token: Credential exchanged at the refresh endpoint, if any
        expires_at: Absolute expiry, if the provider reported one
        token_type: Authorization scheme (default "Bearer")
        generation: Incremented each time a refresh replaces the session.
            Lets the interceptor tell a 401 against the current credential
            from a 401 against one that was already replaced.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    generation: int = 0

    @classmethod
    def from_expires_in(
        cls,
        access_token: str,
        expires_in: float,
        refresh_token: str | None = None,
        token_type: str = "Bearer",
    ) -> Session:
        """Build a session from a relative lifetime in seconds."""
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            token_type=token_type,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    @property
    def authorization(self) -> str:
        """Value for the Authorization header."""
        return f"{self.token_type} {self.access_token}"

    def __repr__(self) -> str:
        # Never print credentials
        return (
            f"Session(generation={self.generation}, token_type={self.token_type!r}, "
            f"expires_at={self.expires_at!r})"
        )
