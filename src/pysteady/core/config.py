"""Global defaults for the data-access layer.

Per-call overrides live on Operation; everything here applies when an
operation does not say otherwise.

Usage:
    ```python
    # Explicit
    config = ClientConfig(base_url="https://api.example.org", timeout=10.0)

    # From the environment (PYSTEADY_BASE_URL, PYSTEADY_TIMEOUT, ...)
    config = ClientConfig.from_env()
    ```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

from pysteady.models import RetryPolicy

__all__ = ["ClientConfig", "DEFAULT_BASE_URL", "DEFAULT_TIMEOUT"]

DEFAULT_BASE_URL = "http://localhost:5000"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ClientConfig:
    """
    Client-wide configuration.

    Attributes:
        base_url: Backend origin prepended to relative operation targets
        timeout: Default per-attempt deadline in seconds
        retry_policy: Default retry budget and backoff shape
        refresh_path: Credential refresh endpoint, relative to base_url
            (None disables refresh; a 401 then ends in SessionExpired)
        unwrap_envelope: Unwrap {"success", "data", "error"} response bodies
        queue_writes_offline: Divert writes to the offline queue while
            disconnected instead of attempting them
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    retry_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy.STANDARD)
    refresh_path: str | None = "/auth/refresh"
    unwrap_envelope: bool = True
    queue_writes_offline: bool = True

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_env(cls) -> ClientConfig:
        """
        Build a configuration from PYSTEADY_* environment variables.

        Unset variables keep their defaults.

        Raises:
            ValueError: If a variable is set to something unparsable
        """
        policy = RetryPolicy.STANDARD
        policy_changes = {}
        for env_name, attr, cast in (
            ("PYSTEADY_MAX_RETRIES", "max_retries", int),
            ("PYSTEADY_BASE_DELAY", "base_delay", float),
            ("PYSTEADY_MAX_DELAY", "max_delay", float),
            ("PYSTEADY_JITTER", "jitter", float),
        ):
            raw = os.getenv(env_name)
            if raw is not None:
                policy_changes[attr] = _parse(env_name, raw, cast)
        if policy_changes:
            policy = policy.with_overrides(**policy_changes)

        timeout_raw = os.getenv("PYSTEADY_TIMEOUT")
        return cls(
            base_url=os.getenv("PYSTEADY_BASE_URL", DEFAULT_BASE_URL),
            timeout=(
                _parse("PYSTEADY_TIMEOUT", timeout_raw, float)
                if timeout_raw is not None
                else DEFAULT_TIMEOUT
            ),
            retry_policy=policy,
        )

    def with_base_url(self, base_url: str) -> ClientConfig:
        return replace(self, base_url=base_url)

    def with_timeout(self, timeout: float) -> ClientConfig:
        return replace(self, timeout=timeout)

    def with_retry_policy(self, policy: RetryPolicy) -> ClientConfig:
        return replace(self, retry_policy=policy)


def _parse(name, raw, cast):
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a {cast.__name__}, got {raw!r}") from None
