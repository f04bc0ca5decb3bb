"""Session refresh interceptor with single-flight discipline.

When an attempt comes back 401, the pipeline asks the SessionManager for
a fresh credential and replays the operation once. Concurrency rules:

- Any number of operations that see a 401 while a refresh is in flight
  join that refresh instead of starting their own.
- An operation whose 401 was earned with a credential that has already
  been replaced (its generation is stale) replays immediately with the
  current one; no new refresh is started.
- Otherwise exactly one refresh task is started and shared.

If the refresh fails, every waiter gets SessionExpired and the
application's `on_expired` hook runs once so it can force a new login.

Design: Information Hiding (Parnas)
    The session is the only cross-operation state with concurrent
    writers, so every write to it goes through this class.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import httpx

from pysteady.core.errors import SessionExpired
from pysteady.models import Session

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialRefresher",
    "HttpCredentialRefresher",
    "SessionManager",
]


@runtime_checkable
class CredentialRefresher(Protocol):
    """Exchanges an expiring credential for a fresh one.

    Raising any exception means the refresh failed; that outcome is
    authoritative and forces re-authentication.
    """

    async def refresh(self, session: Session | None) -> Session: ...


class SessionManager:
    """
    Owns the current Session and serializes its replacement.

    Usage:
        ```python
        manager = SessionManager(HttpCredentialRefresher(url), session=Session("abc"))

        # in the pipeline, after a 401 on an attempt sent with generation g:
        session = await manager.refresh(stale_generation=g)
        ```
    """

    def __init__(
        self,
        refresher: CredentialRefresher | None = None,
        session: Session | None = None,
        on_expired: Callable[[SessionExpired], Any] | None = None,
    ):
        """
        Args:
            refresher: How to obtain a new credential (None disables refresh)
            session: Initial credential, if already logged in
            on_expired: Called once per failed refresh; may be async
        """
        self._refresher = refresher
        self._session = session
        self._generation = session.generation if session is not None else 0
        self._on_expired = on_expired
        self._inflight: asyncio.Task[Session] | None = None
        self.refresh_count = 0
        """Number of refresh calls actually issued (for monitoring and tests)."""

    @property
    def current(self) -> Session | None:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None

    def set_session(self, session: Session) -> Session:
        """Install a credential obtained outside the refresh path (e.g. login)."""
        self._generation += 1
        self._session = Session(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
            token_type=session.token_type,
            generation=self._generation,
        )
        return self._session

    def clear(self) -> None:
        """Forget the credential (logout)."""
        self._session = None
        self._generation += 1

    async def refresh(self, stale_generation: int) -> Session:
        """
        Obtain a credential newer than `stale_generation`.

        Args:
            stale_generation: Generation of the session the failing attempt
                was sent with

        Returns:
            The refreshed (or already newer) session

        Raises:
            SessionExpired: If refresh is impossible or fails
        """
        if self._inflight is not None:
            logger.debug("Joining in-flight session refresh")
            return await asyncio.shield(self._inflight)

        if self._generation > stale_generation:
            if self._session is None:
                # A failed refresh or logout already cleared the credential
                raise SessionExpired("Session was cleared while the request was in flight")
            logger.debug(
                f"Session already refreshed (generation {self._generation} > {stale_generation})"
            )
            return self._session

        if self._refresher is None:
            error = SessionExpired("Session expired and no refresher is configured")
            await self._notify_expired(error)
            raise error

        task = asyncio.create_task(self._run_refresh())
        task.add_done_callback(_consume_exception)
        self._inflight = task
        return await asyncio.shield(task)

    async def _run_refresh(self) -> Session:
        self.refresh_count += 1
        logger.info(f"Refreshing session (generation {self._generation})")
        try:
            try:
                fresh = await self._refresher.refresh(self._session)
            except Exception as e:
                logger.warning(f"Session refresh failed: {e}")
                self._session = None
                self._generation += 1
                self._inflight = None
                error = SessionExpired(f"Session refresh failed: {e}")
                await self._notify_expired(error)
                raise error from e

            self._generation += 1
            self._session = Session(
                access_token=fresh.access_token,
                refresh_token=fresh.refresh_token,
                expires_at=fresh.expires_at,
                token_type=fresh.token_type,
                generation=self._generation,
            )
            logger.info(f"Session refreshed (generation {self._generation})")
            return self._session
        finally:
            self._inflight = None

    async def _notify_expired(self, error: SessionExpired) -> None:
        if self._on_expired is None:
            return
        try:
            result = self._on_expired(error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"on_expired hook failed: {e}")

    def __repr__(self) -> str:
        return f"SessionManager(generation={self._generation}, refreshing={self.refreshing})"


def _consume_exception(task: asyncio.Task) -> None:
    # Waiters may all have been cancelled; keep asyncio from warning
    if not task.cancelled():
        task.exception()


class HttpCredentialRefresher:
    """
    Refreshes the session at the backend's refresh endpoint.

    Accepts both response shapes the backend has used:
        {"success": true, "data": {"accessToken": "..."}}
        {"access_token": "...", "refresh_token": "...", "expires_in": 3600}

    Usage:
        ```python
        refresher = HttpCredentialRefresher("https://api.example.org/auth/refresh")
        manager = SessionManager(refresher, session=Session("abc", refresh_token="xyz"))
        ```
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.url = url
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def refresh(self, session: Session | None) -> Session:
        headers = {"Content-Type": "application/json"}
        payload: dict[str, str] = {}
        if session is not None:
            headers["Authorization"] = session.authorization
            if session.refresh_token:
                payload["refresh_token"] = session.refresh_token

        response = await self._get_client().post(self.url, json=payload, headers=headers)
        if response.status_code != 200:
            raise SessionExpired(f"Refresh endpoint returned HTTP {response.status_code}")
        return self._parse(response.json(), session)

    @staticmethod
    def _parse(body: Any, previous: Session | None) -> Session:
        if not isinstance(body, dict):
            raise SessionExpired("Refresh response was not a JSON object")

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        token = data.get("accessToken") or data.get("access_token")
        if not token:
            raise SessionExpired("Refresh response carried no access token")

        refresh_token = data.get("refreshToken") or data.get("refresh_token")
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token
        token_type = data.get("token_type", "Bearer")

        expires_in = data.get("expires_in") or data.get("expiresIn")
        if expires_in is not None:
            return Session.from_expires_in(token, float(expires_in), refresh_token, token_type)
        return Session(access_token=token, refresh_token=refresh_token, token_type=token_type)
