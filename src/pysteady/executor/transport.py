"""Transport core: one HTTP attempt with a deadline.

Executes exactly one physical transmission of an Operation and classifies
the result. It does not retry, refresh or queue; those decisions belong
to the pipeline.

Design: Information Hiding (Parnas)
    httpx details (request building, exception types, body decoding) are
    confined to this module. Everything above it sees Outcome values.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from pysteady.core.cancellation import CancellationToken
from pysteady.core.config import DEFAULT_TIMEOUT
from pysteady.executor.outcome import (
    Outcome,
    RetryableFailure,
    Success,
    TerminalFailure,
    classify_status,
)
from pysteady.models import Operation, OutcomeKind, Session

logger = logging.getLogger(__name__)

__all__ = ["Transport", "decode_body", "error_message"]


class Transport:
    """
    Executes one attempt of an Operation against the backend.

    The httpx client is created lazily and owned by the transport unless
    one is passed in (tests pass a client built on httpx.MockTransport).

    Usage:
        ```python
        transport = Transport("https://api.example.org", timeout=10.0)
        outcome = await transport.execute(Operation.get("/api/residents"), session=session)
        await transport.aclose()
        ```
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport (no connection opened yet).

        Args:
            base_url: Origin prepended to relative targets
            timeout: Default deadline per attempt in seconds
            http_client: Pre-built client; the transport will not close it
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            # Deadlines are enforced by asyncio.timeout, not by httpx
            self._client = httpx.AsyncClient(timeout=None)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if the transport created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def build_request(self, operation: Operation, session: Session | None = None) -> httpx.Request:
        """Translate an Operation into an httpx.Request."""
        headers = {"Accept": "application/json"}
        if session is not None:
            headers["Authorization"] = session.authorization
        if operation.organization_id is not None:
            headers["X-Organization-Id"] = str(operation.organization_id)

        content = None
        if operation.body is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(operation.body).encode("utf-8")

        # Caller headers win over the defaults above
        headers.update(operation.headers)

        return self._get_client().build_request(
            operation.method.value,
            self._url_for(operation.target),
            params=operation.params,
            headers=headers,
            content=content,
        )

    async def execute(
        self,
        operation: Operation,
        *,
        session: Session | None = None,
        token: CancellationToken | None = None,
    ) -> Outcome:
        """
        Perform one attempt and classify it.

        The deadline (operation.timeout or the transport default) covers the
        whole exchange including reading the body. On expiry the network
        call is cancelled and a timed-out RetryableFailure is returned.

        Args:
            operation: What to send
            session: Credential to attach, if any
            token: Caller cancellation; aborts only this attempt's call

        Returns:
            Success, RetryableFailure or TerminalFailure
        """
        if token is not None and token.cancelled:
            return TerminalFailure(reason=token.reason or "cancelled", cancelled=True)

        deadline = operation.timeout or self.timeout
        request = self.build_request(operation, session)
        call = asyncio.ensure_future(self._send(request))
        unregister = token.register(call.cancel) if token is not None else None

        try:
            async with asyncio.timeout(deadline):
                response = await call
        except TimeoutError:
            logger.debug(f"{operation} timed out after {deadline}s")
            return RetryableFailure(reason=f"Request timeout after {deadline}s", timed_out=True)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if token is not None and token.cancelled and (current is None or not current.cancelling()):
                logger.debug(f"{operation} cancelled by caller")
                return TerminalFailure(reason=token.reason or "cancelled", cancelled=True)
            raise
        except httpx.TransportError as e:
            logger.debug(f"{operation} transport error: {e!r}")
            return RetryableFailure(reason=f"{type(e).__name__}: {e}")
        except httpx.RequestError as e:
            # Decoding errors and redirect loops will not fix themselves
            logger.debug(f"{operation} request error: {e!r}")
            return TerminalFailure(reason=f"{type(e).__name__}: {e}")
        finally:
            if unregister is not None:
                unregister()
            if not call.done():
                call.cancel()

        return self._classify(response)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        response = await self._get_client().send(request)
        try:
            await response.aread()
        finally:
            await response.aclose()
        return response

    def _classify(self, response: httpx.Response) -> Outcome:
        status = response.status_code
        data = decode_body(response)
        kind = classify_status(status)

        if kind is OutcomeKind.SUCCESS:
            return Success(status_code=status, data=data, headers=dict(response.headers))

        reason = error_message(status, data, response.reason_phrase)
        if kind is OutcomeKind.RETRYABLE:
            return RetryableFailure(reason=reason, status_code=status, detail=data)
        return TerminalFailure(
            reason=reason,
            status_code=status,
            detail=data,
            auth_expired=status == 401,
        )

    def _url_for(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        if not target.startswith("/"):
            target = "/" + target
        return f"{self.base_url}{target}"

    def __repr__(self) -> str:
        return f"Transport(base_url={self.base_url!r}, timeout={self.timeout})"


def decode_body(response: httpx.Response) -> Any:
    """Decode a response body: JSON when possible, text otherwise, None if empty."""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def error_message(status: int, data: Any, reason_phrase: str = "") -> str:
    """Pick the most useful message from an error body."""
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(data, str) and data.strip():
        return f"HTTP {status}: {data.strip()[:200]}"
    return f"HTTP {status}: {reason_phrase}".rstrip(": ")
