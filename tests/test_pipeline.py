"""
Scenario tests for the per-operation pipeline through ResilientClient.

The backend is scripted with httpx.MockTransport and backoff sleeps are
recorded instead of awaited, so retries run instantly.
"""

import asyncio

import httpx
import pytest

from conftest import wait_until
from pysteady import (
    CancellationToken,
    Cancelled,
    ClientConfig,
    ClientError,
    Operation,
    OperationState,
    OperationTimeout,
    OutcomeKind,
    RetryPolicy,
    TransientServerError,
)

# ==============================================================================
# Retry scenarios
# ==============================================================================


@pytest.mark.asyncio
async def test_503_three_times_then_200(make_client, backend, recording_sleep):
    """GET returning 503 x3 then 200 succeeds with exactly 4 attempts."""
    backend.script("GET", "/api/residents", 503, 503, 503, (200, [{"id": 1}]))
    client = make_client()

    result = await client.get("/api/residents")

    assert result.data == [{"id": 1}]
    assert result.attempt_count == 4
    assert [a.status_code for a in result.attempts] == [503, 503, 503, 200]
    assert [a.index for a in result.attempts] == [0, 1, 2, 3]
    assert result.attempts[-1].kind is OutcomeKind.SUCCESS

    assert len(recording_sleep.delays) == 3
    for n, delay in enumerate(recording_sleep.delays):
        low = 2.0**n
        assert low <= delay <= low * 1.3


@pytest.mark.asyncio
async def test_404_fails_after_one_attempt(make_client, backend, recording_sleep):
    backend.script("GET", "/api/residents/999", (404, {"error": "Resident not found"}))
    client = make_client()

    with pytest.raises(ClientError) as exc_info:
        await client.get("/api/residents/999")

    error = exc_info.value
    assert error.status_code == 404
    assert error.message == "Resident not found"
    assert len(error.attempts) == 1
    assert error.operation.target == "/api/residents/999"
    assert recording_sleep.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 403, 409, 422])
async def test_client_errors_surface_immediately(make_client, backend, status):
    backend.script("POST", "/api/incidents", (status, {"error": "rejected", "field": "severity"}))
    client = make_client()

    with pytest.raises(ClientError) as exc_info:
        await client.post("/api/incidents", body={"severity": "x"})

    assert exc_info.value.status_code == status
    assert exc_info.value.detail == {"error": "rejected", "field": "severity"}
    assert len(backend.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
async def test_budget_exhaustion_raises_transient_error(make_client, backend, recording_sleep, status):
    backend.script("GET", "/api/properties", status)
    client = make_client()

    with pytest.raises(TransientServerError) as exc_info:
        await client.get("/api/properties")

    assert exc_info.value.status_code == status
    assert exc_info.value.is_retryable()
    assert len(exc_info.value.attempts) == 4
    assert len(recording_sleep.delays) == 3


@pytest.mark.asyncio
async def test_per_call_retry_budget(make_client, backend, recording_sleep):
    backend.script("GET", "/api/properties", 500)
    client = make_client()

    with pytest.raises(TransientServerError) as exc_info:
        await client.get("/api/properties", max_retries=1)

    assert len(exc_info.value.attempts) == 2
    assert len(recording_sleep.delays) == 1


@pytest.mark.asyncio
async def test_retry_opt_out(make_client, backend, recording_sleep):
    backend.script("GET", "/api/properties", 500)
    client = make_client()

    with pytest.raises(TransientServerError) as exc_info:
        await client.get("/api/properties", retry=False)

    assert len(exc_info.value.attempts) == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_client_policy_applies(make_client, backend):
    backend.script("GET", "/api/properties", 500)
    client = make_client(config=ClientConfig(base_url="http://api.test", retry_policy=RetryPolicy.NONE))

    with pytest.raises(TransientServerError) as exc_info:
        await client.get("/api/properties")

    assert len(exc_info.value.attempts) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried(make_client, backend):
    attempts = []

    def flaky(request):
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ReadError("connection reset", request=request)
        return httpx.Response(200, json={"ok": True})

    backend.handle("GET", "/api/residents", flaky)
    client = make_client()

    result = await client.get("/api/residents")

    assert result.data == {"ok": True}
    assert result.attempt_count == 3
    assert result.attempts[0].status_code is None
    assert "ReadError" in result.attempts[0].error


# ==============================================================================
# Deadlines and cancellation
# ==============================================================================


@pytest.mark.asyncio
async def test_timeout_on_final_attempt(make_client, backend, recording_sleep):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    backend.handle("GET", "/api/residents", slow)
    client = make_client()

    with pytest.raises(OperationTimeout) as exc_info:
        await client.get("/api/residents", timeout=0.05, max_retries=1)

    assert exc_info.value.timeout == 0.05
    assert len(exc_info.value.attempts) == 2
    assert len(recording_sleep.delays) == 1


@pytest.mark.asyncio
async def test_timeout_then_success(make_client, backend):
    calls = []

    async def slow_once(request):
        calls.append(request)
        if len(calls) == 1:
            await asyncio.sleep(5)
        return httpx.Response(200, json=[])

    backend.handle("GET", "/api/residents", slow_once)
    client = make_client()

    result = await client.get("/api/residents", timeout=0.05)

    assert result.attempt_count == 2
    assert result.attempts[0].kind is OutcomeKind.RETRYABLE


@pytest.mark.asyncio
async def test_cancellation_during_attempt(make_client, backend):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    backend.handle("GET", "/api/residents", slow)
    client = make_client()
    token = CancellationToken()

    task = asyncio.create_task(client.get("/api/residents", token=token))
    await wait_until(lambda: len(backend.requests) == 1)
    token.cancel()

    with pytest.raises(Cancelled) as exc_info:
        await task
    assert len(exc_info.value.attempts) == 1


@pytest.mark.asyncio
async def test_cancellation_during_backoff(make_client, backend):
    backend.script("GET", "/api/residents", 503)
    client = make_client(sleep=asyncio.sleep)
    # Real sleeps: the first backoff waits at least one second
    token = CancellationToken()

    task = asyncio.create_task(client.get("/api/residents", token=token))
    await wait_until(lambda: len(backend.requests) == 1)
    await asyncio.sleep(0.01)
    token.cancel()

    with pytest.raises(Cancelled):
        await task
    assert len(backend.requests) == 1


# ==============================================================================
# Envelopes and state transitions
# ==============================================================================


@pytest.mark.asyncio
async def test_envelope_is_unwrapped(make_client, backend):
    backend.script("GET", "/api/residents/1", (200, {"success": True, "data": {"id": 1}}))
    client = make_client()

    result = await client.get("/api/residents/1")

    assert result.data == {"id": 1}


@pytest.mark.asyncio
async def test_envelope_failure_is_client_error(make_client, backend):
    backend.script("POST", "/api/invoices", (200, {"success": False, "error": "Period closed"}))
    client = make_client()

    with pytest.raises(ClientError) as exc_info:
        await client.post("/api/invoices", body={})

    assert exc_info.value.message == "Period closed"
    assert len(exc_info.value.attempts) == 1


@pytest.mark.asyncio
async def test_envelope_left_alone_when_disabled(make_client, backend):
    body = {"success": True, "data": {"id": 1}}
    backend.script("GET", "/api/residents/1", (200, body))
    client = make_client(config=ClientConfig(base_url="http://api.test", unwrap_envelope=False))

    result = await client.get("/api/residents/1")

    assert result.data == body


@pytest.mark.asyncio
async def test_state_transitions(make_client, backend):
    backend.script("GET", "/api/residents", 503, (200, []))
    seen = []
    client = make_client(on_transition=lambda operation, state: seen.append(state))

    await client.execute(Operation.get("/api/residents"))

    assert seen == [
        OperationState.CREATED,
        OperationState.SENDING,
        OperationState.BACKOFF,
        OperationState.SENDING,
        OperationState.SUCCEEDED,
    ]
    assert seen[-1].is_terminal


@pytest.mark.asyncio
async def test_every_operation_resolves_once(make_client, backend):
    """Concurrent operations each resolve exactly once with their own history."""
    backend.script("GET", "/api/residents", 503, (200, []))
    backend.script("GET", "/api/properties", (200, []))
    client = make_client()

    results = await asyncio.gather(
        client.get("/api/residents"),
        client.get("/api/properties"),
        client.get("/api/residents/404"),
        return_exceptions=True,
    )

    assert results[0].attempt_count == 2
    assert results[1].attempt_count == 1
    assert isinstance(results[2], ClientError)
