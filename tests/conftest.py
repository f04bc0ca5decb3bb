"""
Pytest configuration and fixtures for pysteady tests.

Provides a scripted fake backend on httpx.MockTransport, an instant
recording sleep for backoff, a seeded random source and a client factory.
"""

import asyncio
import random
import shutil
import tempfile
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest

from pysteady import (
    ClientConfig,
    Connectivity,
    InMemoryReadCache,
    ResilientClient,
    RetryPolicy,
    Session,
)

BASE_URL = "http://api.test"


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class ScriptedBackend:
    """
    Fake backend for httpx.MockTransport.

    Responses are scripted per "METHOD path" as a list consumed in order
    (the last entry repeats) or as a callable taking the request. Every
    request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list | Callable] = {}
        self.requests: list[httpx.Request] = []

    def script(self, method: str, path: str, *responses) -> None:
        self.routes[f"{method} {path}"] = list(responses)

    def handle(self, method: str, path: str, handler: Callable) -> None:
        self.routes[f"{method} {path}"] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(f"{request.method} {request.url.path}")
        if route is None:
            return httpx.Response(404, json={"error": "Not found"})
        if callable(route):
            result = route(request)
            if asyncio.iscoroutine(result):
                result = await result
            return _to_response(result)
        entry = route.pop(0) if len(route) > 1 else route[0]
        return _to_response(entry)


def _to_response(entry) -> httpx.Response:
    if isinstance(entry, httpx.Response):
        return entry
    if isinstance(entry, int):
        return httpx.Response(entry, json={"error": f"status {entry}"} if entry >= 400 else {})
    status, body = entry
    return httpx.Response(status, json=body)


class FakeRefresher:
    """CredentialRefresher that counts calls and can be told to fail."""

    def __init__(self, token: str = "fresh-token", fail: bool = False, delay: float = 0.01):
        self.token = token
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def refresh(self, session):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("refresh token revoked")
        return Session(self.token, refresh_token="next-refresh")


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
async def http_client(backend: ScriptedBackend) -> AsyncGenerator[httpx.AsyncClient, None]:
    """httpx client routed to the scripted backend."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    yield client
    await client.aclose()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fixed_rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def connectivity() -> Connectivity:
    return Connectivity(online=True)


@pytest.fixture
def cache() -> InMemoryReadCache:
    return InMemoryReadCache(refetch_active=False)


@pytest.fixture
async def make_client(
    http_client: httpx.AsyncClient,
    recording_sleep: RecordingSleep,
    fixed_rng: random.Random,
    connectivity: Connectivity,
    cache: InMemoryReadCache,
):
    """Factory for ResilientClient wired to the fakes; closes what it builds."""
    built: list[ResilientClient] = []

    def factory(**kwargs) -> ResilientClient:
        kwargs.setdefault("config", ClientConfig(base_url=BASE_URL, retry_policy=RetryPolicy.STANDARD))
        kwargs.setdefault("session", Session("initial-token", refresh_token="refresh"))
        kwargs.setdefault("refresher", FakeRefresher())
        kwargs.setdefault("connectivity", connectivity)
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("rng", fixed_rng)
        kwargs.setdefault("sleep", recording_sleep)
        client = ResilientClient(http_client=http_client, **kwargs)
        built.append(client)
        return client

    yield factory

    for client in built:
        await client.aclose()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "queue.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll the event loop until predicate() holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)
