"""Tests for models, configuration, errors and task-local client binding."""

import asyncio

import pytest

from pysteady import (
    CacheKey,
    ClientConfig,
    ClientError,
    HttpMethod,
    Operation,
    QueueReplayFailure,
    RetryPolicy,
    TransientServerError,
    get_current_client,
    use_client,
)
from pysteady.core import bind_client
from pysteady.models import Attempt, AttemptHistory, OutcomeKind

# ==============================================================================
# CacheKey
# ==============================================================================


def test_collection_key_matches_instances_and_filters():
    pattern = CacheKey("/api/residents")

    assert pattern.matches(CacheKey("/api/residents"))
    assert pattern.matches(CacheKey("/api/residents", instance=42))
    assert pattern.matches(CacheKey.filtered("/api/residents", propertyId=3))
    assert not pattern.matches(CacheKey("/api/residents/at-risk"))


def test_instance_key_matches_only_itself():
    pattern = CacheKey("/api/residents", instance=42)

    assert pattern.matches(CacheKey("/api/residents", instance=42))
    assert not pattern.matches(CacheKey("/api/residents", instance=43))
    assert not pattern.matches(CacheKey("/api/residents"))


def test_filtered_key_matches_superset_filters():
    pattern = CacheKey.filtered("/api/support-plans", residentId=42)

    assert pattern.matches(CacheKey.filtered("/api/support-plans", residentId=42, status="open"))
    assert not pattern.matches(CacheKey.filtered("/api/support-plans", residentId=41))


def test_filter_order_does_not_matter():
    a = CacheKey.filtered("/api/incidents", propertyId=1, severity="high")
    b = CacheKey("/api/incidents", filters=(("severity", "high"), ("propertyId", 1)))

    assert a == b
    assert hash(a) == hash(b)


def test_cache_key_text_forms():
    key = CacheKey.filtered("/api/support-plans", residentId=42)

    assert str(key) == "/api/support-plans?residentId=42"
    assert key.as_tuple() == ("/api/support-plans", {"residentId": 42})
    assert CacheKey.parse(key.serialize()) == key
    assert str(CacheKey("/api/residents", instance=7)) == "/api/residents/7"


def test_cache_key_requires_resource():
    with pytest.raises(ValueError):
        CacheKey("")


# ==============================================================================
# Operation
# ==============================================================================


def test_operation_defaults_from_method():
    read = Operation.get("/api/residents")
    create = Operation.post("/api/residents", body={})
    replace = Operation.put("/api/residents/1", body={})

    assert not read.mutating and read.idempotent
    assert create.mutating and not create.idempotent
    assert replace.mutating and replace.idempotent
    assert read.id != create.id


def test_operation_accepts_string_method():
    operation = Operation("patch", "/api/residents/1", body={"x": 1})

    assert operation.method is HttpMethod.PATCH
    assert str(operation) == "PATCH /api/residents/1"


def test_operation_explicit_flags_win():
    operation = Operation.post("/api/search", body={}, mutating=False)
    assert not operation.mutating


def test_with_overrides_preserves_identity():
    operation = Operation.get("/api/residents")
    copy = operation.with_overrides(timeout=2.0)

    assert copy.id == operation.id
    assert copy.timeout == 2.0
    assert operation.timeout is None


def test_retry_budget():
    assert Operation.get("/x").retry_budget(3) == 3
    assert Operation.get("/x", max_retries=1).retry_budget(3) == 1
    assert Operation.get("/x", retry=False, max_retries=5).retry_budget(3) == 0


def test_operation_dict_form_preserves_fields():
    operation = Operation.post(
        "/api/incidents",
        body={"severity": "high"},
        entity_type="incident",
        entity_id=5,
        organization_id=2,
        timeout=4.0,
    )

    restored = Operation.from_dict(operation.to_dict())

    assert restored == operation


@pytest.mark.parametrize(
    "kwargs",
    [{"target": ""}, {"target": "/x", "timeout": 0}, {"target": "/x", "max_retries": -1}],
)
def test_operation_validation(kwargs):
    with pytest.raises(ValueError):
        Operation(HttpMethod.GET, **kwargs)


# ==============================================================================
# Attempts
# ==============================================================================


def test_attempt_history():
    history = AttemptHistory()
    assert history.last is None

    history.record(Attempt(index=history.next_index, started_at=0.0, duration=0.1, kind=OutcomeKind.RETRYABLE, status_code=503))
    history.record(Attempt(index=history.next_index, started_at=0.2, duration=0.1, kind=OutcomeKind.SUCCESS, status_code=200))

    assert len(history) == 2
    assert history.last.status_code == 200
    assert [a.index for a in history.snapshot()] == [0, 1]
    assert OutcomeKind.RETRYABLE.is_failure
    assert not OutcomeKind.SUCCESS.is_failure


# ==============================================================================
# Configuration
# ==============================================================================


def test_config_defaults():
    config = ClientConfig()

    assert config.base_url == "http://localhost:5000"
    assert config.timeout == 30.0
    assert config.retry_policy == RetryPolicy.STANDARD
    assert config.refresh_path == "/auth/refresh"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("PYSTEADY_BASE_URL", "https://api.example.org")
    monkeypatch.setenv("PYSTEADY_TIMEOUT", "12.5")
    monkeypatch.setenv("PYSTEADY_MAX_RETRIES", "5")
    monkeypatch.setenv("PYSTEADY_JITTER", "0.1")

    config = ClientConfig.from_env()

    assert config.base_url == "https://api.example.org"
    assert config.timeout == 12.5
    assert config.retry_policy.max_retries == 5
    assert config.retry_policy.jitter == 0.1
    assert config.retry_policy.base_delay == 1.0


def test_config_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("PYSTEADY_MAX_RETRIES", "lots")

    with pytest.raises(ValueError, match="PYSTEADY_MAX_RETRIES"):
        ClientConfig.from_env()


def test_config_copies():
    config = ClientConfig().with_timeout(5.0).with_base_url("http://x").with_retry_policy(RetryPolicy.NONE)

    assert (config.timeout, config.base_url, config.retry_policy) == (5.0, "http://x", RetryPolicy.NONE)
    with pytest.raises(ValueError):
        ClientConfig(timeout=0)


# ==============================================================================
# Errors
# ==============================================================================


def test_error_kinds_and_retryability():
    operation = Operation.get("/api/residents")

    transient = TransientServerError("HTTP 503", operation=operation, status_code=503)
    client = ClientError("HTTP 404", status_code=404, detail={"error": "missing"})

    assert transient.is_retryable()
    assert not client.is_retryable()
    assert transient.kind == "transient_server_error"
    assert str(transient) == "HTTP 503 (GET /api/residents)"


def test_queue_replay_failure_wraps_cause():
    operation = Operation.post("/api/invoices", body={})
    cause = TransientServerError("HTTP 502", operation=operation, status_code=502)

    error = QueueReplayFailure("could not deliver", cause=cause)

    assert error.operation is operation
    assert error.status_code == 502
    assert error.__cause__ is cause
    assert error.is_retryable()


# ==============================================================================
# Context binding
# ==============================================================================


def test_no_client_bound():
    with pytest.raises(RuntimeError):
        get_current_client()


@pytest.mark.asyncio
async def test_use_client_binds_for_block(make_client):
    client = make_client()

    with use_client(client):
        assert get_current_client() is client

        async def child():
            return get_current_client()

        assert await asyncio.create_task(child()) is client

    with pytest.raises(RuntimeError):
        get_current_client()


@pytest.mark.asyncio
async def test_bind_client_is_task_local(make_client):
    client = make_client()

    async def bound():
        bind_client(client)
        return get_current_client()

    assert await asyncio.create_task(bound()) is client
    with pytest.raises(RuntimeError):
        get_current_client()
