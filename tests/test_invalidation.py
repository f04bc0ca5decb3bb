"""Tests for the invalidation graph and client-side cache invalidation."""

import asyncio
import logging

import pytest
from hypothesis import given
from hypothesis import strategies as st

from conftest import wait_until
from pysteady import (
    DEFAULT_RULES,
    CacheKey,
    ChangeEvent,
    ClientError,
    InstanceKey,
    InvalidationGraph,
    InvalidationRule,
)
from pysteady.invalidation.rules import (
    ACTIVITIES,
    DASHBOARD_METRICS,
    GOVERNMENT_CLIENTS,
    MAINTENANCE_REQUESTS,
    PROGRESS_TRACKING,
    PROPERTIES,
    RESIDENTS,
    STAFF_MEMBERS,
    SUPPORT_PLANS,
)
from pysteady.storage import InMemoryReadCache, StorageError


@pytest.fixture
def graph() -> InvalidationGraph:
    return InvalidationGraph.default()


# ==============================================================================
# Graph
# ==============================================================================


def test_resident_with_id(graph):
    keys = graph.invalidate("resident", 42)

    assert CacheKey(RESIDENTS) in keys
    assert CacheKey(RESIDENTS, instance=42) in keys
    assert CacheKey.filtered(SUPPORT_PLANS, residentId=42) in keys
    assert CacheKey(DASHBOARD_METRICS) in keys
    assert keys == graph.rule_for("resident").keys_for(42)

    # Registered only for unrelated entity types
    for resource in (PROPERTIES, STAFF_MEMBERS, MAINTENANCE_REQUESTS, GOVERNMENT_CLIENTS):
        assert not any(key.resource == resource for key in keys)


def test_without_id_only_collection_keys(graph):
    keys = graph.invalidate("resident")

    assert CacheKey(RESIDENTS) in keys
    assert all(key.is_collection for key in keys)


def test_support_plan_invalidation(graph):
    resources = {key.resource for key in graph.invalidate("support-plan")}

    assert {SUPPORT_PLANS, RESIDENTS, PROGRESS_TRACKING, DASHBOARD_METRICS, ACTIVITIES} <= resources


def test_unknown_entity_type_is_empty(graph, caplog):
    with caplog.at_level(logging.WARNING, logger="pysteady.invalidation.graph"):
        keys = graph.invalidate("spaceship", 1)

    assert keys == frozenset()
    assert "spaceship" in caplog.text


def test_duplicate_rules_rejected():
    rule = InvalidationRule("resident", collections=(RESIDENTS,))

    with pytest.raises(ValueError, match="Duplicate"):
        InvalidationGraph([rule, rule])


def test_rule_requires_collections():
    with pytest.raises(ValueError):
        InvalidationRule("resident", collections=())


def test_enumeration(graph):
    assert len(graph) == len(DEFAULT_RULES) == 10
    assert graph.entity_types() == sorted(rule.entity_type for rule in DEFAULT_RULES)
    assert "invoice" in graph
    assert RESIDENTS in graph.resources()


def test_dependents_of_activity_feed(graph):
    dependents = graph.dependents_of(ACTIVITIES)

    assert {"resident", "property", "incident", "activity"} <= dependents
    assert "government-client" not in dependents
    assert graph.dependents_of("/api/nowhere") == frozenset()


def test_instance_key_templates():
    assert InstanceKey(RESIDENTS).render(7) == CacheKey(RESIDENTS, instance=7)
    assert InstanceKey(SUPPORT_PLANS, by="residentId").render(7) == CacheKey.filtered(
        SUPPORT_PLANS, residentId=7
    )


@pytest.mark.property
@given(
    entity_type=st.sampled_from([rule.entity_type for rule in DEFAULT_RULES]),
    entity_id=st.one_of(st.integers(min_value=1), st.text(min_size=1, max_size=12)),
)
def test_id_only_adds_keys(entity_type, entity_id):
    """Property: knowing the id never removes collection keys."""
    graph = InvalidationGraph.default()
    assert graph.invalidate(entity_type) <= graph.invalidate(entity_type, entity_id)


# ==============================================================================
# Client integration
# ==============================================================================


@pytest.mark.asyncio
async def test_successful_write_marks_cache_stale(make_client, backend, cache):
    backend.script("PUT", "/api/residents/42", (200, {"id": 42}))
    for key in (
        CacheKey(RESIDENTS),
        CacheKey(RESIDENTS, instance=42),
        CacheKey(RESIDENTS, instance=43),
        CacheKey.filtered(SUPPORT_PLANS, residentId=42),
        CacheKey(PROPERTIES),
    ):
        await cache.set(key, [])
    events: list[ChangeEvent] = []
    client = make_client()
    client.on_change(events.append)

    result = await client.put("/api/residents/42", body={"status": "active"}, entity_type="resident", entity_id=42)

    assert result.invalidated == client.graph.invalidate("resident", 42)
    assert await cache.is_stale(CacheKey(RESIDENTS))
    assert await cache.is_stale(CacheKey(RESIDENTS, instance=42))
    assert await cache.is_stale(CacheKey.filtered(SUPPORT_PLANS, residentId=42))
    assert not await cache.is_stale(CacheKey(PROPERTIES))

    assert len(events) == 1
    assert events[0].entity_type == "resident"
    assert events[0].action == "updated"
    assert events[0].entity_id == 42
    assert not events[0].remote


@pytest.mark.asyncio
async def test_failed_write_invalidates_nothing(make_client, backend, cache):
    backend.script("POST", "/api/residents", (400, {"error": "invalid"}))
    await cache.set(CacheKey(RESIDENTS), [])
    client = make_client()

    with pytest.raises(ClientError):
        await client.post("/api/residents", body={}, entity_type="resident")

    assert not await cache.is_stale(CacheKey(RESIDENTS))


@pytest.mark.asyncio
async def test_reads_and_untagged_writes_invalidate_nothing(make_client, backend, cache):
    backend.script("GET", "/api/residents", (200, []))
    backend.script("POST", "/api/notes", (201, {}))
    await cache.set(CacheKey(RESIDENTS), [])
    client = make_client()

    read = await client.get("/api/residents", entity_type="resident")
    write = await client.post("/api/notes", body={})

    assert read.invalidated == frozenset()
    assert write.invalidated == frozenset()
    assert not await cache.is_stale(CacheKey(RESIDENTS))


@pytest.mark.asyncio
async def test_delete_reports_deleted_action(make_client, backend):
    backend.script("DELETE", "/api/incidents/5", 204)
    events = []
    client = make_client()
    client.on_change(events.append)

    await client.delete("/api/incidents/5", entity_type="incident", entity_id=5)

    assert events[0].action == "deleted"


@pytest.mark.asyncio
async def test_remote_change_notifies_async_listener(make_client, cache):
    await cache.set(CacheKey(PROPERTIES), [])
    events = []

    async def listener(event):
        events.append(event)

    client = make_client()
    unsubscribe = client.on_change(listener)

    keys = await client.apply_remote_change("property", 3)

    assert CacheKey(PROPERTIES, instance=3) in keys
    assert await cache.is_stale(CacheKey(PROPERTIES))
    assert events[0].remote

    unsubscribe()
    await client.apply_remote_change("property", 3)
    assert len(events) == 1


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_write(make_client, backend, caplog):
    backend.script("POST", "/api/incidents", (201, {}))
    client = make_client()

    def broken(event):
        raise RuntimeError("listener bug")

    client.on_change(broken)

    result = await client.post("/api/incidents", body={}, entity_type="incident")

    assert result.invalidated
    assert "listener bug" in caplog.text


@pytest.mark.asyncio
async def test_refresh_dashboard(make_client, cache):
    await cache.set(CacheKey(DASHBOARD_METRICS), {})
    await cache.set(CacheKey(ACTIVITIES), [])
    await cache.set(CacheKey(RESIDENTS), [])
    client = make_client()

    keys = await client.refresh_dashboard()

    assert keys == {CacheKey(DASHBOARD_METRICS), CacheKey(ACTIVITIES)}
    assert await cache.is_stale(CacheKey(DASHBOARD_METRICS))
    assert not await cache.is_stale(CacheKey(RESIDENTS))


class _BrokenCache(InMemoryReadCache):
    """Read cache whose invalidation backend is unreachable."""

    async def mark_stale(self, patterns):
        raise StorageError("cache down")


@pytest.mark.asyncio
async def test_cache_failure_does_not_fail_committed_write(make_client, backend, caplog):
    backend.script("POST", "/api/residents", (201, {"id": 7}))
    events = []
    client = make_client(cache=_BrokenCache(refetch_active=False))
    client.on_change(events.append)

    result = await client.post("/api/residents", body={}, entity_type="resident")

    assert result.data == {"id": 7}
    assert result.invalidated == client.graph.invalidate("resident")
    assert len(backend.calls("POST", "/api/residents")) == 1
    assert "cache down" in caplog.text
    assert len(events) == 1


@pytest.mark.asyncio
async def test_cache_failure_during_replay_still_resolves(make_client, backend, connectivity):
    backend.script("POST", "/api/residents", (201, {"id": 8}))
    connectivity.set_online(False)
    client = make_client(cache=_BrokenCache(refetch_active=False))

    task = asyncio.create_task(client.post("/api/residents", body={}, entity_type="resident"))
    await wait_until(lambda: client.queue_length == 1)
    client.set_online(True)

    result = await task
    assert result.replayed_from_queue
    assert result.data == {"id": 8}
