"""Synchronization coordinator tests."""

import asyncio

import pytest

from unisearch.events import EventBus, EventType, LifecycleEvent, SystemEvent
from unisearch.records import InMemoryRecordRepository, Person, Post, SourceRegistry
from unisearch.search import (
    IndexStore,
    QueryEngine,
    StorageError,
    SyncCoordinator,
    SyncOutcome,
    run_sync_subscriber,
)


def post(record_id: int, title: str = "Hello", body: str = "World") -> Post:
    return Post(id=record_id, title=title, body=body)


async def settle(coordinator: SyncCoordinator) -> None:
    """Let the subscriber hand off published events, then wait for them."""
    await asyncio.sleep(0.05)
    await coordinator.drain()


@pytest.mark.asyncio
async def test_scenarios_create_update_delete(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """Created, updated and deleted events drive one entry through its life."""
    outcome = await coordinator.apply(LifecycleEvent.created("post", 1, post(1)))
    assert outcome is SyncOutcome.UPSERTED
    entry = store.find_by_origin("post", 1)
    assert entry is not None
    assert (entry.origin_type, entry.origin_id, entry.title, entry.body) == (
        "post",
        "1",
        "Hello",
        "World",
    )

    await coordinator.apply(LifecycleEvent.updated("post", 1, post(1, title="Hello2")))
    updated = store.find_by_origin("post", 1)
    assert updated is not None
    assert updated.id == entry.id
    assert updated.title == "Hello2"
    assert updated.body == "World"
    assert updated.updated_at > entry.updated_at

    outcome = await coordinator.apply(LifecycleEvent.deleted("post", 1))
    assert outcome is SyncOutcome.REMOVED
    assert store.find_by_origin("post", 1) is None
    assert store.search("Hello2") == ([], 0)


@pytest.mark.asyncio
async def test_duplicate_creates_yield_one_entry(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """Repeated creation events never produce a second entry."""
    for _ in range(3):
        await coordinator.submit(LifecycleEvent.created("post", 1, post(1)))
    await coordinator.drain()

    assert store.keys() == {("post", "1")}
    assert store.count() == 1


@pytest.mark.asyncio
async def test_repeated_update_is_idempotent(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """Applying the same update twice leaves the same state as once."""
    event = LifecycleEvent.updated("post", 1, post(1, title="Same"))

    assert await coordinator.apply(event) is SyncOutcome.UPSERTED
    once = store.entries()
    assert await coordinator.apply(event) is SyncOutcome.UNCHANGED
    assert store.entries() == once


@pytest.mark.asyncio
async def test_update_without_entry_creates_it(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """An update for a record with no entry indexes it anyway."""
    await coordinator.apply(LifecycleEvent.updated("post", 5, post(5, title="Late")))

    entry = store.find_by_origin("post", 5)
    assert entry is not None
    assert entry.title == "Late"


@pytest.mark.asyncio
async def test_delete_without_entry_is_noop(coordinator: SyncCoordinator) -> None:
    """Deleting an unindexed record succeeds without changes."""
    outcome = await coordinator.apply(LifecycleEvent.deleted("post", 42))
    assert outcome is SyncOutcome.ABSENT
    assert coordinator.status().failed == 0


@pytest.mark.asyncio
async def test_events_for_one_record_apply_in_order(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """Submission order wins for a single record, however many events queue up."""
    await coordinator.submit(LifecycleEvent.created("post", 1, post(1, title="v0")))
    for n in range(1, 20):
        await coordinator.submit(LifecycleEvent.updated("post", 1, post(1, title=f"v{n}")))
    await coordinator.submit(LifecycleEvent.updated("post", 1, post(1, title="X")))
    await coordinator.drain()

    entry = store.find_by_origin("post", 1)
    assert entry is not None
    assert entry.title == "X"


@pytest.mark.asyncio
async def test_same_id_across_types_gives_two_results(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """A post and a person sharing an id are indexed and found separately."""
    await coordinator.submit(
        LifecycleEvent.created("post", 1, post(1, title="Post", body="About Rails"))
    )
    await coordinator.submit(
        LifecycleEvent.created(
            "person", 1, Person(id=1, name="Dev", biography="Loves Rails")
        )
    )
    await coordinator.drain()

    response = QueryEngine(store).search("Rails")

    assert response.total == 2
    assert {(r.origin_type, r.origin_id) for r in response.results} == {
        ("post", "1"),
        ("person", "1"),
    }


@pytest.mark.asyncio
async def test_transient_storage_error_is_retried(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """A storage failure that clears up within the attempt budget succeeds."""
    original = store.upsert
    failures = {"left": 2}

    def flaky(*args, **kwargs):
        if failures["left"]:
            failures["left"] -= 1
            raise StorageError("database is locked", operation="upsert")
        return original(*args, **kwargs)

    store.upsert = flaky  # type: ignore[method-assign]

    outcome = await coordinator.apply(LifecycleEvent.created("post", 1, post(1)))

    assert outcome is SyncOutcome.UPSERTED
    status = coordinator.status()
    assert status.retried == 2
    assert status.failed == 0
    assert status.flagged == []


@pytest.mark.asyncio
async def test_exhausted_retries_flag_and_report(
    coordinator: SyncCoordinator,
    store: IndexStore,
    event_bus: EventBus,
) -> None:
    """Persistent storage failures flag the key and publish sync.failed."""
    _, events = await event_bus.subscribe(topic="system")

    def broken(*args, **kwargs):
        raise StorageError("disk I/O error", operation="upsert")

    store.upsert = broken  # type: ignore[method-assign]

    outcome = await coordinator.apply(LifecycleEvent.created("post", 9, post(9)))

    assert outcome is SyncOutcome.FAILED
    status = coordinator.status()
    assert status.failed == 1
    assert status.retried == 2
    assert [(k.origin_type, k.origin_id) for k in status.flagged] == [("post", "9")]

    event = await asyncio.wait_for(anext(events), timeout=1.0)
    assert isinstance(event, SystemEvent)
    assert event.type is EventType.SYNC_FAILED
    assert event.detail["origin_id"] == "9"
    assert event.detail["attempts"] == 3


@pytest.mark.asyncio
async def test_invalid_projection_is_not_retried(
    store: IndexStore, registry: SourceRegistry
) -> None:
    """Malformed projections fail at once and are flagged."""
    registry.register(
        InMemoryRecordRepository("broken", Post, lambda p: {"title": None, "body": ""})
    )
    sync = SyncCoordinator(store, registry, workers=1, backoff_base=0.001)
    sync.start()
    try:
        outcome = await sync.apply(LifecycleEvent.created("broken", 1, post(1)))
    finally:
        await sync.stop()

    assert outcome is SyncOutcome.FAILED
    assert sync.status().retried == 0
    assert ("broken", "1") in sync.flagged
    assert store.count() == 0


@pytest.mark.asyncio
async def test_later_success_clears_flag(
    coordinator: SyncCoordinator, store: IndexStore
) -> None:
    """A flagged key is cleared once a later event for it applies."""
    original = store.upsert

    def broken(*args, **kwargs):
        raise StorageError("locked", operation="upsert")

    store.upsert = broken  # type: ignore[method-assign]
    await coordinator.apply(LifecycleEvent.created("post", 1, post(1)))
    assert ("post", "1") in coordinator.flagged

    store.upsert = original  # type: ignore[method-assign]
    await coordinator.apply(LifecycleEvent.updated("post", 1, post(1, title="Fixed")))
    assert coordinator.flagged == {}


@pytest.mark.asyncio
async def test_submit_requires_running_coordinator(
    store: IndexStore, registry: SourceRegistry
) -> None:
    """Submitting before start() is a programming error."""
    sync = SyncCoordinator(store, registry)
    with pytest.raises(RuntimeError):
        await sync.submit(LifecycleEvent.deleted("post", 1))


@pytest.mark.asyncio
async def test_repository_writes_flow_through_subscriber(
    coordinator: SyncCoordinator,
    store: IndexStore,
    event_bus: EventBus,
    posts: InMemoryRecordRepository[Post],
) -> None:
    """Committed record writes reach the index through the event bus."""
    ready = asyncio.Event()
    task = asyncio.create_task(run_sync_subscriber(event_bus, coordinator, ready=ready))
    await ready.wait()

    try:
        created = await posts.create({"title": "Hello", "body": "World"})
        await posts.update(created.id, {"title": "Hello2"})
        await settle(coordinator)
        entry = store.find_by_origin("post", created.id)
        assert entry is not None
        assert entry.title == "Hello2"

        await posts.delete(created.id)
        await settle(coordinator)
        assert store.find_by_origin("post", created.id) is None
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_timed_out_attempt_is_retried(registry: SourceRegistry) -> None:
    """Attempts that time out waiting for the store are retried until it frees up."""
    index = IndexStore(":memory:", timeout=0.02)
    index.initialize()
    sync = SyncCoordinator(
        index, registry, workers=1, max_attempts=100, backoff_base=0.01, backoff_max=0.01
    )
    sync.start()
    index._lock.acquire()  # noqa: SLF001
    try:
        pending = asyncio.ensure_future(
            sync.apply(LifecycleEvent.created("post", 5, post(5)))
        )
        for _ in range(200):
            if sync.status().retried:
                break
            await asyncio.sleep(0.01)
        assert sync.status().retried >= 1
        assert not pending.done()
    finally:
        index._lock.release()  # noqa: SLF001

    try:
        assert await asyncio.wait_for(pending, timeout=5.0) is SyncOutcome.UPSERTED
        assert index.find_by_origin("post", 5).title == "Hello"
        assert sync.status().failed == 0
    finally:
        await sync.stop()
        index.close()
