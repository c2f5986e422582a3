"""Pytest configuration and fixtures."""

import sys
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from unisearch.app import create_app
from unisearch.config import Settings
from unisearch.events import BroadcastHub, EventBus
from unisearch.records import (
    InMemoryRecordRepository,
    Person,
    Post,
    SourceRegistry,
    project_person,
    project_post,
)
from unisearch.search import IndexStore, SyncCoordinator


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        database_path=":memory:",
        reconcile_interval=0,
        sync_backoff_base=0.001,
        sync_backoff_max=0.01,
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """Create test client with the app lifespan running."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def store() -> Iterator[IndexStore]:
    """Initialized in-memory index store."""
    index = IndexStore(":memory:", timeout=1.0)
    index.initialize()
    yield index
    index.close()


@pytest.fixture
def event_bus() -> EventBus:
    """Fresh event bus."""
    return EventBus(queue_size=10, max_subscribers=10)


@pytest.fixture
def posts(event_bus: EventBus) -> InMemoryRecordRepository[Post]:
    """Post repository announcing commits on the test bus."""
    return InMemoryRecordRepository("post", Post, project_post, event_bus)


@pytest.fixture
def people(event_bus: EventBus) -> InMemoryRecordRepository[Person]:
    """Person repository announcing commits on the test bus."""
    return InMemoryRecordRepository("person", Person, project_person, event_bus)


@pytest.fixture
def registry(
    posts: InMemoryRecordRepository[Post],
    people: InMemoryRecordRepository[Person],
) -> SourceRegistry:
    """Registry with post and person sources."""
    sources = SourceRegistry()
    sources.register(posts)
    sources.register(people)
    return sources


@pytest.fixture
def hub(event_bus: EventBus) -> BroadcastHub:
    """Hub reporting on the test bus."""
    return BroadcastHub(event_bus, heartbeat_interval=0.05)


@pytest_asyncio.fixture
async def coordinator(
    store: IndexStore,
    registry: SourceRegistry,
    hub: BroadcastHub,
) -> AsyncIterator[SyncCoordinator]:
    """Running coordinator with fast retries."""
    sync = SyncCoordinator(
        store,
        registry,
        workers=3,
        max_attempts=3,
        backoff_base=0.001,
        backoff_max=0.005,
        reporter=hub,
    )
    sync.start()
    yield sync
    await sync.stop()
