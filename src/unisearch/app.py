"""FastAPI application factory and lifespan management."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from unisearch.config import Settings
from unisearch.events import BroadcastHub, EventBus, EventType
from unisearch.middleware.logging import RequestLoggingMiddleware
from unisearch.records import (
    InMemoryRecordRepository,
    Person,
    Post,
    SourceRegistry,
    project_person,
    project_post,
)
from unisearch.routes import admin, events, health, records, search
from unisearch.search import (
    IndexStore,
    QueryEngine,
    Reconciler,
    SyncCoordinator,
    run_reconcile_schedule,
    run_sync_subscriber,
)

logger = structlog.get_logger()


def build_registry(event_bus: EventBus) -> SourceRegistry:
    """Register the bundled searchable record types.

    Args:
        event_bus: Bus the repositories announce their commits on.

    Returns:
        Registry with "post" and "person" sources.
    """
    registry = SourceRegistry()
    registry.register(InMemoryRecordRepository("post", Post, project_post, event_bus))
    registry.register(
        InMemoryRecordRepository("person", Person, project_person, event_bus)
    )
    return registry


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events.

    Opens the index store, starts the sync coordinator and its event bus
    subscriber, reconciles once and schedules periodic reconciliation.
    Shuts everything down in reverse order.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    logger.info("api_startup", host=settings.host, port=settings.port)

    event_bus = EventBus(
        queue_size=settings.event_queue_size,
        max_subscribers=settings.event_max_subscribers,
    )
    broadcast_hub = BroadcastHub(
        event_bus,
        heartbeat_interval=settings.sse_heartbeat_interval,
    )

    store = IndexStore(settings.database_path, timeout=settings.store_timeout)
    violations = store.initialize()
    for violation in violations:
        await broadcast_hub.report(
            EventType.CONSISTENCY_VIOLATION, **violation.as_dict()
        )

    registry: SourceRegistry = app.state.registry_factory(event_bus)
    coordinator = SyncCoordinator(
        store,
        registry,
        workers=settings.sync_workers,
        max_attempts=settings.sync_max_attempts,
        backoff_base=settings.sync_backoff_base,
        backoff_max=settings.sync_backoff_max,
        reporter=broadcast_hub,
    )
    reconciler = Reconciler(store, registry, coordinator, reporter=broadcast_hub)

    app.state.event_bus = event_bus
    app.state.broadcast_hub = broadcast_hub
    app.state.store = store
    app.state.registry = registry
    app.state.coordinator = coordinator
    app.state.reconciler = reconciler
    app.state.query_engine = QueryEngine(
        store, default_limit=settings.search_default_limit
    )

    coordinator.start()
    subscriber_task: asyncio.Task[None] | None = None
    schedule_task: asyncio.Task[None] | None = None

    try:
        subscribed = asyncio.Event()
        subscriber_task = asyncio.create_task(
            run_sync_subscriber(event_bus, coordinator, ready=subscribed)
        )
        await subscribed.wait()

        if settings.reconcile_on_startup:
            report = await reconciler.reconcile()
            logger.info(
                "search_index_ready", entry_count=store.count(), **report.model_dump()
            )

        if settings.reconcile_interval > 0:
            schedule_task = asyncio.create_task(
                run_reconcile_schedule(reconciler, settings.reconcile_interval)
            )

        yield
    finally:
        await _cancel(schedule_task)
        await _cancel(subscriber_task)
        await coordinator.stop()
        store.close()
        await broadcast_hub.shutdown()
        logger.info("api_shutdown")


def create_app(
    settings: Settings | None = None,
    registry_factory: Callable[[EventBus], SourceRegistry] | None = None,
) -> FastAPI:
    """Factory function to create configured FastAPI application.

    Args:
        settings: Configuration instance. Creates default if None.
        registry_factory: Builds the record source registry from the event
            bus. Defaults to the bundled post and person types.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Unified Search API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/v1/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.registry_factory = registry_factory or build_registry

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")
    app.include_router(records.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")

    return app
