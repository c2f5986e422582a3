"""Service configuration loaded from environment variables."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration loaded from environment variables.

    Attributes:
        host: Bind address for the API server.
        port: Port number for the API server.
        debug: Enable debug logging and API documentation.
        log_json: Emit JSON log lines instead of console output.
        shutdown_timeout: Seconds to wait for graceful shutdown.
        database_path: SQLite path for the index store (":memory:" for none).
        store_timeout: Seconds a single store operation may wait for the index.
        sync_workers: Number of ordered shard queues in the coordinator.
        sync_max_attempts: Attempts per lifecycle event before flagging it.
        sync_backoff_base: First retry delay in seconds.
        sync_backoff_max: Upper bound for a single retry delay.
        reconcile_interval: Seconds between scheduled reconciliations (0 disables).
        reconcile_on_startup: Run one reconciliation when the service starts.
        event_queue_size: Maximum size of each lossy subscriber queue.
        event_max_subscribers: Maximum number of concurrent subscribers.
        sse_heartbeat_interval: Seconds between SSE heartbeat events.
        search_default_limit: Page size used when a caller gives none.
    """

    model_config = SettingsConfigDict(
        env_prefix="UNISEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    log_json: bool = True
    shutdown_timeout: float = 30.0

    database_path: str = ":memory:"
    store_timeout: float = 5.0

    sync_workers: int = 4
    sync_max_attempts: int = 3
    sync_backoff_base: float = 0.05
    sync_backoff_max: float = 2.0

    reconcile_interval: float = 300.0
    reconcile_on_startup: bool = True

    event_queue_size: int = 100
    event_max_subscribers: int = 100
    sse_heartbeat_interval: float = 15.0

    search_default_limit: int = 20
