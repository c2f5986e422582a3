"""Entry point for the unified search service."""

import asyncio
import contextlib
import sys

import structlog
import uvicorn

from unisearch.app import create_app
from unisearch.config import Settings
from unisearch.logging import configure_logging

logger = structlog.get_logger()


async def serve(settings: Settings) -> None:
    """Run uvicorn until SIGTERM/SIGINT, letting in-flight requests finish.

    Args:
        settings: Server configuration.
    """
    app = create_app(settings)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="warning",
        access_log=False,
        timeout_graceful_shutdown=int(settings.shutdown_timeout),
    )
    server = uvicorn.Server(config)
    await server.serve()
    logger.info("server_exited")


def main() -> None:
    """Entry point for python -m unisearch."""
    settings = Settings()
    configure_logging(debug=settings.debug, json_logs=settings.log_json)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(settings))

    sys.exit(0)


if __name__ == "__main__":
    main()
