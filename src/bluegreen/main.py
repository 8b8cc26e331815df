"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from bluegreen.api.app import create_app
from bluegreen.config import get_settings
from bluegreen.infrastructure.observability.logging import setup_logging


app = create_app()


def main() -> None:
    """Run the application."""
    settings = get_settings()
    setup_logging(settings.observability.log_level, json_output=not settings.debug)

    # Runners and the in-memory store live in-process: one worker only.
    uvicorn.run(
        "bluegreen.main:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug,
        log_level=settings.observability.log_level.lower(),
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout,
    )


if __name__ == "__main__":
    main()
