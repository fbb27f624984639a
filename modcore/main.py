"""Process entry point for a standalone moderation core.

Applications usually embed ModerationCore directly (build_core() at start,
aclose() at shutdown). Running this module instead starts the consensus
worker and a Prometheus exporter around a core built from the environment:

    DATABASE_URL="postgresql+asyncpg://..." python -m modcore.main
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from prometheus_client import start_http_server

from modcore.config import Settings, settings
from modcore.core import ModerationCore, build_core
from modcore.logging_config import configure_logging
from modcore.worker.consensus_worker import consensus_worker_loop

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app_settings: Settings = settings) -> AsyncIterator[ModerationCore]:
    # Configure structured logging before anything else
    configure_logging(app_settings.log_level, app_settings.app_name)
    core = await build_core(app_settings)
    log.info("moderation_core_started", fail_mode=app_settings.fail_mode)
    try:
        yield core
    finally:
        await core.aclose()
        log.info("moderation_core_stopped")


async def serve(app_settings: Settings = settings) -> None:
    async with lifespan(app_settings) as core:
        if app_settings.metrics_port:
            start_http_server(app_settings.metrics_port)
        await consensus_worker_loop(core)


def main() -> None:
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
