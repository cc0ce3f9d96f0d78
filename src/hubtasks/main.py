"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.tasks_api import regions_router, router as tasks_router
from .config import AppConfig
from .db.db_init import create_session_factory, init_db
from .logging import configure_logging
from .providers.providers_base import ProviderClient
from .repositories.job_history_repository import JobHistoryRepository
from .tasks.orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)


def build_history_repository(config: AppConfig) -> JobHistoryRepository | None:
    if not config.history_database_url:
        return None
    engine, session_factory = create_session_factory(config.history_database_url)
    init_db(engine)
    return JobHistoryRepository(session_factory)


def create_app(
    config: AppConfig | None = None,
    *,
    provider: ProviderClient | None = None,
) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    cfg = config or AppConfig.build_default()
    configure_logging(cfg.log_level)
    history = build_history_repository(cfg)
    orchestrator = TaskOrchestrator.from_config(
        cfg,
        provider=provider,
        archive=history.archive if history is not None else None,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        orchestrator.start()
        logger.info("app.started", extra={"default_region": cfg.default_region})
        try:
            yield
        finally:
            await orchestrator.aclose()
            logger.info("app.stopped")

    app = FastAPI(title="hubtasks", lifespan=lifespan)
    app.state.config = cfg
    app.state.orchestrator = orchestrator
    app.state.job_history = history
    app.include_router(tasks_router)
    app.include_router(regions_router)
    return app
