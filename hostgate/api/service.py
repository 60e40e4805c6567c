"""Job service application factory.

The job service hosts the ``JobRegistry`` and exposes it under
``/api/v1/jobs`` for the gateway to proxy.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..jobs.registry import JobRegistry
from ..jobs.runner import JobRunner
from ..jobs.store import JobStore
from ..utils.logging import configure_logging
from .config import ApiSettings
from .errors import register_error_handlers
from .gateway.auth import AuthGateway

logger = logging.getLogger(__name__)


async def _prune_loop(registry: JobRegistry, retention: float, interval: float) -> None:
    """Background task that evicts long-finished jobs from memory."""
    while True:
        await asyncio.sleep(interval)
        try:
            registry.prune(retention)
        except Exception:  # noqa: BLE001
            logger.debug("Job prune failed", exc_info=True)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: ApiSettings = app.state.settings
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting hostgate job service on %s:%s", settings.host, settings.port)

    store: Optional[JobStore] = app.state.job_store
    if store is not None:
        await store.initialize()

    prune_task = asyncio.create_task(
        _prune_loop(app.state.job_registry, settings.job_retention_seconds, settings.job_prune_interval)
    )

    yield

    prune_task.cancel()
    await app.state.job_runner.shutdown()
    if store is not None:
        await store.close()
    logger.info("Shutting down hostgate job service")


def create_service_app(
    settings: Optional[ApiSettings] = None,
    *,
    registry: Optional[JobRegistry] = None,
    runner: Optional[JobRunner] = None,
) -> FastAPI:
    """Build the job service application.

    Without an explicit *registry* one is created over a ``JobStore`` at
    ``settings.job_db_path``.  Callers passing their own registry own its
    store.
    """
    if settings is None:
        settings = ApiSettings()

    store: Optional[JobStore] = None
    if registry is None:
        store = JobStore(settings.job_db_path)
        registry = JobRegistry(store, abandon_after=settings.job_abandon_seconds)
    if runner is None:
        runner = JobRunner(
            registry,
            max_concurrent=settings.job_max_concurrent,
            max_queued=settings.job_max_queued,
        )

    app = FastAPI(
        title="Hostgate Job Service",
        description="Lifecycle tracking for long-running game-server host operations.",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.service_name = "jobs"
    app.state.settings = settings
    app.state.job_store = store
    app.state.job_registry = registry
    app.state.job_runner = runner
    app.state.auth_gateway = AuthGateway.from_settings(settings)

    register_error_handlers(app)

    from .routers import service_routers

    for router in service_routers():
        app.include_router(router)

    return app
