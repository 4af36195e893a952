"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from avatarium.api.routes import admin, cron, generations, jobs
from avatarium.core import timezone  # noqa: F401  # sets TZ=UTC
from avatarium.core.config import Settings, configure_logging
from avatarium.core.database import setup_db_session
from avatarium.services.collaborators import build_collaborators
from avatarium.uow import create_uow_factory
from avatarium.workers.task_poller import run_task_poller

logger = structlog.get_logger()

RESTART_DELAY_SECONDS = 1.0


async def supervise_worker(
    worker_name: str,
    start: Callable[[], Awaitable[None]],
    shutdown_event: asyncio.Event,
    restart_delay: float = RESTART_DELAY_SECONDS,
) -> None:
    """Run a long-lived worker coroutine, restarting it whenever it exits.

    A crash or an unexpected return is logged and followed by a fixed
    delay; cancellation and the shutdown event end supervision.

    Args:
        worker_name: Name used in log events
        start: Zero-argument callable creating a fresh worker coroutine
        shutdown_event: Set on application shutdown
        restart_delay: Seconds between a worker exit and its restart
    """
    restarts = 0
    while not shutdown_event.is_set():
        if restarts:
            logger.info("worker.restarting", worker=worker_name, restarts=restarts)
        try:
            await start()
        except asyncio.CancelledError:
            logger.info("worker.cancelled", worker=worker_name)
            raise
        except Exception as exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=restart_delay,
                exc_info=exc,
            )
        else:
            if shutdown_event.is_set():
                break
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=restart_delay,
            )

        restarts += 1
        await asyncio.sleep(restart_delay)

    logger.info("worker.shutdown_complete", worker=worker_name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, build the session factory, the UoW factory
      and the pipeline clients, and start the embedded poller when enabled
    - Shutdown: stop the poller
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    collaborators = build_collaborators(settings)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.collaborators = collaborators

    shutdown_event = asyncio.Event()
    poller_task = None
    if settings.embedded_poller_enabled:
        poller_task = asyncio.create_task(
            supervise_worker(
                "task_poller",
                lambda: run_task_poller(uow_factory, settings, collaborators),
                shutdown_event,
            )
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        queue_enabled=settings.queue_enabled,
        storage_enabled=settings.storage_enabled,
        telegram_enabled=settings.telegram_enabled,
        embedded_poller=settings.embedded_poller_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if poller_task is not None:
        poller_task.cancel()
        await asyncio.gather(poller_task, return_exceptions=True)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Avatarium Generation API",
        description="Photo generation job orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generations.router)
    app.include_router(jobs.router)
    app.include_router(cron.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Database connectivity plus which optional integrations are wired.

        Returns:
            200 when SELECT 1 succeeds, 503 with the error otherwise
        """
        collaborators = getattr(app.state, "collaborators", None)
        integrations = {
            "queue": bool(collaborators and collaborators.queue),
            "storage": bool(collaborators and collaborators.storage),
            "payments": bool(collaborators and collaborators.payments),
            "telegram": bool(collaborators and collaborators.messenger),
        }

        try:
            async with await app.state.uow_factory() as uow:
                await uow.session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "database": {"type": type(e).__name__, "message": str(e)},
                "integrations": integrations,
            }

        return {"status": "healthy", "database": "ok", "integrations": integrations}

    return app


# Create app instance for uvicorn
app = create_app()
