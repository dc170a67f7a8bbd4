"""FastAPI application factory.

The lifespan builds the media service from Settings and runs the media job
worker under a supervisor that restarts it after a crash.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from mediagen.api.dependencies import register_exception_handlers
from mediagen.api.routes import media
from mediagen.core import timezone  # noqa: F401
from mediagen.core.config import Settings, configure_logging
from mediagen.core.database import setup_db_session
from mediagen.services.media.jobs import JobQueue
from mediagen.services.media.processor import MediaGenerationProcessor
from mediagen.services.media.service import MediaService
from mediagen.services.storage.gcs_signer import GCSUrlSigner
from mediagen.services.vertex_ai.auth import AccessTokenProvider
from mediagen.services.vertex_ai.gateway import VertexAIGateway
from mediagen.uow import create_uow_factory
from mediagen.workers.media_job_worker import run_media_job_worker

logger = structlog.get_logger(__name__)

RESTART_DELAY_SECONDS = 1


async def supervise_worker(
    worker: Callable[..., Awaitable[Any]],
    args: tuple,
    worker_name: str,
    shutdown_event: asyncio.Event,
) -> None:
    """Run ``worker(*args)`` until shutdown, restarting it when it stops.

    Cancelling the supervisor cancels the running worker as well, so a single
    task handle covers every restart.

    Args:
        worker: Worker coroutine function (e.g., run_media_job_worker)
        args: Positional arguments for the worker
        worker_name: Name used in log events
        shutdown_event: Set on shutdown; no restart happens afterwards
    """
    while not shutdown_event.is_set():
        try:
            await worker(*args)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY_SECONDS,
            )
        except asyncio.CancelledError:
            logger.info("worker.cancelled", worker=worker_name)
            raise
        except Exception as exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error_type=type(exc).__name__,
                error_message=str(exc),
                retry_in_seconds=RESTART_DELAY_SECONDS,
                exc_info=exc,
            )

        await asyncio.sleep(RESTART_DELAY_SECONDS)
        if not shutdown_event.is_set():
            logger.info("worker.restarting", worker=worker_name)

    logger.info("worker.shutdown_complete", worker=worker_name)


def build_media_service(settings: Settings, uow_factory) -> MediaService:
    """Wire the media service with its production collaborators."""
    gateway = VertexAIGateway(
        settings=settings,
        token_provider=AccessTokenProvider(settings.vertex_ai_project_id),
    )
    signer = GCSUrlSigner(expiration_hours=settings.gcs_signed_url_expiration_hours)
    return MediaService(
        uow_factory=uow_factory,
        gateway=gateway,
        signer=signer,
        job_queue=JobQueue(uow_factory),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build service wiring and run the job worker for the application's lifetime."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    media_service = build_media_service(settings, uow_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.media_service = media_service

    shutdown_event = asyncio.Event()
    worker_task = asyncio.create_task(
        supervise_worker(
            run_media_job_worker,
            (uow_factory, MediaGenerationProcessor(media_service, settings), settings),
            "media_jobs",
            shutdown_event,
        )
    )
    logger.info(
        "application.started",
        env=settings.app_env,
        database=settings.database_url.rsplit("@", 1)[-1],
    )

    try:
        yield
    finally:
        logger.info("application.stopping")
        shutdown_event.set()
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)
        await session_factory.kw["bind"].dispose()


async def health(request: Request, response: Response) -> dict:
    """Report whether the database answers a trivial query (200 or 503)."""
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health.database_unreachable", error_type=type(e).__name__, error=str(e))
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "error": {"type": type(e).__name__, "message": str(e)}}
    return {"status": "healthy"}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the media generation application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Media Generation API",
        description="Image, video, music and speech generation on Vertex AI",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(media.router)
    app.add_api_route("/health", health, methods=["GET"], tags=["health"])

    return app
