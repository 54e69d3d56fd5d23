"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from memoria.config import get_settings, validate_settings
from memoria.db.migrations.runner import run_migrations
from memoria.errors import MemoriaError
from memoria.logging import configure_logging
from memoria.routes.health import router as health_router
from memoria.routes.memory import router as memory_router
from memoria.tasks import get_background_runner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings(settings)
    configure_logging(settings.log_level)
    run_migrations()
    logger.info(
        "Memory service ready (db=%s, embeddings=%s)",
        settings.app_db,
        settings.embedding_backend,
    )
    yield
    await get_background_runner().shutdown(
        timeout_s=float(settings.task_runner_shutdown_timeout_seconds), abandon=False
    )


async def _memoria_error_handler(_: Request, exc: Exception) -> JSONResponse:
    retryable = bool(getattr(exc, "retryable", False))
    logger.warning("Request failed: %s", exc)
    return JSONResponse(
        status_code=503 if retryable else 500,
        content={"error": type(exc).__name__, "detail": str(exc), "retryable": retryable},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Memoria", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(MemoriaError, _memoria_error_handler)
    app.include_router(health_router)
    app.include_router(memory_router)
    return app


app = create_app()
